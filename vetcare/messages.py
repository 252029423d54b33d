import re
from datetime import datetime, timezone

from .windows import resolve_timezone

_NON_DIGITS = re.compile(r"\D")

TEMPLATES = {
    "en": {
        "body": "Reminder from {clinic_name}: {pet_name}'s {visit_type} visit is due on {due_date}.",
        "call": "Please call us at {clinic_phone} to schedule.",
        "no_phone": "Please contact the clinic to schedule.",
        "disclaimer": "This is an automated message, please do not reply.",
        "default_visit_type": "health check",
        "default_pet_name": "[Pet Name Unavailable]",
        "default_clinic_name": "[Clinic Name Unavailable]",
        "soon": "soon",
    },
    "ar": {
        "body": "تذكير من {clinic_name}: موعد {visit_type} الخاص بـ {pet_name} مستحق في {due_date}.",
        "call": "يرجى الاتصال بنا على {clinic_phone} لتحديد موعد.",
        "no_phone": "يرجى التواصل مع العيادة لتحديد موعد.",
        "disclaimer": "هذه رسالة آلية، يرجى عدم الرد.",
        "default_visit_type": "فحص صحي",
        "default_pet_name": "[اسم الحيوان غير متوفر]",
        "default_clinic_name": "[اسم العيادة غير متوفر]",
        "soon": "قريباً",
    },
}
DEFAULT_LOCALE = "en"


def normalize_phone(raw: str | None, country_code: str) -> str:
    """E.164-style number: digits only, trunk 0 dropped, country code ensured."""
    digits = _NON_DIGITS.sub("", raw or "")
    if not digits:
        return ""
    if digits.startswith("0"):
        digits = digits[1:]
    code = _NON_DIGITS.sub("", country_code or "")
    if code and not digits.startswith(code):
        digits = f"{code}{digits}"
    return f"+{digits}"


def _format_due_date(value: datetime | None, locale: str, timezone_name: str | None) -> str | None:
    if value is None:
        return None
    local = value.replace(tzinfo=timezone.utc).astimezone(resolve_timezone(timezone_name))
    if locale == "en":
        return f"{local:%b} {local.day}, {local.year}"
    return local.date().isoformat()


def render_reminder(
    clinic_name: str | None,
    clinic_phone: str | None,
    pet_name: str | None,
    visit_type: str | None,
    due_date: datetime | None,
    locale: str | None = DEFAULT_LOCALE,
    timezone_name: str | None = "UTC",
) -> str:
    locale = (locale or DEFAULT_LOCALE).strip().lower()
    if locale not in TEMPLATES:
        locale = DEFAULT_LOCALE
    t = TEMPLATES[locale]

    body = t["body"].format(
        clinic_name=(clinic_name or "").strip() or t["default_clinic_name"],
        pet_name=(pet_name or "").strip() or t["default_pet_name"],
        visit_type=(visit_type or "").strip() or t["default_visit_type"],
        due_date=_format_due_date(due_date, locale, timezone_name) or t["soon"],
    )
    phone = (clinic_phone or "").strip()
    follow_up = t["call"].format(clinic_phone=phone) if phone else t["no_phone"]
    return f"{body} {follow_up}\n\n{t['disclaimer']}"
