from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import due_visits
from .models import Owner, Pet, Tenant, Visit
from .windows import InvalidTimezone, parse_timezone

UPCOMING_VACCINATION_DAYS = 30

CLINIC_SETTINGS_FIELDS = {
    "name",
    "phone",
    "timezone",
    "locale",
    "is_active",
    "can_send_reminders",
    "subscription_start_date",
    "subscription_end_date",
    "reminder_monthly_limit",
}
REQUIRED_CLINIC_SETTINGS = {
    "name",
    "timezone",
    "locale",
    "is_active",
    "can_send_reminders",
    "reminder_monthly_limit",
}


def get_tenant(db: Session, tenant_id: int) -> Tenant | None:
    return db.get(Tenant, tenant_id)


def dashboard_stats(db: Session, tenant: Tenant | None, now: datetime | None = None) -> dict:
    if tenant is None:
        return {
            "owner_count": int(db.execute(select(func.count(Owner.id))).scalar_one()),
            "pet_count": int(db.execute(select(func.count(Pet.id))).scalar_one()),
            "is_admin_view": True,
        }

    owner_count = db.execute(
        select(func.count(Owner.id)).where(Owner.tenant_id == tenant.id)
    ).scalar_one()
    pet_count = db.execute(
        select(func.count(Pet.id)).join(Pet.owner).where(Owner.tenant_id == tenant.id)
    ).scalar_one()
    upcoming_vaccinations = due_visits.count_visits(
        db,
        due_visits.upcoming(
            tenant.id,
            UPCOMING_VACCINATION_DAYS,
            tenant.timezone,
            visit_type="vaccination",
            now=now,
        ),
    )
    due_today = due_visits.count_visits(db, due_visits.due_today(tenant.id, tenant.timezone, now=now))
    return {
        "owner_count": int(owner_count),
        "pet_count": int(pet_count),
        "upcoming_vaccination_count": upcoming_vaccinations,
        "due_today_count": due_today,
        "is_admin_view": False,
    }


def _page(db: Session, criteria, page: int, limit: int) -> tuple[int, list[Visit]]:
    total = due_visits.count_visits(db, criteria)
    rows = due_visits.list_visits(db, criteria, offset=(max(1, page) - 1) * limit, limit=limit)
    return total, rows


def list_due_today(
    db: Session,
    tenant: Tenant,
    page: int = 1,
    limit: int = 50,
    now: datetime | None = None,
) -> tuple[int, list[Visit]]:
    return _page(db, due_visits.due_today(tenant.id, tenant.timezone, now=now), page, limit)


def list_upcoming(
    db: Session,
    tenant: Tenant,
    days_ahead: int = 30,
    visit_type: str | None = None,
    reminder_enabled: bool | None = None,
    page: int = 1,
    limit: int = 50,
    now: datetime | None = None,
) -> tuple[int, list[Visit]]:
    criteria = due_visits.upcoming(
        tenant.id,
        days_ahead,
        tenant.timezone,
        visit_type=visit_type,
        reminder_enabled=reminder_enabled,
        now=now,
    )
    return _page(db, criteria, page, limit)


def update_clinic_settings(db: Session, tenant_id: int, changes: dict) -> Tenant | None:
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        return None

    unknown = set(changes) - CLINIC_SETTINGS_FIELDS
    if unknown:
        raise ValueError(f"Unknown clinic settings: {', '.join(sorted(unknown))}")
    nulled = sorted(key for key in REQUIRED_CLINIC_SETTINGS if key in changes and changes[key] is None)
    if nulled:
        raise ValueError(f"Clinic settings cannot be null: {', '.join(nulled)}")

    if "timezone" in changes:
        try:
            parse_timezone(changes["timezone"])
        except InvalidTimezone as exc:
            raise ValueError(str(exc)) from exc
    if "reminder_monthly_limit" in changes and int(changes["reminder_monthly_limit"]) < -1:
        raise ValueError("reminder_monthly_limit must be -1 (unlimited), 0 (disabled) or positive")

    for key, value in changes.items():
        setattr(tenant, key, value)

    start = changes.get("subscription_start_date")
    if start is not None:
        tenant.start_cycle(start)

    db.commit()
    db.refresh(tenant)
    return tenant
