"""Local-day windows expressed as UTC instants.

Day boundaries are taken in the clinic's wall-clock time and converted to UTC,
so a "day" spans 23 to 25 hours across daylight-saving transitions. Returned
datetimes are naive UTC, matching how instants are stored, and are meant for
inclusive ``>=`` / ``<=`` comparisons.
"""
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

logger = structlog.get_logger("vetcare.windows")

UTC_ZONE = ZoneInfo("UTC")
_END_OF_DAY = time(23, 59, 59, 999000)


class InvalidTimezone(ValueError):
    def __init__(self, name):
        super().__init__(f"Unknown timezone: {name!r}")
        self.name = name


def parse_timezone(name: str | None) -> ZoneInfo:
    raw = (name or "").strip()
    if not raw:
        raise InvalidTimezone(name)
    try:
        return ZoneInfo(raw)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezone(name) from exc


def resolve_timezone(name: str | None) -> ZoneInfo:
    try:
        return parse_timezone(name)
    except InvalidTimezone:
        logger.warning("timezone_fallback_utc", timezone=name)
        return UTC_ZONE


def _aware_utc(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def _to_naive_utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def local_day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day, _END_OF_DAY, tzinfo=tz)
    return _to_naive_utc(start), _to_naive_utc(end)


def day_window(timezone_name: str | None = "UTC", now: datetime | None = None) -> tuple[datetime, datetime]:
    tz = resolve_timezone(timezone_name)
    local_today = _aware_utc(now).astimezone(tz).date()
    return local_day_bounds(local_today, tz)


def future_window(
    days_ahead: int = 30,
    timezone_name: str | None = "UTC",
    now: datetime | None = None,
) -> tuple[datetime, datetime]:
    tz = resolve_timezone(timezone_name)
    local_today = _aware_utc(now).astimezone(tz).date()
    start, _ = local_day_bounds(local_today, tz)
    _, end = local_day_bounds(local_today + timedelta(days=int(days_ahead)), tz)
    return start, end
