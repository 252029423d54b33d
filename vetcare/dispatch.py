"""Daily reminder dispatch.

Each pending visit gets exactly one pass: it is either sent, skipped for
quota, or failed, and in every case ``reminder_sent`` flips to True so it is
never selected again. Visits skipped for a missing phone number or an
unconfigured channel are left pending for a later run. Failed sends are
never retried.
"""
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session, contains_eager

from .channels import MessagingChannel
from .config import settings
from .messages import normalize_phone, render_reminder
from .models import Owner, Pet, ReminderOutcome, Tenant, Visit, utc_now_naive
from .repository import mark_reminder_attempted, release_quota, try_consume_quota

logger = structlog.get_logger("vetcare.dispatch")


@dataclass
class DispatchReport:
    window_start: datetime | None = None
    window_end: datetime | None = None
    candidates: int = 0
    sent: int = 0
    failed: int = 0
    skipped_quota: int = 0
    skipped_disabled: int = 0
    skipped_no_phone: int = 0
    skipped_no_channel: int = 0
    already_claimed: int = 0
    error: str | None = None
    sent_visit_ids: list[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "window_start": self.window_start.isoformat() if self.window_start else None,
            "window_end": self.window_end.isoformat() if self.window_end else None,
            "candidates": self.candidates,
            "sent": self.sent,
            "failed": self.failed,
            "skipped_quota": self.skipped_quota,
            "skipped_disabled": self.skipped_disabled,
            "skipped_no_phone": self.skipped_no_phone,
            "skipped_no_channel": self.skipped_no_channel,
            "already_claimed": self.already_claimed,
            "error": self.error,
        }


def dispatch_window(now: datetime) -> tuple[datetime, datetime]:
    """UTC midnight today through the last millisecond of tomorrow (UTC)."""
    start = datetime.combine(now.date(), time.min)
    end = datetime.combine(now.date() + timedelta(days=1), time(23, 59, 59, 999000))
    return start, end


def load_candidates(db: Session, now: datetime) -> list[Visit]:
    start, end = dispatch_window(now)
    stmt = (
        select(Visit)
        .join(Visit.pet)
        .join(Pet.owner)
        .join(Owner.tenant)
        .where(
            Visit.reminder_sent.is_(False),
            Visit.is_reminder_enabled.is_(True),
            Visit.next_reminder_date >= start,
            Visit.next_reminder_date <= end,
            Owner.allow_automated_reminders.is_(True),
            Tenant.is_active.is_(True),
            Tenant.can_send_reminders.is_(True),
            Tenant.subscription_end_date.is_not(None),
            Tenant.subscription_end_date >= now,
        )
        .options(contains_eager(Visit.pet).contains_eager(Pet.owner).contains_eager(Owner.tenant))
        .order_by(Visit.id.asc())
    )
    return list(db.execute(stmt).unique().scalars())


def _record(db: Session, report: DispatchReport, visit_id: int, outcome: ReminderOutcome, now: datetime) -> bool:
    claimed = mark_reminder_attempted(db, visit_id, outcome, attempted_at=now)
    if not claimed:
        report.already_claimed += 1
        logger.warning("reminder_already_claimed", visit_id=visit_id, outcome=outcome.value)
    return claimed


def dispatch_due_reminders(
    db: Session,
    channel: MessagingChannel | None,
    now: datetime | None = None,
    country_code: str | None = None,
) -> DispatchReport:
    now = now or utc_now_naive()
    country_code = country_code or settings.REMINDER_DEFAULT_COUNTRY_CODE
    report = DispatchReport()
    report.window_start, report.window_end = dispatch_window(now)

    try:
        candidates = load_candidates(db, now)
        report.candidates = len(candidates)
        logger.info(
            "reminder_candidates_loaded",
            candidates=report.candidates,
            window_start=report.window_start.isoformat(),
            window_end=report.window_end.isoformat(),
        )
        for visit in candidates:
            _dispatch_one(db, visit, channel, now, country_code, report)
    except Exception as exc:
        db.rollback()
        report.error = str(exc)
        logger.exception("reminder_dispatch_aborted", error=str(exc))

    logger.info("reminder_dispatch_finished", **report.as_dict())
    return report


def _dispatch_one(
    db: Session,
    visit: Visit,
    channel: MessagingChannel | None,
    now: datetime,
    country_code: str,
    report: DispatchReport,
) -> None:
    # Capture everything up front; commits below expire loaded instances.
    visit_id = visit.id
    pet = visit.pet
    owner = pet.owner
    tenant = owner.tenant
    tenant_id = tenant.id

    raw_phone = (owner.phone or "").strip()
    if not raw_phone:
        report.skipped_no_phone += 1
        logger.warning("reminder_skipped_no_phone", visit_id=visit_id, pet=pet.name)
        return

    if channel is None:
        report.skipped_no_channel += 1
        logger.warning("reminder_skipped_channel_unavailable", visit_id=visit_id)
        return

    if tenant.quota_blocks_send():
        disabled = int(tenant.reminder_monthly_limit or 0) == 0
        outcome = ReminderOutcome.SKIPPED_DISABLED if disabled else ReminderOutcome.SKIPPED_QUOTA
        if _record(db, report, visit_id, outcome, now):
            if disabled:
                report.skipped_disabled += 1
            else:
                report.skipped_quota += 1
            logger.info(
                "reminder_skipped_quota",
                visit_id=visit_id,
                tenant_id=tenant_id,
                limit=tenant.reminder_monthly_limit,
                sent_this_cycle=tenant.reminder_sent_this_cycle,
            )
        return

    phone = normalize_phone(raw_phone, country_code)
    if not phone:
        # No digits at all: the provider would reject it, so the pass ends here.
        if _record(db, report, visit_id, ReminderOutcome.FAILED, now):
            report.failed += 1
            logger.error("reminder_send_failed", visit_id=visit_id, tenant_id=tenant_id, error="invalid_phone")
        return

    body = render_reminder(
        clinic_name=tenant.name,
        clinic_phone=tenant.phone,
        pet_name=pet.name,
        visit_type=visit.visit_type,
        due_date=visit.next_reminder_date,
        locale=tenant.locale,
        timezone_name=tenant.timezone,
    )
    limited = tenant.is_quota_limited

    if limited and not try_consume_quota(db, tenant_id):
        if _record(db, report, visit_id, ReminderOutcome.SKIPPED_QUOTA, now):
            report.skipped_quota += 1
            logger.info("reminder_skipped_quota", visit_id=visit_id, tenant_id=tenant_id, reason="limit_reached")
        return

    to_address = channel.address(phone)
    try:
        result = channel.send(channel.originating_address, to_address, body)
    except Exception as exc:
        _record(db, report, visit_id, ReminderOutcome.FAILED, now)
        report.failed += 1
        if limited:
            try:
                release_quota(db, tenant_id)
            except Exception as release_exc:
                db.rollback()
                logger.exception("quota_release_failed", visit_id=visit_id, tenant_id=tenant_id, error=str(release_exc))
        logger.error(
            "reminder_send_failed",
            visit_id=visit_id,
            tenant_id=tenant_id,
            to=to_address,
            code=getattr(exc, "code", None),
            status=getattr(exc, "status", None),
            error=str(exc),
        )
        return

    _record(db, report, visit_id, ReminderOutcome.SENT, now)
    report.sent += 1
    report.sent_visit_ids.append(visit_id)
    logger.info(
        "reminder_sent",
        visit_id=visit_id,
        tenant_id=tenant_id,
        to=to_address,
        provider_sid=result.sid,
    )
