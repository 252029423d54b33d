from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from .models import ReminderOutcome, Tenant, Visit, utc_now_naive


def try_consume_quota(db: Session, tenant_id: int) -> bool:
    """Reserve one reminder slot for a limited tenant.

    Single conditional UPDATE, so concurrent workers can never push the
    counter past the limit.
    """
    result = db.execute(
        update(Tenant)
        .where(
            Tenant.id == tenant_id,
            Tenant.reminder_monthly_limit > 0,
            Tenant.reminder_sent_this_cycle < Tenant.reminder_monthly_limit,
        )
        .values(reminder_sent_this_cycle=Tenant.reminder_sent_this_cycle + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def release_quota(db: Session, tenant_id: int) -> None:
    db.execute(
        update(Tenant)
        .where(Tenant.id == tenant_id, Tenant.reminder_sent_this_cycle > 0)
        .values(reminder_sent_this_cycle=Tenant.reminder_sent_this_cycle - 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def mark_reminder_attempted(
    db: Session,
    visit_id: int,
    outcome: ReminderOutcome,
    attempted_at: datetime | None = None,
) -> bool:
    """Record the one allowed dispatch pass for a visit.

    Returns False when another run already claimed the visit.
    """
    result = db.execute(
        update(Visit)
        .where(Visit.id == visit_id, Visit.reminder_sent.is_(False))
        .values(
            reminder_sent=True,
            reminder_outcome=outcome.value,
            reminder_attempted_at=attempted_at or utc_now_naive(),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def reset_tenant_cycle(
    db: Session, tenant_id: int, expected_cycle_start: datetime, new_cycle_start: datetime
) -> bool:
    """Persist a cycle reset only if the cycle was not moved meanwhile."""
    result = db.execute(
        update(Tenant)
        .where(Tenant.id == tenant_id, Tenant.current_cycle_start_date == expected_cycle_start)
        .values(reminder_sent_this_cycle=0, current_cycle_start_date=new_cycle_start)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1
