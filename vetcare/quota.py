"""Daily roll-over of each clinic's monthly reminder quota.

Cycles are anchored to the clinic's own subscription start rather than the
calendar month, so every clinic resets on its own billing day.
"""
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Tenant, utc_now_naive
from .repository import reset_tenant_cycle

logger = structlog.get_logger("vetcare.quota")


@dataclass
class QuotaResetReport:
    scanned: int = 0
    reset: int = 0
    unchanged: int = 0
    failed: int = 0
    failed_tenant_ids: list[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "reset": self.reset,
            "unchanged": self.unchanged,
            "failed": self.failed,
            "failed_tenant_ids": list(self.failed_tenant_ids),
        }


def tenants_in_cycle(db: Session, now: datetime) -> list[Tenant]:
    stmt = (
        select(Tenant)
        .where(
            Tenant.is_active.is_(True),
            Tenant.subscription_end_date.is_not(None),
            Tenant.subscription_end_date >= now,
            Tenant.reminder_monthly_limit > 0,
            Tenant.current_cycle_start_date.is_not(None),
        )
        .order_by(Tenant.id.asc())
    )
    return list(db.execute(stmt).scalars())


def reset_elapsed_cycles(db: Session, now: datetime | None = None) -> QuotaResetReport:
    now = now or utc_now_naive()
    report = QuotaResetReport()

    tenants = tenants_in_cycle(db, now)
    # Work on detached snapshots; writes go through the conditional update only.
    db.expunge_all()
    logger.info("quota_reset_scan", tenants=len(tenants), now=now.isoformat())

    for tenant in tenants:
        report.scanned += 1
        previous_start = tenant.current_cycle_start_date
        try:
            if not tenant.reset_if_elapsed(now):
                report.unchanged += 1
                continue
            applied = reset_tenant_cycle(
                db,
                tenant_id=tenant.id,
                expected_cycle_start=previous_start,
                new_cycle_start=tenant.current_cycle_start_date,
            )
        except Exception as exc:
            db.rollback()
            report.failed += 1
            report.failed_tenant_ids.append(tenant.id)
            logger.exception("quota_reset_failed", tenant_id=tenant.id, error=str(exc))
            continue

        if applied:
            report.reset += 1
            logger.info(
                "quota_cycle_reset",
                tenant_id=tenant.id,
                previous_cycle_start=previous_start.isoformat(),
                new_cycle_start=tenant.current_cycle_start_date.isoformat(),
            )
        else:
            report.unchanged += 1
            logger.warning("quota_cycle_moved_concurrently", tenant_id=tenant.id)

    return report
