"""The single definition of which visits are "due".

Dashboard counts, visit listings and reminder dispatch all build their
filters here, so identical parameters always select the identical set.
"""
from datetime import datetime

from sqlalchemy import ColumnElement, func, select
from sqlalchemy.orm import Session, selectinload

from .models import Owner, Pet, Visit
from .windows import day_window, future_window

Criteria = list[ColumnElement[bool]]


def tenant_scope(tenant_id: int) -> ColumnElement[bool]:
    return Visit.pet.has(Pet.owner.has(Owner.tenant_id == tenant_id))


def due_today(
    tenant_id: int | None = None,
    timezone_name: str | None = "UTC",
    now: datetime | None = None,
) -> Criteria:
    start, end = day_window(timezone_name, now=now)
    criteria: Criteria = [
        Visit.next_reminder_date >= start,
        Visit.next_reminder_date <= end,
        Visit.is_reminder_enabled.is_(True),
    ]
    if tenant_id is not None:
        criteria.append(tenant_scope(tenant_id))
    return criteria


def upcoming(
    tenant_id: int | None = None,
    days_ahead: int = 30,
    timezone_name: str | None = "UTC",
    visit_type: str | None = None,
    reminder_enabled: bool | None = None,
    now: datetime | None = None,
) -> Criteria:
    """``reminder_enabled=None`` leaves the enablement flag unfiltered."""
    start, end = future_window(days_ahead, timezone_name, now=now)
    criteria: Criteria = [
        Visit.next_reminder_date >= start,
        Visit.next_reminder_date <= end,
    ]
    if visit_type:
        criteria.append(Visit.visit_type == visit_type)
    if reminder_enabled is not None:
        criteria.append(Visit.is_reminder_enabled.is_(bool(reminder_enabled)))
    if tenant_id is not None:
        criteria.append(tenant_scope(tenant_id))
    return criteria


def count_visits(db: Session, criteria: Criteria) -> int:
    stmt = select(func.count(Visit.id)).where(*criteria)
    return int(db.execute(stmt).scalar_one())


def list_visits(
    db: Session,
    criteria: Criteria,
    offset: int = 0,
    limit: int | None = None,
) -> list[Visit]:
    stmt = (
        select(Visit)
        .where(*criteria)
        .options(selectinload(Visit.pet).selectinload(Pet.owner))
        .order_by(Visit.next_reminder_date.asc(), Visit.id.asc())
        .offset(max(0, int(offset)))
    )
    if limit is not None:
        stmt = stmt.limit(int(limit))
    return list(db.execute(stmt).scalars())
