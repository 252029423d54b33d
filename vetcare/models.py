import enum
from datetime import datetime, time, timezone

from dateutil.relativedelta import relativedelta
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.min)


class ReminderOutcome(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    SKIPPED_QUOTA = "skipped_quota"
    SKIPPED_DISABLED = "skipped_disabled"
    FAILED = "failed"


class Tenant(Base):
    """A clinic: the unit of subscription and reminder quota isolation.

    ``reminder_monthly_limit`` semantics: ``0`` disables reminders outright,
    a positive value caps sends per cycle, a negative value means unlimited.
    """

    __tablename__ = "clinics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    locale: Mapped[str] = mapped_column(String(8), default="en")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    can_send_reminders: Mapped[bool] = mapped_column(Boolean, default=False)
    subscription_start_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    subscription_end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    reminder_monthly_limit: Mapped[int] = mapped_column(Integer, default=-1)
    reminder_sent_this_cycle: Mapped[int] = mapped_column(Integer, default=0)
    current_cycle_start_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    owners = relationship("Owner", back_populates="tenant")

    @property
    def is_quota_limited(self) -> bool:
        return int(self.reminder_monthly_limit or 0) > 0

    def quota_blocks_send(self) -> bool:
        limit = int(self.reminder_monthly_limit or 0)
        if limit == 0:
            return True
        return limit > 0 and int(self.reminder_sent_this_cycle or 0) >= limit

    def next_cycle_start(self) -> datetime | None:
        if self.current_cycle_start_date is None:
            return None
        return start_of_day(self.current_cycle_start_date + relativedelta(months=1))

    def reset_if_elapsed(self, now: datetime) -> bool:
        """Snap the cycle forward to today once a month has elapsed.

        Missed runs do not compound: the new cycle always starts today.
        """
        next_start = self.next_cycle_start()
        if next_start is None:
            return False
        today = start_of_day(now)
        if today < next_start:
            return False
        self.reminder_sent_this_cycle = 0
        self.current_cycle_start_date = today
        return True

    def start_cycle(self, start: datetime) -> None:
        self.reminder_sent_this_cycle = 0
        self.current_cycle_start_date = start


class Owner(Base):
    __tablename__ = "owners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("clinics.id"), index=True)
    first_name: Mapped[str] = mapped_column(String(80))
    last_name: Mapped[str] = mapped_column(String(80), default="")
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    allow_automated_reminders: Mapped[bool] = mapped_column(Boolean, default=True)

    tenant = relationship("Tenant", back_populates="owners")
    pets = relationship("Pet", back_populates="owner")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Pet(Base):
    __tablename__ = "pets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("owners.id"), index=True)
    name: Mapped[str] = mapped_column(String(80), default="")
    species: Mapped[str | None] = mapped_column(String(40), nullable=True)

    owner = relationship("Owner", back_populates="pets")
    visits = relationship("Visit", back_populates="pet")


class Visit(Base):
    __tablename__ = "visits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    pet_id: Mapped[int] = mapped_column(ForeignKey("pets.id"), index=True)
    visit_date: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    visit_type: Mapped[str | None] = mapped_column(String(60), nullable=True, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_reminder_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    is_reminder_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    # True once dispatch has made its single pass, whatever the outcome.
    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    reminder_outcome: Mapped[str] = mapped_column(String(32), default=ReminderOutcome.PENDING.value)
    reminder_attempted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    pet = relationship("Pet", back_populates="visits")
