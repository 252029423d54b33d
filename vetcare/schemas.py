from datetime import datetime, timezone

from pydantic import BaseModel, Field, validator


class DashboardStatsOut(BaseModel):
    owner_count: int
    pet_count: int
    upcoming_vaccination_count: int | None = None
    due_today_count: int | None = None
    is_admin_view: bool = False


class DueVisitOut(BaseModel):
    id: int
    pet_id: int
    pet_name: str
    owner_name: str
    visit_type: str | None = None
    next_reminder_date: datetime | None = None
    is_reminder_enabled: bool
    reminder_sent: bool
    reminder_outcome: str


class VisitPageOut(BaseModel):
    total: int
    page: int
    limit: int
    items: list[DueVisitOut]


class ClinicSettingsUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=100)
    phone: str | None = Field(default=None, max_length=20)
    timezone: str | None = Field(default=None, max_length=50)
    locale: str | None = Field(default=None, max_length=8)
    is_active: bool | None = None
    can_send_reminders: bool | None = None
    subscription_start_date: datetime | None = None
    subscription_end_date: datetime | None = None
    reminder_monthly_limit: int | None = Field(default=None, ge=-1)

    @validator("subscription_start_date", "subscription_end_date")
    @classmethod
    def to_naive_utc(cls, value: datetime | None) -> datetime | None:
        if value is None or value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)


class ClinicOut(BaseModel):
    id: int
    name: str
    phone: str | None = None
    timezone: str
    locale: str
    is_active: bool
    can_send_reminders: bool
    subscription_start_date: datetime | None = None
    subscription_end_date: datetime | None = None
    reminder_monthly_limit: int
    reminder_sent_this_cycle: int
    current_cycle_start_date: datetime | None = None


class JobRunOut(BaseModel):
    job: str
    run_id: str
    status: str
    report: dict | None = None
    error: str | None = None
