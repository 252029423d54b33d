from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .jobs import job_names, run_job
from .models import Tenant, Visit
from .schemas import (
    ClinicOut,
    ClinicSettingsUpdate,
    DashboardStatsOut,
    DueVisitOut,
    JobRunOut,
    VisitPageOut,
)
from .services import (
    dashboard_stats,
    get_tenant,
    list_due_today,
    list_upcoming,
    update_clinic_settings,
)

router = APIRouter(prefix="/api")


def _to_due_visit_out(v: Visit) -> DueVisitOut:
    return DueVisitOut(
        id=v.id,
        pet_id=v.pet_id,
        pet_name=v.pet.name,
        owner_name=v.pet.owner.full_name,
        visit_type=v.visit_type,
        next_reminder_date=v.next_reminder_date,
        is_reminder_enabled=bool(v.is_reminder_enabled),
        reminder_sent=bool(v.reminder_sent),
        reminder_outcome=v.reminder_outcome,
    )


def _to_clinic_out(t: Tenant) -> ClinicOut:
    return ClinicOut(
        id=t.id,
        name=t.name,
        phone=t.phone,
        timezone=t.timezone,
        locale=t.locale,
        is_active=bool(t.is_active),
        can_send_reminders=bool(t.can_send_reminders),
        subscription_start_date=t.subscription_start_date,
        subscription_end_date=t.subscription_end_date,
        reminder_monthly_limit=t.reminder_monthly_limit,
        reminder_sent_this_cycle=t.reminder_sent_this_cycle,
        current_cycle_start_date=t.current_cycle_start_date,
    )


def get_optional_tenant(
    db: Session = Depends(get_db),
    x_clinic_id: Optional[int] = Header(default=None),
) -> Tenant | None:
    if x_clinic_id is None:
        return None
    tenant = get_tenant(db, x_clinic_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Clinic not found")
    return tenant


def get_current_tenant(tenant: Tenant | None = Depends(get_optional_tenant)) -> Tenant:
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-Clinic-Id header is required")
    return tenant


def require_admin_key(x_admin_key: Optional[str] = Header(default=None)) -> None:
    expected = (settings.ADMIN_API_KEY or "").strip()
    if not expected or (x_admin_key or "").strip() != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin key")


@router.get("/dashboard/stats", response_model=DashboardStatsOut)
def get_dashboard_stats(
    db: Session = Depends(get_db),
    tenant: Tenant | None = Depends(get_optional_tenant),
):
    return DashboardStatsOut(**dashboard_stats(db, tenant))


@router.get("/visits/due-today", response_model=VisitPageOut)
def get_due_today_visits(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    total, rows = list_due_today(db, tenant, page=page, limit=limit)
    return VisitPageOut(total=total, page=page, limit=limit, items=[_to_due_visit_out(v) for v in rows])


@router.get("/visits/upcoming", response_model=VisitPageOut)
def get_upcoming_visits(
    days_ahead: int = Query(default=30, ge=0, le=366),
    visit_type: Optional[str] = Query(default=None),
    reminder_enabled: Optional[bool] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    total, rows = list_upcoming(
        db,
        tenant,
        days_ahead=days_ahead,
        visit_type=visit_type,
        reminder_enabled=reminder_enabled,
        page=page,
        limit=limit,
    )
    return VisitPageOut(total=total, page=page, limit=limit, items=[_to_due_visit_out(v) for v in rows])


@router.patch("/clinics/{clinic_id}/settings", response_model=ClinicOut)
def patch_clinic_settings(
    clinic_id: int,
    payload: ClinicSettingsUpdate,
    db: Session = Depends(get_db),
    _admin: None = Depends(require_admin_key),
):
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    try:
        tenant = update_clinic_settings(db, clinic_id, changes)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Clinic not found")
    return _to_clinic_out(tenant)


@router.post("/admin/jobs/{job_name}/run", response_model=JobRunOut)
def trigger_job(job_name: str, request: Request, _admin: None = Depends(require_admin_key)):
    if job_name not in job_names():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown job")
    session_factory = getattr(request.app.state, "session_local", None)
    return JobRunOut(**run_job(job_name, session_factory=session_factory))
