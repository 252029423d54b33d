import uuid
from datetime import datetime

import structlog

from .channels import build_channel
from .config import settings
from .db import SessionLocal
from .dispatch import dispatch_due_reminders
from .locks import JobLock
from .quota import reset_elapsed_cycles
from .scheduler import DailyTrigger, JobScheduler

logger = structlog.get_logger("vetcare.scheduler")

QUOTA_RESET_JOB = "quota_reset"
REMINDER_DISPATCH_JOB = "reminder_dispatch"

_UNSET = object()
_channel = _UNSET


def get_channel():
    """Messaging channel built once per process from configuration."""
    global _channel
    if _channel is _UNSET:
        _channel = build_channel()
    return _channel


def _run_quota_reset(db, now, channel):
    return reset_elapsed_cycles(db, now=now)


def _run_reminder_dispatch(db, now, channel):
    if channel is _UNSET:
        channel = get_channel()
    return dispatch_due_reminders(db, channel, now=now)


_RUNNERS = {
    QUOTA_RESET_JOB: _run_quota_reset,
    REMINDER_DISPATCH_JOB: _run_reminder_dispatch,
}


def job_names() -> list[str]:
    return list(_RUNNERS)


def run_job(
    name: str,
    now: datetime | None = None,
    session_factory=None,
    channel=_UNSET,
) -> dict:
    """Run one job under its run lock; never raises into the caller."""
    runner = _RUNNERS.get(name)
    if runner is None:
        raise KeyError(name)

    run_id = uuid.uuid4().hex[:12]
    log = logger.bind(job=name, run_id=run_id)
    lock = JobLock(name)
    if not lock.acquire():
        log.warning("job_skipped_already_running")
        return {"job": name, "run_id": run_id, "status": "skipped_locked"}

    session_factory = session_factory or SessionLocal
    structlog.contextvars.bind_contextvars(job=name, run_id=run_id)
    log.info("job_started")
    try:
        with session_factory() as db:
            report = runner(db, now, channel)
    except Exception as exc:
        log.exception("job_failed", error=str(exc))
        return {"job": name, "run_id": run_id, "status": "error", "error": str(exc)}
    finally:
        structlog.contextvars.unbind_contextvars("job", "run_id")
        lock.release()

    result = report.as_dict()
    status = "error" if result.get("error") else "ok"
    log.info("job_finished", status=status)
    return {"job": name, "run_id": run_id, "status": status, "report": result}


def build_scheduler(config=settings) -> JobScheduler:
    """Quota reset is registered first and must fire before dispatch each day."""
    reset_trigger = DailyTrigger.parse(config.QUOTA_RESET_AT, config.SCHEDULER_TIMEZONE)
    dispatch_trigger = DailyTrigger.parse(config.REMINDER_DISPATCH_AT, config.SCHEDULER_TIMEZONE)
    if reset_trigger.at >= dispatch_trigger.at:
        raise ValueError(
            f"QUOTA_RESET_AT ({config.QUOTA_RESET_AT}) must be earlier than "
            f"REMINDER_DISPATCH_AT ({config.REMINDER_DISPATCH_AT})"
        )

    scheduler = JobScheduler(poll_seconds=config.SCHEDULER_POLL_SECONDS)
    scheduler.register(QUOTA_RESET_JOB, reset_trigger, lambda: run_job(QUOTA_RESET_JOB))
    scheduler.register(REMINDER_DISPATCH_JOB, dispatch_trigger, lambda: run_job(REMINDER_DISPATCH_JOB))
    return scheduler
