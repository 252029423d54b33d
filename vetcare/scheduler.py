"""Daily wall-clock triggers and a small polling scheduler.

Jobs are kept in registration order; when several are due on the same tick
they run in that order, one after another, on the scheduler thread.
"""
import threading
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo

import structlog

from .windows import resolve_timezone

logger = structlog.get_logger("vetcare.scheduler")


def parse_time_of_day(value: str) -> time:
    raw = (value or "").strip()
    try:
        hour_s, minute_s = raw.split(":", 1)
        return time(int(hour_s), int(minute_s))
    except ValueError as exc:
        raise ValueError(f"Invalid time of day {value!r}, expected HH:MM") from exc


@dataclass(frozen=True)
class DailyTrigger:
    at: time
    tz: ZoneInfo

    @classmethod
    def parse(cls, at: str, timezone_name: str | None = "UTC") -> "DailyTrigger":
        return cls(at=parse_time_of_day(at), tz=resolve_timezone(timezone_name))

    def next_fire_time(self, after: datetime) -> datetime:
        """First fire instant strictly after ``after``, as aware UTC."""
        if after.tzinfo is None:
            after = after.replace(tzinfo=timezone.utc)
        local = after.astimezone(self.tz)
        candidate = datetime.combine(local.date(), self.at, tzinfo=self.tz)
        if candidate <= local:
            candidate = datetime.combine(local.date() + timedelta(days=1), self.at, tzinfo=self.tz)
        return candidate.astimezone(timezone.utc)


@dataclass
class ScheduledJob:
    name: str
    trigger: DailyTrigger
    callback: Callable[[], object]
    next_run: datetime | None = None


class JobScheduler:
    def __init__(self, poll_seconds: float = 30):
        self.poll_seconds = max(0.1, float(poll_seconds))
        self._jobs: list[ScheduledJob] = []
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def jobs(self) -> list[ScheduledJob]:
        return list(self._jobs)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def register(self, name: str, trigger: DailyTrigger, callback: Callable[[], object]) -> ScheduledJob:
        if any(job.name == name for job in self._jobs):
            raise ValueError(f"Job {name!r} already registered")
        job = ScheduledJob(name=name, trigger=trigger, callback=callback)
        self._jobs.append(job)
        return job

    def prime(self, now: datetime) -> None:
        for job in self._jobs:
            job.next_run = job.trigger.next_fire_time(now)

    def due_jobs(self, now: datetime) -> list[ScheduledJob]:
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return [job for job in self._jobs if job.next_run is not None and job.next_run <= now]

    def run_pending(self, now: datetime | None = None) -> list[str]:
        now = now or datetime.now(timezone.utc)
        ran: list[str] = []
        for job in self.due_jobs(now):
            job.next_run = job.trigger.next_fire_time(now)
            logger.info("scheduled_job_fired", job=job.name, next_run=job.next_run.isoformat())
            try:
                job.callback()
            except Exception as exc:
                logger.exception("scheduled_job_crashed", job=job.name, error=str(exc))
            ran.append(job.name)
        return ran

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.run_pending()
            self._stop.wait(self.poll_seconds)

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self.prime(datetime.now(timezone.utc))
        self._thread = threading.Thread(target=self._loop, name="vetcare-scheduler", daemon=True)
        self._thread.start()
        logger.info(
            "scheduler_started",
            jobs=[{"name": job.name, "next_run": job.next_run.isoformat()} for job in self._jobs],
        )

    def stop(self, timeout: float | None = 5) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("scheduler_stopped")
