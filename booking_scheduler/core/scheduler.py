"""
APScheduler integration for the booking processor.

Wraps an in-process AsyncIOScheduler behind the narrow `SchedulingEngine`
interface the orchestrator depends on:

- Job definitions are registered once and survive with no trigger attached
- A repeating trigger is bound to a registered job by a well-known key
- Jobs can be fired once, immediately, regardless of any trigger

The engine is started once at process init and never stopped while the
process runs; only triggers are added and removed.
"""

import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, NamedTuple

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from booking_scheduler.core.datetime_utils import to_naive_utc
from booking_scheduler.core.exceptions import EngineUnavailableError, JobNotRegisteredError
from booking_scheduler.core.logging import get_logger

logger = get_logger(__name__)

# Every fire calls the job with the trigger that produced it
JobFunc = Callable[..., Awaitable[Any]]

MANUAL_TRIGGER_NAME = "MANUAL_TRIGGER"
MANUAL_TRIGGER_GROUP = "MANUAL"

TRIGGER_STATE_NORMAL = "NORMAL"
TRIGGER_STATE_PAUSED = "PAUSED"
TRIGGER_STATE_NONE = "NONE"
TRIGGER_STATE_ERROR = "ERROR"


class TriggerKey(NamedTuple):
    """Name and group identifying a trigger."""

    name: str
    group: str

    @property
    def id(self) -> str:
        return f"{self.group}.{self.name}"


@dataclass
class TriggerInfo:
    """Snapshot of a trigger as the engine sees it."""

    exists: bool
    state: str
    next_fire_time: datetime | None = None
    interval_minutes: int | None = None

    @property
    def active(self) -> bool:
        return self.exists and self.state == TRIGGER_STATE_NORMAL


class SchedulingEngine(ABC):
    """Interface the orchestrator uses to drive the scheduling engine."""

    @property
    @abstractmethod
    def running(self) -> bool:
        pass

    @abstractmethod
    def start(self) -> None:
        """Start the engine. Idempotent."""
        pass

    @abstractmethod
    def shutdown(self) -> None:
        """Stop the engine. Only used on process exit."""
        pass

    @abstractmethod
    def ensure_job_registered(self, job_id: str, func: JobFunc) -> None:
        """Register a job definition without attaching a trigger. Idempotent."""
        pass

    @abstractmethod
    def is_job_registered(self, job_id: str) -> bool:
        pass

    @abstractmethod
    def schedule_repeating(
        self, key: TriggerKey, job_id: str, interval_minutes: int
    ) -> datetime | None:
        """
        Bind a repeating trigger to a registered job, firing immediately.

        Replaces any trigger with the same key.

        Returns:
            The next fire time (naive UTC)
        """
        pass

    @abstractmethod
    def unschedule(self, key: TriggerKey) -> bool:
        """Remove a trigger. Returns False if it did not exist."""
        pass

    @abstractmethod
    def trigger_now(self, job_id: str) -> str:
        """
        Fire a registered job once, immediately.

        Raises:
            JobNotRegisteredError: If the job was never registered
        """
        pass

    @abstractmethod
    def get_trigger_info(self, key: TriggerKey) -> TriggerInfo:
        pass


class APSchedulerEngine(SchedulingEngine):
    """SchedulingEngine backed by APScheduler's AsyncIOScheduler.

    Jobs run as coroutines on the application's event loop. Fires of the
    same trigger never overlap (max_instances=1), and fires missed while the
    loop was busy are coalesced into one.
    """

    def __init__(self, misfire_grace_seconds: int = 60) -> None:
        self._scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": misfire_grace_seconds,
            },
        )
        self._scheduler.add_listener(
            self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED
        )
        self._jobs: dict[str, JobFunc] = {}

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("scheduling_engine_started")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("scheduling_engine_stopped")

    def ensure_job_registered(self, job_id: str, func: JobFunc) -> None:
        self._require_running()
        if job_id not in self._jobs:
            logger.bind(job_id=job_id).info("job_registered")
        self._jobs[job_id] = func

    def is_job_registered(self, job_id: str) -> bool:
        return job_id in self._jobs

    def schedule_repeating(
        self, key: TriggerKey, job_id: str, interval_minutes: int
    ) -> datetime | None:
        self._require_running()
        func = self._get_job(job_id)
        now = datetime.now(self._scheduler.timezone)

        job = self._scheduler.add_job(
            func,
            trigger=IntervalTrigger(minutes=interval_minutes, start_date=now),
            id=key.id,
            name=key.name,
            kwargs={"trigger_name": key.name, "trigger_group": key.group},
            replace_existing=True,
            # Start now: the first fire happens immediately, not one interval later
            next_run_time=now,
        )

        next_fire_time = to_naive_utc(job.next_run_time)
        logger.bind(
            trigger_id=key.id,
            job_id=job_id,
            interval_minutes=interval_minutes,
            next_fire_time=str(next_fire_time),
        ).info("trigger_scheduled")
        return next_fire_time

    def unschedule(self, key: TriggerKey) -> bool:
        self._require_running()
        try:
            self._scheduler.remove_job(key.id)
        except JobLookupError:
            return False
        logger.bind(trigger_id=key.id).info("trigger_unscheduled")
        return True

    def trigger_now(self, job_id: str) -> str:
        self._require_running()
        func = self._get_job(job_id)

        # One-shot job with its own id so it never collides with the repeating trigger
        run_id = f"{job_id}.manual.{uuid.uuid4().hex[:12]}"
        self._scheduler.add_job(
            func,
            id=run_id,
            name=MANUAL_TRIGGER_NAME,
            kwargs={"trigger_name": MANUAL_TRIGGER_NAME, "trigger_group": MANUAL_TRIGGER_GROUP},
            misfire_grace_time=None,
        )
        logger.bind(job_id=job_id, run_id=run_id).info("job_triggered_manually")
        return run_id

    def get_trigger_info(self, key: TriggerKey) -> TriggerInfo:
        self._require_running()
        job = self._scheduler.get_job(key.id)
        if job is None:
            return TriggerInfo(exists=False, state=TRIGGER_STATE_NONE)

        interval = getattr(job.trigger, "interval", None)
        interval_minutes = int(interval.total_seconds() // 60) if interval else None
        if job.next_run_time is None:
            return TriggerInfo(
                exists=True, state=TRIGGER_STATE_PAUSED, interval_minutes=interval_minutes
            )
        return TriggerInfo(
            exists=True,
            state=TRIGGER_STATE_NORMAL,
            next_fire_time=to_naive_utc(job.next_run_time),
            interval_minutes=interval_minutes,
        )

    def _require_running(self) -> None:
        if not self._scheduler.running:
            raise EngineUnavailableError("Scheduling engine is not running")

    def _get_job(self, job_id: str) -> JobFunc:
        func = self._jobs.get(job_id)
        if func is None:
            raise JobNotRegisteredError(job_id)
        return func

    def _on_job_event(self, event: JobExecutionEvent) -> None:
        """Log job outcomes reported by APScheduler."""
        log = logger.bind(job_id=event.job_id)
        if event.code == EVENT_JOB_MISSED:
            log.bind(scheduled_at=str(event.scheduled_run_time)).warning("job_fire_missed")
        elif event.exception is not None:
            log.bind(error=str(event.exception)).error("job_fire_failed")
        else:
            log.bind(result=event.retval).debug("job_fire_completed")
