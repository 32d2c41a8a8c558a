"""
Booking processor orchestration.

Reconciles the persisted scheduler config (what the administrator wants)
against the live scheduling engine (what is actually running), and runs
each fire of the booking job:

- Lifecycle: initialize / start / stop / reconfigure / trigger_now
- Status: derived from the engine, never from the persisted flag alone
- Runs: every fire gets an execution record; the processing window starts
  at the end of the last successful window, so failures never advance it
- Stale sweep: runs left STARTED by a dead process are marked FAILED

A single Orchestrator exists per process, built by `build_orchestrator()`.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_scheduler.config import AppConfig, HistorySettings, SchedulerSettings, get_config
from booking_scheduler.core.datetime_utils import get_cutoff, utc_now
from booking_scheduler.core.exceptions import (
    InvalidArgumentError,
    JobNotRegisteredError,
    ProcessorFailureError,
)
from booking_scheduler.core.logging import get_logger
from booking_scheduler.core.scheduler import (
    TRIGGER_STATE_ERROR,
    APSchedulerEngine,
    SchedulingEngine,
    TriggerInfo,
    TriggerKey,
)
from booking_scheduler.models.job_execution import ExecutionStatus
from booking_scheduler.models.scheduler_config import SchedulerConfig
from booking_scheduler.schemas.scheduler import (
    JobExecutionResponse,
    SchedulerHistory,
    SchedulerStatus,
)
from booking_scheduler.services.booking_processor import BookingProcessor, SqlBookingProcessor
from booking_scheduler.services.config_store import ConfigStore
from booking_scheduler.services.history_store import HistoryStore

logger = get_logger(__name__)

STATE_RUNNING = "RUNNING"
STATE_STOPPED = "STOPPED"
STATE_INCONSISTENT = "INCONSISTENT"
STATE_ERROR = "ERROR"

STALE_ERROR_MESSAGE = "stale"
SHUTDOWN_INTERRUPT_MESSAGE = "interrupted by shutdown"

SWEEP_JOB_ID = "maintenance.staleRunSweep"
SWEEP_TRIGGER_KEY = TriggerKey("staleRunSweepTrigger", "maintenance")


class Orchestrator:
    """Owns the booking job's lifecycle, run protocol and history."""

    def __init__(
        self,
        config_store: ConfigStore,
        history_store: HistoryStore,
        engine: SchedulingEngine,
        processor: BookingProcessor,
        settings: SchedulerSettings,
        history_settings: HistorySettings,
    ) -> None:
        self._config_store = config_store
        self._history_store = history_store
        self._engine = engine
        self._processor = processor
        self._settings = settings
        self._history_settings = history_settings

        self._trigger_key = TriggerKey(settings.trigger_name, settings.trigger_group)
        # Serializes start/stop/reconfigure within this process
        self._lifecycle_lock = asyncio.Lock()
        # Execution ids of runs currently executing in this process
        self._in_flight: set[int] = set()

    @property
    def job_id(self) -> str:
        return self._settings.job_id

    @property
    def trigger_key(self) -> TriggerKey:
        return self._trigger_key

    @property
    def in_flight(self) -> frozenset[int]:
        return frozenset(self._in_flight)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def ensure_config(self) -> SchedulerConfig:
        """Create the config row if absent (disabled, default interval and watermark)."""
        config, _ = await self._config_store.get_or_create(
            interval_minutes=self._settings.default_interval_minutes,
            start_from_time=get_cutoff(days=self._settings.default_lookback_days),
        )
        return config

    async def initialize(self) -> SchedulerStatus:
        """
        Bring the process to a known state at startup.

        A restarted process never resumes scheduled execution on its own
        unless `resume_on_startup` is set: the config is forced to disabled,
        any trigger left over under the well-known key is removed, and the
        job is registered without a trigger.
        """
        config = await self.ensure_config()
        was_enabled = config.enabled
        resume = self._settings.resume_on_startup and was_enabled

        def _force_stopped(c: SchedulerConfig) -> None:
            c.enabled = False
            c.next_run_time = None

        await self._config_store.update_config(_force_stopped)
        if was_enabled and not resume:
            logger.bind(config_name=self._config_store.config_name).warning(
                "scheduler_not_resumed_after_restart"
            )

        self._engine.start()
        if self._engine.unschedule(self._trigger_key):
            logger.bind(trigger_id=self._trigger_key.id).warning("leftover_trigger_removed")
        self._engine.ensure_job_registered(self.job_id, self.on_run)

        if self._settings.stale_sweep_interval_minutes > 0:
            self._engine.ensure_job_registered(SWEEP_JOB_ID, self._run_stale_sweep)
            self._engine.schedule_repeating(
                SWEEP_TRIGGER_KEY, SWEEP_JOB_ID, self._settings.stale_sweep_interval_minutes
            )

        logger.bind(job_id=self.job_id, resume=resume).info("scheduler_initialized")

        if resume:
            return await self.start(config.interval_minutes)
        return await self.status()

    async def start(self, interval_minutes: int) -> SchedulerStatus:
        """
        Schedule the repeating trigger and persist the running state.

        Starting an already-running scheduler with the same interval is a
        no-op; a different interval replaces the single trigger.

        Raises:
            InvalidArgumentError: If the interval is out of range
            EngineUnavailableError: If the engine is not started
        """
        self._validate_interval(interval_minutes)
        async with self._lifecycle_lock:
            await self._start_locked(interval_minutes)
        return await self.status()

    async def stop(self) -> SchedulerStatus:
        """Remove the trigger and persist the stopped state. Idempotent."""
        async with self._lifecycle_lock:
            await self._stop_locked()
        return await self.status()

    async def reconfigure(
        self,
        enabled: bool,
        interval_minutes: int,
        start_from_time: datetime | None = None,
    ) -> SchedulerStatus:
        """
        Update the interval (and optionally the watermark), then start or stop.

        The engine is driven first; the interval and watermark are persisted
        in the same transaction as the resulting state, so an engine failure
        leaves the config untouched.

        The watermark override is an administrative correction; in normal
        operation the watermark advances from completed runs.
        """
        self._validate_interval(interval_minutes)

        def _apply(c: SchedulerConfig) -> None:
            c.interval_minutes = interval_minutes
            if start_from_time is not None:
                c.start_from_time = start_from_time

        async with self._lifecycle_lock:
            if enabled:
                await self._start_locked(interval_minutes, also=_apply)
            else:
                await self._stop_locked(also=_apply)

        if start_from_time is not None:
            logger.bind(start_from_time=str(start_from_time)).warning("watermark_overridden")
        return await self.status()

    async def trigger_now(self) -> None:
        """
        Fire the booking job once, independent of any recurring trigger.

        Raises:
            JobNotRegisteredError: If the job was never registered
        """
        if not self._engine.is_job_registered(self.job_id):
            raise JobNotRegisteredError(self.job_id)
        self._engine.ensure_job_registered(self.job_id, self.on_run)
        self._engine.trigger_now(self.job_id)

    async def shutdown(self) -> None:
        """Mark this process's in-flight runs INTERRUPTED and stop the engine."""
        now = utc_now()
        for execution_id in list(self._in_flight):
            try:
                await self._history_store.interrupt_execution(
                    execution_id, now, SHUTDOWN_INTERRUPT_MESSAGE
                )
            except Exception as e:
                logger.bind(execution_id=execution_id, error=str(e)).error(
                    "execution_interrupt_record_failed"
                )
        self._engine.shutdown()
        logger.info("scheduler_shutdown")

    async def _start_locked(
        self,
        interval_minutes: int,
        also: Callable[[SchedulerConfig], None] | None = None,
    ) -> None:
        info = self._engine.get_trigger_info(self._trigger_key)
        config = await self._config_store.get_config()
        if info.active and config.enabled and info.interval_minutes == interval_minutes:
            if also is not None:
                await self._config_store.update_config(also)
            logger.bind(interval_minutes=interval_minutes).info("scheduler_already_running")
            return

        # Engine first: if scheduling fails the persisted config is untouched
        self._engine.ensure_job_registered(self.job_id, self.on_run)
        next_fire_time = self._engine.schedule_repeating(
            self._trigger_key, self.job_id, interval_minutes
        )
        now = utc_now()

        def _mark_started(c: SchedulerConfig) -> None:
            if also is not None:
                also(c)
            c.enabled = True
            c.interval_minutes = interval_minutes
            c.last_start_time = now
            c.last_stop_time = None
            c.next_run_time = next_fire_time

        await self._config_store.update_config(_mark_started)
        logger.bind(
            interval_minutes=interval_minutes, next_run_time=str(next_fire_time)
        ).info("scheduler_started")

    async def _stop_locked(self, also: Callable[[SchedulerConfig], None] | None = None) -> None:
        removed = self._engine.unschedule(self._trigger_key)
        config = await self._config_store.get_config()
        if not removed and not config.enabled:
            if also is not None:
                await self._config_store.update_config(also)
            logger.info("scheduler_already_stopped")
            return

        now = utc_now()

        def _mark_stopped(c: SchedulerConfig) -> None:
            if also is not None:
                also(c)
            c.enabled = False
            c.last_stop_time = now
            c.next_run_time = None

        await self._config_store.update_config(_mark_stopped)
        logger.bind(trigger_removed=removed).info("scheduler_stopped")

    def _validate_interval(self, interval_minutes: int) -> None:
        if interval_minutes < 1:
            raise InvalidArgumentError("Interval minutes must be at least 1")
        maximum = self._settings.max_interval_minutes
        if interval_minutes > maximum:
            raise InvalidArgumentError(f"Interval minutes must be at most {maximum}")

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    async def status(self) -> SchedulerStatus:
        """
        Reconciled snapshot of config, engine and history.

        Engine and history query failures degrade the affected fields
        instead of failing the call. A missing config row still raises.
        """
        config = await self._config_store.get_config()
        s = self._settings

        info: TriggerInfo | None
        try:
            info = self._engine.get_trigger_info(self._trigger_key)
        except Exception as e:
            logger.bind(error=str(e)).error("trigger_state_query_failed")
            info = None

        if info is None:
            running = False
            trigger_state = TRIGGER_STATE_ERROR
            state = STATE_ERROR
            next_run_time = config.next_run_time
        else:
            running = info.active
            trigger_state = info.state
            next_run_time = info.next_fire_time
            if running and config.enabled:
                state = STATE_RUNNING
            elif not running and not config.enabled:
                state = STATE_STOPPED
            else:
                state = STATE_INCONSISTENT

        view = SchedulerStatus(
            job_name=s.job_name,
            job_group=s.job_group,
            enabled=config.enabled,
            running=running,
            status=state,
            interval_minutes=config.interval_minutes,
            last_start_time=config.last_start_time,
            last_stop_time=config.last_stop_time,
            last_run_time=config.last_run_time,
            next_run_time=next_run_time,
            start_from_time=config.start_from_time,
            trigger_state=trigger_state,
        )

        try:
            counts = await self._history_store.count_by_status(s.job_name, s.job_group)
            last_success = await self._history_store.find_last_successful(
                s.job_name, s.job_group
            )
            last_failure = await self._history_store.find_last_failed(s.job_name, s.job_group)
        except Exception as e:
            logger.bind(error=str(e)).error("history_summary_query_failed")
            return view

        view.total_executions = sum(counts.values())
        view.successful_executions = counts.get(ExecutionStatus.COMPLETED, 0)
        view.failed_executions = counts.get(ExecutionStatus.FAILED, 0) + counts.get(
            ExecutionStatus.INTERRUPTED, 0
        )
        if last_success is not None:
            view.last_successful_run = last_success.end_time
            view.next_window_start = last_success.process_to_time
        else:
            view.next_window_start = config.start_from_time or get_cutoff(
                days=s.default_lookback_days
            )
        if last_failure is not None:
            view.last_error_message = last_failure.error_message
        return view

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    async def resolve_watermark(self) -> datetime:
        """
        Start of the next processing window.

        End of the last successful window, falling back to the configured
        start time, falling back to the default lookback.
        """
        s = self._settings
        last_success = await self._history_store.find_last_successful(s.job_name, s.job_group)
        if last_success is not None and last_success.process_to_time is not None:
            return last_success.process_to_time

        config = await self._config_store.get_config()
        if config.start_from_time is not None:
            return config.start_from_time
        return get_cutoff(days=s.default_lookback_days)

    async def on_run(self, trigger_name: str, trigger_group: str) -> int:
        """
        Engine callback for every fire, scheduled or manual.

        History writes are best effort: a history outage never blocks or
        aborts the processing itself.

        Returns:
            Number of records processed

        Raises:
            ProcessorFailureError: If the processor failed; the run is
                recorded as FAILED and the watermark does not move
        """
        s = self._settings
        log = logger.bind(job_id=self.job_id, trigger=f"{trigger_group}.{trigger_name}")
        start_time = utc_now()
        log.info("booking_job_started")

        execution_id: int | None = None
        try:
            execution_id = await self._history_store.create_execution(
                s.job_name, s.job_group, trigger_name, trigger_group, start_time
            )
        except Exception as e:
            log.bind(error=str(e)).error("execution_record_create_failed")

        if execution_id is not None:
            self._in_flight.add(execution_id)
        log = log.bind(execution_id=execution_id)

        try:
            try:
                process_from_time = await self.resolve_watermark()
                # Window end is fixed before the call so a slow run can't shift it
                process_to_time = utc_now()
                records_processed = await self._processor.process(
                    process_from_time, process_to_time
                )
            except Exception as e:
                message = str(e) or type(e).__name__
                log.bind(error=message).error("booking_job_failed")
                await self._record_failure(execution_id, message)
                raise ProcessorFailureError(execution_id, f"Job execution failed: {message}") from e

            end_time = utc_now()
            await self._record_completion(
                execution_id, end_time, records_processed, process_from_time, process_to_time
            )
            await self._record_last_run(end_time)
            log.bind(
                records_processed=records_processed,
                process_from_time=str(process_from_time),
                process_to_time=str(process_to_time),
            ).info("booking_job_completed")
            return records_processed
        finally:
            if execution_id is not None:
                self._in_flight.discard(execution_id)

    async def _record_completion(
        self,
        execution_id: int | None,
        end_time: datetime,
        records_processed: int,
        process_from_time: datetime,
        process_to_time: datetime,
    ) -> None:
        try:
            await self._history_store.complete_execution(
                execution_id, end_time, records_processed, process_from_time, process_to_time
            )
        except Exception as e:
            logger.bind(execution_id=execution_id, error=str(e)).error(
                "execution_completion_record_failed"
            )

    async def _record_failure(self, execution_id: int | None, message: str) -> None:
        try:
            await self._history_store.fail_execution(execution_id, utc_now(), message)
        except Exception as e:
            logger.bind(execution_id=execution_id, error=str(e)).error(
                "execution_failure_record_failed"
            )

    async def _record_last_run(self, run_time: datetime) -> None:
        def _set_last_run(c: SchedulerConfig) -> None:
            c.last_run_time = run_time

        try:
            await self._config_store.update_config(_set_last_run)
        except Exception as e:
            logger.bind(error=str(e)).error("last_run_time_update_failed")

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    async def get_history(self, page: int, size: int, days: int | None = None) -> SchedulerHistory:
        """
        One page of execution history, most recent first.

        Raises:
            InvalidArgumentError: On a negative page, an out-of-range size, or
                a non-positive day filter
        """
        max_size = self._history_settings.max_page_size
        if page < 0:
            raise InvalidArgumentError("Page must be at least 0")
        if size < 1 or size > max_size:
            raise InvalidArgumentError(f"Size must be between 1 and {max_size}")
        if days is not None and days < 1:
            raise InvalidArgumentError("Days must be at least 1")

        since = get_cutoff(days=days) if days is not None else None
        return await self._history_page(page, size, since)

    async def get_latest(self, limit: int) -> SchedulerHistory:
        max_limit = self._history_settings.max_latest_limit
        if limit < 1 or limit > max_limit:
            raise InvalidArgumentError(f"Limit must be between 1 and {max_limit}")
        return await self._history_page(0, limit, None)

    async def _history_page(
        self, page: int, size: int, since: datetime | None
    ) -> SchedulerHistory:
        s = self._settings
        executions, total = await self._history_store.list_executions(
            s.job_name, s.job_group, page, size, since
        )
        return SchedulerHistory(
            executions=[JobExecutionResponse.model_validate(e) for e in executions],
            total_count=total,
            page=page,
            size=size,
        )

    # -------------------------------------------------------------------------
    # Stale-run sweep
    # -------------------------------------------------------------------------

    async def sweep_stale(self, threshold_minutes: int | None = None) -> int:
        """
        Mark runs abandoned in STARTED state as FAILED.

        A run counts as abandoned when it has no end time and started more
        than `threshold_minutes` ago. The watermark is unaffected: such runs
        never recorded a processed window.

        Returns:
            Number of records marked
        """
        if threshold_minutes is None:
            threshold_minutes = self._settings.stale_threshold_minutes
        if threshold_minutes < 1:
            raise InvalidArgumentError("Stale threshold must be at least 1 minute")

        stale = await self._history_store.find_running_older_than(
            get_cutoff(minutes=threshold_minutes)
        )
        now = utc_now()
        swept = 0
        for execution in stale:
            if await self._history_store.fail_execution(execution.id, now, STALE_ERROR_MESSAGE):
                swept += 1
                logger.bind(
                    execution_id=execution.id, start_time=str(execution.start_time)
                ).warning("stale_execution_marked_failed")

        if swept:
            logger.bind(swept=swept, threshold_minutes=threshold_minutes).info(
                "stale_sweep_completed"
            )
        return swept

    async def _run_stale_sweep(self, trigger_name: str, trigger_group: str) -> int:
        return await self.sweep_stale()


def build_orchestrator(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    engine: SchedulingEngine | None = None,
    processor: BookingProcessor | None = None,
    app_config: AppConfig | None = None,
) -> Orchestrator:
    """Composition root: wire the stores, engine and processor together."""
    app_config = app_config or get_config()

    if session_factory is None:
        # Import here so the module can be used without a configured database
        from booking_scheduler.core.database import AsyncSessionLocal

        session_factory = AsyncSessionLocal

    engine = engine or APSchedulerEngine()

    return Orchestrator(
        config_store=ConfigStore(session_factory, app_config.scheduler.config_name),
        history_store=HistoryStore(session_factory),
        engine=engine,
        processor=processor or SqlBookingProcessor(session_factory),
        settings=app_config.scheduler,
        history_settings=app_config.history,
    )
