"""Scheduler admin API endpoints."""

from fastapi import APIRouter, Query, status
from fastapi.responses import PlainTextResponse

from booking_scheduler.core.datetime_utils import parse_start_from_time
from booking_scheduler.core.logging import get_logger
from booking_scheduler.dependencies import Config, SchedulerOrchestrator
from booking_scheduler.schemas.scheduler import (
    SchedulerConfigRequest,
    SchedulerHistory,
    SchedulerStatus,
    SweepResponse,
)

logger = get_logger(__name__)

router = APIRouter()


@router.get("/scheduler/status", response_model=SchedulerStatus)
async def get_scheduler_status(orchestrator: SchedulerOrchestrator) -> SchedulerStatus:
    """
    Get the reconciled scheduler status.

    `running` reflects the live trigger, not the persisted flag.
    """
    return await orchestrator.status()


@router.post("/scheduler/start", response_model=SchedulerStatus)
async def start_scheduler(
    orchestrator: SchedulerOrchestrator,
    interval_minutes: int = Query(default=30, alias="intervalMinutes"),
) -> SchedulerStatus:
    """Start the recurring booking job. The first run fires immediately."""
    return await orchestrator.start(interval_minutes)


@router.post("/scheduler/stop", response_model=SchedulerStatus)
async def stop_scheduler(orchestrator: SchedulerOrchestrator) -> SchedulerStatus:
    """Stop the recurring booking job. Stopping a stopped scheduler is not an error."""
    return await orchestrator.stop()


@router.put("/scheduler/config", response_model=SchedulerStatus)
async def update_scheduler_config(
    request: SchedulerConfigRequest,
    orchestrator: SchedulerOrchestrator,
) -> SchedulerStatus:
    """
    Update interval, enabled state and optionally the watermark.

    An unparseable startFromTime is ignored rather than rejected.
    """
    start_from_time = parse_start_from_time(request.start_from_time)
    if request.start_from_time and start_from_time is None:
        logger.bind(value=request.start_from_time).warning("start_from_time_ignored")

    return await orchestrator.reconfigure(
        enabled=request.enabled,
        interval_minutes=request.interval_minutes,
        start_from_time=start_from_time,
    )


@router.get("/scheduler/history", response_model=SchedulerHistory)
async def get_job_history(
    orchestrator: SchedulerOrchestrator,
    config: Config,
    page: int = Query(default=0),
    size: int | None = Query(default=None),
    days: int | None = Query(default=None),
) -> SchedulerHistory:
    """List execution history, most recent first."""
    if size is None:
        size = config.history.default_page_size
    return await orchestrator.get_history(page, size, days)


@router.get("/scheduler/history/latest", response_model=SchedulerHistory)
async def get_latest_executions(
    orchestrator: SchedulerOrchestrator,
    config: Config,
    limit: int | None = Query(default=None),
) -> SchedulerHistory:
    """Get the most recent executions."""
    if limit is None:
        limit = config.history.default_latest_limit
    return await orchestrator.get_latest(limit)


@router.post("/scheduler/run-now", response_class=PlainTextResponse)
async def run_job_now(orchestrator: SchedulerOrchestrator) -> PlainTextResponse:
    """Fire the booking job once, immediately."""
    try:
        await orchestrator.trigger_now()
    except Exception as e:
        logger.bind(error=str(e)).error("manual_trigger_failed")
        return PlainTextResponse(
            f"Failed to trigger job: {e}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    return PlainTextResponse("Job triggered successfully", status_code=status.HTTP_202_ACCEPTED)


@router.post("/scheduler/sweep-stale", response_model=SweepResponse)
async def sweep_stale_executions(orchestrator: SchedulerOrchestrator) -> SweepResponse:
    """Mark runs abandoned in STARTED state as FAILED."""
    swept = await orchestrator.sweep_stale()
    return SweepResponse(swept=swept)
