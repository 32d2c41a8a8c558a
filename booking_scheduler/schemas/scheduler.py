"""Pydantic schemas for the scheduler admin API."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from booking_scheduler.models.job_execution import ExecutionStatus


class CamelModel(BaseModel):
    """Base model serialized with camelCase field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# -----------------------------------------------------------------------------
# Status
# -----------------------------------------------------------------------------


class SchedulerStatus(CamelModel):
    """Reconciled view of the persisted config and the live engine."""

    job_name: str
    job_group: str
    enabled: bool
    running: bool
    status: str = Field(description="RUNNING, STOPPED, INCONSISTENT or ERROR")
    interval_minutes: int
    last_start_time: datetime | None = None
    last_stop_time: datetime | None = None
    last_run_time: datetime | None = None
    next_run_time: datetime | None = None
    start_from_time: datetime | None = None
    next_window_start: datetime | None = Field(
        default=None, description="Where the next run's processing window will begin"
    )
    trigger_state: str
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    last_successful_run: datetime | None = None
    last_error_message: str | None = None


# -----------------------------------------------------------------------------
# History
# -----------------------------------------------------------------------------


class JobExecutionResponse(CamelModel):
    """A single execution record."""

    id: int
    job_name: str
    job_group: str
    trigger_name: str | None
    trigger_group: str | None
    start_time: datetime
    end_time: datetime | None
    status: ExecutionStatus
    error_message: str | None
    records_processed: int | None
    duration_ms: int | None
    process_from_time: datetime | None
    process_to_time: datetime | None


class SchedulerHistory(CamelModel):
    """One page of execution history, most recent first."""

    executions: list[JobExecutionResponse]
    total_count: int
    page: int
    size: int


# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


class SchedulerConfigRequest(CamelModel):
    """Body of PUT /scheduler/config.

    Interval bounds are checked by the orchestrator so violations come back
    as 400 with the specific constraint.
    """

    enabled: bool
    interval_minutes: int
    start_from_time: str | None = Field(
        default=None, description="ISO datetime, or HH:MM for today at that time"
    )


class SweepResponse(CamelModel):
    """Result of a stale-run sweep."""

    swept: int
