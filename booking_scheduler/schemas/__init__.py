from booking_scheduler.schemas.scheduler import (
    JobExecutionResponse,
    SchedulerConfigRequest,
    SchedulerHistory,
    SchedulerStatus,
    SweepResponse,
)

__all__ = [
    "JobExecutionResponse",
    "SchedulerConfigRequest",
    "SchedulerHistory",
    "SchedulerStatus",
    "SweepResponse",
]
