from booking_scheduler.models.base import Base
from booking_scheduler.models.booking import Booking
from booking_scheduler.models.job_execution import ExecutionStatus, JobExecution
from booking_scheduler.models.scheduler_config import SchedulerConfig

__all__ = [
    "Base",
    "Booking",
    "ExecutionStatus",
    "JobExecution",
    "SchedulerConfig",
]
