"""Scheduler error hierarchy.

Admin-facing handlers translate these into HTTP responses; see
`booking_scheduler.main` for the mapping.
"""


class SchedulerError(Exception):
    """Base class for all scheduler errors."""


class InvalidArgumentError(SchedulerError):
    """A caller-supplied value is out of range; nothing was mutated."""


class ConfigNotFoundError(SchedulerError):
    """The scheduler configuration row is missing.

    Only possible when the orchestrator was never initialized.
    """

    def __init__(self, config_name: str) -> None:
        self.config_name = config_name
        super().__init__(f"Scheduler configuration not found: {config_name}")


class EngineUnavailableError(SchedulerError):
    """The scheduling engine is not started or cannot be reached."""


class JobNotRegisteredError(EngineUnavailableError):
    """A job was fired before its definition was registered with the engine."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job does not exist: {job_id}")


class ProcessorFailureError(SchedulerError):
    """The booking processor failed for a run."""

    def __init__(self, execution_id: int | None, message: str) -> None:
        self.execution_id = execution_id
        super().__init__(message)
