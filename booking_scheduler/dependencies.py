from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from booking_scheduler.config import AppConfig, get_config
from booking_scheduler.services.orchestrator import Orchestrator


def get_orchestrator(request: Request) -> Orchestrator:
    """The process-wide orchestrator built in the application lifespan."""
    orchestrator: Orchestrator | None = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduler is disabled or not initialized",
        )
    return orchestrator


# Type aliases for dependency injection
SchedulerOrchestrator = Annotated[Orchestrator, Depends(get_orchestrator)]
Config = Annotated[AppConfig, Depends(get_config)]
