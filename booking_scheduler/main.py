from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from booking_scheduler.api.router import api_router
from booking_scheduler.config import get_settings
from booking_scheduler.core.exceptions import InvalidArgumentError, SchedulerError
from booking_scheduler.core.logging import get_logger, setup_logging
from booking_scheduler.services.orchestrator import build_orchestrator

logger = get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    setup_logging()
    app.state.orchestrator = None
    if settings.scheduler_enabled:
        orchestrator = build_orchestrator()
        await orchestrator.initialize()
        app.state.orchestrator = orchestrator
    else:
        logger.info("scheduler_disabled_by_config")
    yield
    # Shutdown
    if app.state.orchestrator is not None:
        await app.state.orchestrator.shutdown()


app = FastAPI(
    title="Booking Scheduler",
    description="Recurring booking processor with an admin API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InvalidArgumentError)
async def invalid_argument_handler(request: Request, exc: InvalidArgumentError) -> JSONResponse:
    """Validation failures name the violated constraint."""
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed or missing parameters are bad requests, like out-of-range ones."""
    detail = "Invalid request"
    errors = exc.errors()
    if errors:
        first = errors[0]
        # Drop the location prefix so the field reads as the client sent it
        field = ".".join(str(p) for p in first["loc"] if p not in ("query", "body", "path"))
        detail = f"{field}: {first['msg']}" if field else first["msg"]

    logger.bind(path=request.url.path, detail=detail).info("request_validation_failed")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail})


@app.exception_handler(SchedulerError)
async def scheduler_error_handler(request: Request, exc: SchedulerError) -> JSONResponse:
    logger.bind(path=request.url.path, error=str(exc)).error("scheduler_request_failed")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc)},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Keep stack state out of responses; it goes to the logs."""
    logger.opt(exception=exc).bind(path=request.url.path).error("unhandled_request_error")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": f"Internal error while handling {request.url.path}"},
    )


# Include API routes
app.include_router(api_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for load balancers."""
    return {"status": "healthy"}
