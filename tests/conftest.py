"""
Pytest configuration and fixtures for booking scheduler tests.

Provides:
- Async test database with SQLite
- In-memory scheduling engine and booking processor fakes
- Orchestrator wired to both, and a test client for API testing
"""

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from booking_scheduler.config import AppConfig, Settings, get_config
from booking_scheduler.core.datetime_utils import utc_now
from booking_scheduler.core.exceptions import EngineUnavailableError, JobNotRegisteredError
from booking_scheduler.core.scheduler import (
    TRIGGER_STATE_NONE,
    TRIGGER_STATE_NORMAL,
    JobFunc,
    SchedulingEngine,
    TriggerInfo,
    TriggerKey,
)
from booking_scheduler.main import app
from booking_scheduler.models import Base, Booking, ExecutionStatus, JobExecution
from booking_scheduler.services.booking_processor import BookingProcessor
from booking_scheduler.services.config_store import ConfigStore
from booking_scheduler.services.history_store import HistoryStore
from booking_scheduler.services.orchestrator import Orchestrator, build_orchestrator

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# Override settings for testing
class TestSettings(Settings):
    database_url: str = TEST_DATABASE_URL
    debug: bool = True
    # Defaults only; never read the repo's config.yml
    config_path: str = "tests/does-not-exist.yml"
    scheduler_enabled: bool = False


# ============================================================================
# Fakes
# ============================================================================


class FakeSchedulingEngine(SchedulingEngine):
    """In-memory engine: records triggers and manual fires, never runs jobs."""

    def __init__(self) -> None:
        self._running = False
        self.jobs: dict[str, JobFunc] = {}
        # trigger id -> (job id, interval minutes, next fire time)
        self.triggers: dict[str, tuple[str, int, datetime]] = {}
        self.manual_fires: list[str] = []
        self.fail_queries = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True

    def shutdown(self) -> None:
        self._running = False

    def ensure_job_registered(self, job_id: str, func: JobFunc) -> None:
        self._require_running()
        self.jobs[job_id] = func

    def is_job_registered(self, job_id: str) -> bool:
        return job_id in self.jobs

    def schedule_repeating(
        self, key: TriggerKey, job_id: str, interval_minutes: int
    ) -> datetime | None:
        self._require_running()
        if job_id not in self.jobs:
            raise JobNotRegisteredError(job_id)
        next_fire_time = utc_now().replace(microsecond=0)
        self.triggers[key.id] = (job_id, interval_minutes, next_fire_time)
        return next_fire_time

    def unschedule(self, key: TriggerKey) -> bool:
        self._require_running()
        return self.triggers.pop(key.id, None) is not None

    def trigger_now(self, job_id: str) -> str:
        self._require_running()
        if job_id not in self.jobs:
            raise JobNotRegisteredError(job_id)
        self.manual_fires.append(job_id)
        return f"{job_id}.manual.{len(self.manual_fires)}"

    def get_trigger_info(self, key: TriggerKey) -> TriggerInfo:
        if self.fail_queries:
            raise RuntimeError("engine store unreachable")
        self._require_running()
        trigger = self.triggers.get(key.id)
        if trigger is None:
            return TriggerInfo(exists=False, state=TRIGGER_STATE_NONE)
        _, interval_minutes, next_fire_time = trigger
        return TriggerInfo(
            exists=True,
            state=TRIGGER_STATE_NORMAL,
            next_fire_time=next_fire_time,
            interval_minutes=interval_minutes,
        )

    def triggers_for(self, job_id: str) -> list[tuple[str, int, datetime]]:
        """Triggers bound to a job."""
        return [t for t in self.triggers.values() if t[0] == job_id]

    def _require_running(self) -> None:
        if not self._running:
            raise EngineUnavailableError("Scheduling engine is not running")


class FakeBookingProcessor(BookingProcessor):
    """Records every window it is handed."""

    processor_name = "fake"

    def __init__(self) -> None:
        self.calls: list[tuple[datetime, datetime]] = []
        self.result = 0
        self.error: Exception | None = None
        self.on_process: Callable[[], Awaitable[None]] | None = None

    async def process(self, from_time: datetime, to_time: datetime) -> int:
        self.calls.append((from_time, to_time))
        if self.on_process is not None:
            await self.on_process()
        if self.error is not None:
            raise self.error
        return self.result


# ============================================================================
# Database
# ============================================================================


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database, shared by every store."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# ============================================================================
# Scheduler wiring
# ============================================================================


@pytest.fixture
def app_config() -> AppConfig:
    """Default configuration, isolated from config.yml."""
    return AppConfig(TestSettings())


@pytest.fixture
def fake_engine() -> FakeSchedulingEngine:
    return FakeSchedulingEngine()


@pytest.fixture
def fake_processor() -> FakeBookingProcessor:
    return FakeBookingProcessor()


@pytest.fixture
def config_store(session_factory, app_config: AppConfig) -> ConfigStore:
    return ConfigStore(session_factory, app_config.scheduler.config_name)


@pytest.fixture
def history_store(session_factory) -> HistoryStore:
    return HistoryStore(session_factory)


@pytest.fixture
def orchestrator(
    session_factory,
    fake_engine: FakeSchedulingEngine,
    fake_processor: FakeBookingProcessor,
    app_config: AppConfig,
) -> Orchestrator:
    """Orchestrator on the fakes; not yet initialized."""
    return build_orchestrator(
        session_factory=session_factory,
        engine=fake_engine,
        processor=fake_processor,
        app_config=app_config,
    )


@pytest_asyncio.fixture
async def client(
    orchestrator: Orchestrator, app_config: AppConfig
) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with an initialized orchestrator."""
    await orchestrator.initialize()
    app.state.orchestrator = orchestrator
    app.dependency_overrides[get_config] = lambda: app_config

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.orchestrator = None


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def execution_factory(session_factory, app_config: AppConfig):
    """Factory for inserting execution records directly."""
    scheduler = app_config.scheduler

    async def _create_execution(
        status: ExecutionStatus = ExecutionStatus.COMPLETED,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        error_message: str | None = None,
        process_from_time: datetime | None = None,
        process_to_time: datetime | None = None,
        records_processed: int | None = None,
    ) -> JobExecution:
        start_time = start_time or utc_now()
        if end_time is None and status.is_terminal:
            end_time = start_time + timedelta(seconds=5)

        execution = JobExecution(
            job_name=scheduler.job_name,
            job_group=scheduler.job_group,
            trigger_name=scheduler.trigger_name,
            trigger_group=scheduler.trigger_group,
            start_time=start_time,
            end_time=end_time,
            status=status,
            error_message=error_message,
            process_from_time=process_from_time,
            process_to_time=process_to_time,
            records_processed=records_processed,
        )
        async with session_factory() as db, db.begin():
            db.add(execution)
        return execution

    return _create_execution


@pytest_asyncio.fixture
async def booking_factory(session_factory):
    """Factory for creating test bookings."""

    async def _create_booking(
        created_at: datetime,
        processed_at: datetime | None = None,
        reference: str | None = None,
    ) -> Booking:
        booking = Booking(
            reference=reference or f"BK-{uuid.uuid4().hex[:8]}",
            created_at=created_at,
            processed_at=processed_at,
        )
        async with session_factory() as db, db.begin():
            db.add(booking)
        return booking

    return _create_booking
