"""Durable single-row scheduler configuration."""

from collections.abc import Callable
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_scheduler.core.datetime_utils import utc_now
from booking_scheduler.core.exceptions import ConfigNotFoundError
from booking_scheduler.core.logging import get_logger
from booking_scheduler.models.scheduler_config import SchedulerConfig

logger = get_logger(__name__)


class ConfigStore:
    """Reads and mutates the scheduler config row, one transaction per call."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config_name: str,
    ) -> None:
        self._session_factory = session_factory
        self._config_name = config_name

    @property
    def config_name(self) -> str:
        return self._config_name

    async def get_config(self) -> SchedulerConfig:
        """
        Load the config row.

        Raises:
            ConfigNotFoundError: If the row was never created
        """
        async with self._session_factory() as db:
            config = await db.get(SchedulerConfig, self._config_name)
        if config is None:
            raise ConfigNotFoundError(self._config_name)
        return config

    async def get_or_create(
        self, interval_minutes: int, start_from_time: datetime
    ) -> tuple[SchedulerConfig, bool]:
        """Load the config row, creating it disabled if absent.

        Returns:
            Tuple of (config, created)
        """
        async with self._session_factory() as db, db.begin():
            config = await db.get(SchedulerConfig, self._config_name)
            if config is not None:
                return config, False

            config = SchedulerConfig(
                config_name=self._config_name,
                enabled=False,
                interval_minutes=interval_minutes,
                start_from_time=start_from_time,
                created_at=utc_now(),
            )
            db.add(config)

        logger.bind(
            config_name=self._config_name,
            interval_minutes=interval_minutes,
            start_from_time=str(start_from_time),
        ).info("scheduler_config_created")
        return config, True

    async def update_config(self, mutator: Callable[[SchedulerConfig], None]) -> SchedulerConfig:
        """
        Apply a read-modify-write to the config row in a single transaction.

        The row is locked for the duration so concurrent start/stop calls
        cannot interleave; the last writer wins.

        Raises:
            ConfigNotFoundError: If the row was never created
        """
        async with self._session_factory() as db, db.begin():
            result = await db.execute(
                select(SchedulerConfig)
                .where(SchedulerConfig.config_name == self._config_name)
                .with_for_update()
            )
            config = result.scalar_one_or_none()
            if config is None:
                raise ConfigNotFoundError(self._config_name)

            mutator(config)
            config.updated_at = utc_now()

        return config
