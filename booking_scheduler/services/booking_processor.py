"""Unit of work run by each scheduler fire: process bookings in a window."""

from abc import ABC, abstractmethod
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_scheduler.core.datetime_utils import utc_now
from booking_scheduler.core.logging import get_logger
from booking_scheduler.models.booking import Booking

logger = get_logger(__name__)


class BookingProcessor(ABC):
    """Abstract base class for booking processors."""

    processor_name: str = "unknown"

    @abstractmethod
    async def process(self, from_time: datetime, to_time: datetime) -> int:
        """
        Process bookings created in the window (from_time, to_time].

        Implementations must tolerate being handed a window that overlaps one
        already processed.

        Args:
            from_time: Exclusive lower bound (the watermark)
            to_time: Inclusive upper bound, fixed before the call

        Returns:
            Number of records processed
        """
        pass


class SqlBookingProcessor(BookingProcessor):
    """Marks unprocessed bookings in the window as processed."""

    processor_name = "sql"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def process(self, from_time: datetime, to_time: datetime) -> int:
        async with self._session_factory() as db, db.begin():
            result = await db.execute(
                update(Booking)
                .where(
                    Booking.created_at > from_time,
                    Booking.created_at <= to_time,
                    Booking.processed_at.is_(None),
                )
                .values(processed_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount or 0

        logger.bind(
            from_time=str(from_time), to_time=str(to_time), processed=count
        ).info("bookings_processed")
        return count
