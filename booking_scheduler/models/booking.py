"""Booking model consumed by the booking processor."""

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from booking_scheduler.core.datetime_utils import utc_now
from booking_scheduler.models.base import Base


class Booking(Base):
    """A booking awaiting (or done with) processing."""

    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    reference: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, index=True)
    processed_at: Mapped[datetime | None]

    def __repr__(self) -> str:
        return f"<Booking {self.reference}>"
