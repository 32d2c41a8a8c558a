"""Persisted scheduler configuration (what the administrator wants)."""

from datetime import datetime

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from booking_scheduler.models.base import Base, TimestampMixin


class SchedulerConfig(Base, TimestampMixin):
    """Single-row desired state for the booking processor schedule."""

    __tablename__ = "scheduler_config"

    config_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    interval_minutes: Mapped[int] = mapped_column(Integer, default=30)

    # Watermark used when no run has completed yet
    start_from_time: Mapped[datetime | None]

    last_start_time: Mapped[datetime | None]
    last_stop_time: Mapped[datetime | None]
    last_run_time: Mapped[datetime | None]
    next_run_time: Mapped[datetime | None]

    def __repr__(self) -> str:
        return f"<SchedulerConfig {self.config_name} enabled={self.enabled}>"
