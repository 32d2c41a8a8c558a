"""Job execution history model."""

import enum
from datetime import datetime

from sqlalchemy import BigInteger, Enum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from booking_scheduler.models.base import Base


class ExecutionStatus(str, enum.Enum):
    """Execution record status. Everything but STARTED is terminal."""

    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    INTERRUPTED = "INTERRUPTED"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.STARTED


class JobExecution(Base):
    """Records each attempt to run the booking processor."""

    __tablename__ = "job_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_name: Mapped[str] = mapped_column(String(200), index=True)
    job_group: Mapped[str] = mapped_column(String(200))
    trigger_name: Mapped[str | None] = mapped_column(String(200))
    trigger_group: Mapped[str | None] = mapped_column(String(200))

    start_time: Mapped[datetime] = mapped_column(index=True)
    end_time: Mapped[datetime | None]
    status: Mapped[ExecutionStatus] = mapped_column(
        Enum(
            ExecutionStatus,
            values_callable=lambda e: [x.value for x in e],
            name="executionstatus",
            create_type=False,
        ),
        default=ExecutionStatus.STARTED,
        index=True,
    )

    error_message: Mapped[str | None] = mapped_column(Text)
    records_processed: Mapped[int | None] = mapped_column(BigInteger)
    duration_ms: Mapped[int | None] = mapped_column(BigInteger)

    # Watermark window actually processed by this run
    process_from_time: Mapped[datetime | None]
    process_to_time: Mapped[datetime | None]

    def __repr__(self) -> str:
        return f"<JobExecution {self.id} {self.status.value}>"
