"""Durable log of booking processor execution attempts.

Records are created in STARTED state and updated exactly once into a
terminal state (COMPLETED, FAILED or INTERRUPTED). Terminal records are
never modified again and nothing here deletes them.
"""

from collections.abc import Callable
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_scheduler.core.datetime_utils import duration_ms
from booking_scheduler.core.logging import get_logger
from booking_scheduler.models.job_execution import ExecutionStatus, JobExecution

logger = get_logger(__name__)


class HistoryStore:
    """Execution history persistence with store-level paging."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_execution(
        self,
        job_name: str,
        job_group: str,
        trigger_name: str | None,
        trigger_group: str | None,
        start_time: datetime,
    ) -> int:
        """Append a STARTED record and return its id."""
        async with self._session_factory() as db, db.begin():
            execution = JobExecution(
                job_name=job_name,
                job_group=job_group,
                trigger_name=trigger_name,
                trigger_group=trigger_group,
                start_time=start_time,
                status=ExecutionStatus.STARTED,
            )
            db.add(execution)
            await db.flush()
            execution_id = execution.id

        return execution_id

    async def get_execution(self, execution_id: int) -> JobExecution | None:
        async with self._session_factory() as db:
            return await db.get(JobExecution, execution_id)

    async def update_execution(
        self,
        execution_id: int | None,
        mutator: Callable[[JobExecution], None],
    ) -> bool:
        """
        Apply a mutation to a STARTED record in a single transaction.

        A missing id (None or not found) or an already-terminal record is a
        no-op, never an error.

        Returns:
            True if the record was updated
        """
        if execution_id is None:
            return False

        async with self._session_factory() as db, db.begin():
            result = await db.execute(
                select(JobExecution).where(JobExecution.id == execution_id).with_for_update()
            )
            execution = result.scalar_one_or_none()
            if execution is None:
                logger.bind(execution_id=execution_id).warning("execution_not_found")
                return False
            if execution.status.is_terminal:
                logger.bind(
                    execution_id=execution_id, status=execution.status.value
                ).warning("execution_already_finished")
                return False

            mutator(execution)

        return True

    async def complete_execution(
        self,
        execution_id: int | None,
        end_time: datetime,
        records_processed: int,
        process_from_time: datetime,
        process_to_time: datetime,
    ) -> bool:
        def _complete(execution: JobExecution) -> None:
            execution.status = ExecutionStatus.COMPLETED
            execution.end_time = end_time
            execution.records_processed = records_processed
            execution.process_from_time = process_from_time
            execution.process_to_time = process_to_time
            execution.duration_ms = duration_ms(execution.start_time, end_time)

        return await self.update_execution(execution_id, _complete)

    async def fail_execution(
        self, execution_id: int | None, end_time: datetime, error_message: str
    ) -> bool:
        def _fail(execution: JobExecution) -> None:
            execution.status = ExecutionStatus.FAILED
            execution.end_time = end_time
            execution.error_message = error_message
            execution.duration_ms = duration_ms(execution.start_time, end_time)

        return await self.update_execution(execution_id, _fail)

    async def interrupt_execution(
        self, execution_id: int | None, end_time: datetime, reason: str
    ) -> bool:
        def _interrupt(execution: JobExecution) -> None:
            execution.status = ExecutionStatus.INTERRUPTED
            execution.end_time = end_time
            execution.error_message = reason
            execution.duration_ms = duration_ms(execution.start_time, end_time)

        return await self.update_execution(execution_id, _interrupt)

    async def list_executions(
        self,
        job_name: str,
        job_group: str,
        page: int,
        size: int,
        since: datetime | None = None,
    ) -> tuple[list[JobExecution], int]:
        """
        Get one page of a job's history, most recent first.

        Args:
            page: Zero-based page number
            size: Page size
            since: Only include runs started at or after this time

        Returns:
            Tuple of (executions on the page, total matching count)
        """
        conditions = [JobExecution.job_name == job_name, JobExecution.job_group == job_group]
        if since is not None:
            conditions.append(JobExecution.start_time >= since)

        async with self._session_factory() as db:
            total_result = await db.execute(
                select(func.count(JobExecution.id)).where(*conditions)
            )
            total = total_result.scalar() or 0

            result = await db.execute(
                select(JobExecution)
                .where(*conditions)
                .order_by(JobExecution.start_time.desc(), JobExecution.id.desc())
                .offset(page * size)
                .limit(size)
            )
            executions = list(result.scalars().all())

        return executions, total

    async def find_last_successful(self, job_name: str, job_group: str) -> JobExecution | None:
        """Completed run with the furthest-advanced processing window."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(JobExecution)
                .where(
                    JobExecution.job_name == job_name,
                    JobExecution.job_group == job_group,
                    JobExecution.status == ExecutionStatus.COMPLETED,
                    JobExecution.process_to_time.is_not(None),
                )
                .order_by(JobExecution.process_to_time.desc(), JobExecution.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def find_last_failed(self, job_name: str, job_group: str) -> JobExecution | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(JobExecution)
                .where(
                    JobExecution.job_name == job_name,
                    JobExecution.job_group == job_group,
                    JobExecution.status.in_(
                        [ExecutionStatus.FAILED, ExecutionStatus.INTERRUPTED]
                    ),
                )
                .order_by(JobExecution.start_time.desc(), JobExecution.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def count_by_status(self, job_name: str, job_group: str) -> dict[ExecutionStatus, int]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(JobExecution.status, func.count(JobExecution.id))
                .where(JobExecution.job_name == job_name, JobExecution.job_group == job_group)
                .group_by(JobExecution.status)
            )
            return {status: count for status, count in result.all()}

    async def find_running_older_than(self, threshold: datetime) -> list[JobExecution]:
        """STARTED records with no end time that began before the threshold."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(JobExecution)
                .where(
                    JobExecution.status == ExecutionStatus.STARTED,
                    JobExecution.end_time.is_(None),
                    JobExecution.start_time < threshold,
                )
                .order_by(JobExecution.start_time)
            )
            return list(result.scalars().all())
