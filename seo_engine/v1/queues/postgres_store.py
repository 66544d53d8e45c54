"""
Postgres-backed queue store.

Leasing uses SELECT ... FOR UPDATE SKIP LOCKED so several worker processes
can share one table without claiming the same row twice.
"""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from seo_engine.config.logging import get_logger
from seo_engine.infra.database import Database
from seo_engine.v1.queues.config import RetentionPolicy
from seo_engine.v1.queues.jobs import BaseJob, dump_job, parse_job
from seo_engine.v1.queues.models import QueueJob, QueuePause
from seo_engine.v1.queues.store import (
    DEFAULT_PRIORITY,
    JobRecord,
    JobStatus,
    LeasedJob,
    QueueCounts,
)

logger = get_logger(__name__)


class PostgresQueueStore:
    """Queue store persisted in the ``queue_jobs`` and ``queue_pauses`` tables."""

    def __init__(self, database: Database):
        self.database = database

    async def enqueue(
        self,
        queue: str,
        job: BaseJob,
        delay_ms: int = 0,
        priority: int = DEFAULT_PRIORITY,
    ) -> str:
        ids = await self.enqueue_many(queue, [(job, delay_ms)], priority)
        return ids[0]

    async def enqueue_many(
        self,
        queue: str,
        entries: list[tuple[BaseJob, int]],
        priority: int = DEFAULT_PRIORITY,
    ) -> list[str]:
        now = datetime.now(UTC)
        rows = [
            QueueJob(
                queue=queue,
                type=job.type,
                project_id=job.project_id,
                correlation_id=job.correlation_id,
                payload=dump_job(job),
                priority=priority,
                run_at=now + timedelta(milliseconds=delay_ms),
                retry_count=job.retry_count,
            )
            for job, delay_ms in entries
        ]

        # One transaction: all of the batch is stored or none of it
        async with self.database.transaction() as session:
            session.add_all(rows)

        return [str(row.id) for row in rows]

    async def lease(
        self, queue: str, worker_id: str, lease_ms: int
    ) -> LeasedJob | None:
        now = datetime.now(UTC)
        locked_until = now + timedelta(milliseconds=lease_ms)

        async with self.database.transaction() as session:
            result = await session.execute(
                select(QueueJob)
                .where(
                    and_(
                        QueueJob.queue == queue,
                        QueueJob.status == JobStatus.WAITING.value,
                        QueueJob.run_at <= now,
                    )
                )
                .order_by(QueueJob.priority, QueueJob.run_at)
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None

            row.status = JobStatus.ACTIVE.value
            row.locked_by = worker_id
            row.locked_until = locked_until
            row.updated_at = now

            return LeasedJob(
                id=str(row.id),
                queue=queue,
                job=parse_job(row.payload),
                priority=row.priority,
                locked_by=worker_id,
                locked_until=locked_until,
            )

    async def extend_leases(
        self, job_ids: list[str], worker_id: str, lease_ms: int
    ) -> None:
        if not job_ids:
            return
        now = datetime.now(UTC)
        async with self.database.transaction() as session:
            await session.execute(
                update(QueueJob)
                .where(
                    and_(
                        QueueJob.id.in_([UUID(job_id) for job_id in job_ids]),
                        QueueJob.status == JobStatus.ACTIVE.value,
                        QueueJob.locked_by == worker_id,
                    )
                )
                .values(
                    locked_until=now + timedelta(milliseconds=lease_ms),
                    updated_at=now,
                )
            )

    async def complete(
        self, leased: LeasedJob, result: dict[str, Any] | None, retention: RetentionPolicy
    ) -> None:
        await self._finish(leased, JobStatus.COMPLETED, retention, result=result)

    async def fail(
        self, leased: LeasedJob, error: str, retention: RetentionPolicy
    ) -> None:
        await self._finish(leased, JobStatus.FAILED, retention, error=error)

    async def retry(self, leased: LeasedJob, delay_ms: int, error: str) -> None:
        now = datetime.now(UTC)
        retried = leased.job.model_copy(
            update={"retry_count": leased.job.retry_count + 1}
        )
        async with self.database.transaction() as session:
            outcome = await session.execute(
                update(QueueJob)
                .where(self._owned(leased))
                .values(
                    status=JobStatus.WAITING.value,
                    payload=dump_job(retried),
                    retry_count=retried.retry_count,
                    run_at=now + timedelta(milliseconds=delay_ms),
                    locked_by=None,
                    locked_until=None,
                    last_error=error,
                    updated_at=now,
                )
            )

        if outcome.rowcount == 0:
            self._log_lost_lease(leased)

    async def recover_stalled(self, queue: str) -> int:
        now = datetime.now(UTC)
        async with self.database.transaction() as session:
            outcome = await session.execute(
                update(QueueJob)
                .where(
                    and_(
                        QueueJob.queue == queue,
                        QueueJob.status == JobStatus.ACTIVE.value,
                        QueueJob.locked_until < now,
                    )
                )
                .values(
                    status=JobStatus.WAITING.value,
                    run_at=now,
                    locked_by=None,
                    locked_until=None,
                    last_error="lease expired",
                    updated_at=now,
                )
            )
            return outcome.rowcount or 0

    async def counts(self, queue: str) -> QueueCounts:
        now = datetime.now(UTC)
        async with self.database.session() as session:
            status_result = await session.execute(
                select(QueueJob.status, func.count(QueueJob.id))
                .where(QueueJob.queue == queue)
                .group_by(QueueJob.status)
            )
            by_status = dict(status_result.all())

            delayed_result = await session.execute(
                select(func.count(QueueJob.id)).where(
                    and_(
                        QueueJob.queue == queue,
                        QueueJob.status == JobStatus.WAITING.value,
                        QueueJob.run_at > now,
                    )
                )
            )
            delayed = delayed_result.scalar() or 0

        return QueueCounts(
            waiting=by_status.get(JobStatus.WAITING.value, 0) - delayed,
            active=by_status.get(JobStatus.ACTIVE.value, 0),
            completed=by_status.get(JobStatus.COMPLETED.value, 0),
            failed=by_status.get(JobStatus.FAILED.value, 0),
            delayed=delayed,
        )

    async def pending_for_project(self, queue: str, project_id: str) -> int:
        async with self.database.session() as session:
            result = await session.execute(
                select(func.count(QueueJob.id)).where(
                    and_(
                        QueueJob.queue == queue,
                        QueueJob.project_id == project_id,
                        QueueJob.status.in_(
                            [JobStatus.WAITING.value, JobStatus.ACTIVE.value]
                        ),
                    )
                )
            )
            return result.scalar() or 0

    async def list_jobs(
        self, queue: str, status: JobStatus, limit: int = 50
    ) -> list[JobRecord]:
        async with self.database.session() as session:
            result = await session.execute(
                select(QueueJob)
                .where(and_(QueueJob.queue == queue, QueueJob.status == status.value))
                .order_by(QueueJob.created_at)
                .limit(limit)
            )
            return [
                JobRecord(
                    id=str(row.id),
                    queue=row.queue,
                    job=parse_job(row.payload),
                    status=JobStatus(row.status),
                    priority=row.priority,
                    run_at=row.run_at,
                    result=row.result,
                    last_error=row.last_error,
                    finished_at=row.finished_at,
                )
                for row in result.scalars().all()
            ]

    async def set_paused(self, queue: str, paused: bool, expected: bool = True) -> None:
        async with self.database.transaction() as session:
            if paused:
                # The first pause wins; an operator pause is never downgraded
                await session.execute(
                    pg_insert(QueuePause)
                    .values(queue=queue, expected=expected, paused_at=datetime.now(UTC))
                    .on_conflict_do_nothing(index_elements=[QueuePause.queue])
                )
            else:
                await session.execute(delete(QueuePause).where(QueuePause.queue == queue))

    async def is_paused(self, queue: str) -> bool:
        async with self.database.session() as session:
            result = await session.execute(
                select(QueuePause.queue).where(QueuePause.queue == queue)
            )
            return result.scalar_one_or_none() is not None

    async def paused_queues(self) -> dict[str, bool]:
        async with self.database.session() as session:
            result = await session.execute(select(QueuePause.queue, QueuePause.expected))
            return dict(result.all())

    async def close(self) -> None:
        await self.database.close()

    async def _finish(
        self,
        leased: LeasedJob,
        status: JobStatus,
        retention: RetentionPolicy,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        now = datetime.now(UTC)
        values: dict[str, Any] = {
            "status": status.value,
            "locked_by": None,
            "locked_until": None,
            "finished_at": now,
            "updated_at": now,
        }
        if result is not None:
            values["result"] = result
        if error is not None:
            values["last_error"] = error

        async with self.database.transaction() as session:
            outcome = await session.execute(
                update(QueueJob).where(self._owned(leased)).values(**values)
            )
            if outcome.rowcount:
                await self._prune(session, leased.queue, status, retention, now)

        if outcome.rowcount == 0:
            self._log_lost_lease(leased)

    async def _prune(
        self,
        session: AsyncSession,
        queue: str,
        status: JobStatus,
        retention: RetentionPolicy,
        now: datetime,
    ) -> None:
        """Drop finished rows past the retention age or count."""
        scope = and_(QueueJob.queue == queue, QueueJob.status == status.value)

        await session.execute(
            delete(QueueJob).where(
                and_(scope, QueueJob.finished_at < now - timedelta(seconds=retention.age_s))
            )
        )

        keep = (
            select(QueueJob.id)
            .where(scope)
            .order_by(QueueJob.finished_at.desc())
            .limit(retention.count)
        )
        await session.execute(
            delete(QueueJob).where(and_(scope, QueueJob.id.not_in(keep)))
        )

    @staticmethod
    def _owned(leased: LeasedJob):
        return and_(
            QueueJob.id == UUID(leased.id),
            QueueJob.status == JobStatus.ACTIVE.value,
            QueueJob.locked_by == leased.locked_by,
        )

    @staticmethod
    def _log_lost_lease(leased: LeasedJob) -> None:
        logger.warning(
            "Ignoring outcome for job without a live lease",
            queue=leased.queue,
            job_id=leased.id,
        )
