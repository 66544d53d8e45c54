"""
Durable queue store contract and the in-memory implementation.

The engine never talks to a broker directly: dispatcher, workers and the
health reporter go through ``QueueStore``. ``InMemoryQueueStore`` keeps the
same semantics as the Postgres store (leases, visibility timeout, delayed
eligibility, retention, pause flags) inside one process and takes an
injectable clock.
"""

import asyncio
import itertools
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel

from seo_engine.config.logging import get_logger
from seo_engine.v1.queues.config import RetentionPolicy
from seo_engine.v1.queues.jobs import BaseJob

logger = get_logger(__name__)

DEFAULT_PRIORITY = 5


class JobStatus(str, Enum):
    """Lifecycle of a stored job."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueCounts(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0


@dataclass
class LeasedJob:
    """A job claimed by a worker until ``locked_until``."""

    id: str
    queue: str
    job: BaseJob
    priority: int
    locked_by: str
    locked_until: datetime


@dataclass
class JobRecord:
    """Read-only view of a stored job for inspection."""

    id: str
    queue: str
    job: BaseJob
    status: JobStatus
    priority: int
    run_at: datetime
    result: dict[str, Any] | None = None
    last_error: str | None = None
    finished_at: datetime | None = None


class QueueStore(Protocol):
    """What the engine needs from a durable FIFO/delayed job broker."""

    async def enqueue(
        self,
        queue: str,
        job: BaseJob,
        delay_ms: int = 0,
        priority: int = DEFAULT_PRIORITY,
    ) -> str:
        """Store a job that becomes eligible ``delay_ms`` after now."""
        ...

    async def enqueue_many(
        self,
        queue: str,
        entries: list[tuple[BaseJob, int]],
        priority: int = DEFAULT_PRIORITY,
    ) -> list[str]:
        """Atomically store ``(job, delay_ms)`` pairs; ids come back in order."""
        ...

    async def lease(
        self, queue: str, worker_id: str, lease_ms: int
    ) -> LeasedJob | None:
        """Claim the next eligible job, or None when nothing is eligible."""
        ...

    async def extend_leases(
        self, job_ids: list[str], worker_id: str, lease_ms: int
    ) -> None:
        ...

    async def complete(
        self, leased: LeasedJob, result: dict[str, Any] | None, retention: RetentionPolicy
    ) -> None:
        ...

    async def retry(self, leased: LeasedJob, delay_ms: int, error: str) -> None:
        """Return the job to waiting with its retry count incremented."""
        ...

    async def fail(
        self, leased: LeasedJob, error: str, retention: RetentionPolicy
    ) -> None:
        ...

    async def recover_stalled(self, queue: str) -> int:
        """Make jobs whose lease expired eligible again; returns how many."""
        ...

    async def counts(self, queue: str) -> QueueCounts:
        ...

    async def pending_for_project(self, queue: str, project_id: str) -> int:
        """Waiting or active jobs on ``queue`` for one project."""
        ...

    async def list_jobs(
        self, queue: str, status: JobStatus, limit: int = 50
    ) -> list[JobRecord]:
        ...

    async def set_paused(self, queue: str, paused: bool, expected: bool = True) -> None:
        """
        Pause or resume leasing on ``queue`` for every worker sharing the store.

        Pausing an already paused queue keeps its original ``expected`` flag.
        """
        ...

    async def is_paused(self, queue: str) -> bool:
        ...

    async def paused_queues(self) -> dict[str, bool]:
        """Paused queue names mapped to whether an operator paused them."""
        ...

    async def close(self) -> None:
        ...


@dataclass
class _Entry:
    id: str
    queue: str
    job: BaseJob
    priority: int
    run_at: datetime
    seq: int
    status: JobStatus = JobStatus.WAITING
    locked_by: str | None = None
    locked_until: datetime | None = None
    result: dict[str, Any] | None = None
    last_error: str | None = None
    finished_at: datetime | None = None
    history: list[str] = field(default_factory=list)

    def record(self) -> JobRecord:
        return JobRecord(
            id=self.id,
            queue=self.queue,
            job=self.job,
            status=self.status,
            priority=self.priority,
            run_at=self.run_at,
            result=self.result,
            last_error=self.last_error,
            finished_at=self.finished_at,
        )


class InMemoryQueueStore:
    """Process-local queue store with lease and retention semantics."""

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or (lambda: datetime.now(UTC))
        self._entries: dict[str, _Entry] = {}
        self._pauses: dict[str, bool] = {}
        self._seq = itertools.count()
        self._lock = asyncio.Lock()

    def now(self) -> datetime:
        return self._clock()

    async def enqueue(
        self,
        queue: str,
        job: BaseJob,
        delay_ms: int = 0,
        priority: int = DEFAULT_PRIORITY,
    ) -> str:
        async with self._lock:
            return self._insert(queue, job, delay_ms, priority)

    async def enqueue_many(
        self,
        queue: str,
        entries: list[tuple[BaseJob, int]],
        priority: int = DEFAULT_PRIORITY,
    ) -> list[str]:
        async with self._lock:
            return [
                self._insert(queue, job, delay_ms, priority)
                for job, delay_ms in entries
            ]

    def _insert(self, queue: str, job: BaseJob, delay_ms: int, priority: int) -> str:
        job_id = str(uuid.uuid4())
        self._entries[job_id] = _Entry(
            id=job_id,
            queue=queue,
            job=job,
            priority=priority,
            run_at=self.now() + timedelta(milliseconds=delay_ms),
            seq=next(self._seq),
        )
        return job_id

    async def lease(
        self, queue: str, worker_id: str, lease_ms: int
    ) -> LeasedJob | None:
        async with self._lock:
            now = self.now()
            eligible = [
                entry
                for entry in self._entries.values()
                if entry.queue == queue
                and entry.status == JobStatus.WAITING
                and entry.run_at <= now
            ]
            if not eligible:
                return None

            entry = min(eligible, key=lambda e: (e.priority, e.run_at, e.seq))
            entry.status = JobStatus.ACTIVE
            entry.locked_by = worker_id
            entry.locked_until = now + timedelta(milliseconds=lease_ms)
            entry.history.append("active")

            return LeasedJob(
                id=entry.id,
                queue=queue,
                job=entry.job,
                priority=entry.priority,
                locked_by=worker_id,
                locked_until=entry.locked_until,
            )

    async def extend_leases(
        self, job_ids: list[str], worker_id: str, lease_ms: int
    ) -> None:
        async with self._lock:
            until = self.now() + timedelta(milliseconds=lease_ms)
            for job_id in job_ids:
                entry = self._entries.get(job_id)
                if (
                    entry
                    and entry.status == JobStatus.ACTIVE
                    and entry.locked_by == worker_id
                ):
                    entry.locked_until = until

    async def complete(
        self, leased: LeasedJob, result: dict[str, Any] | None, retention: RetentionPolicy
    ) -> None:
        async with self._lock:
            entry = self._owned(leased)
            if entry is None:
                return
            entry.status = JobStatus.COMPLETED
            entry.result = result
            self._finish(entry)
            self._prune(leased.queue, JobStatus.COMPLETED, retention)

    async def retry(self, leased: LeasedJob, delay_ms: int, error: str) -> None:
        async with self._lock:
            entry = self._owned(leased)
            if entry is None:
                return
            entry.job = entry.job.model_copy(
                update={"retry_count": entry.job.retry_count + 1}
            )
            entry.status = JobStatus.WAITING
            entry.run_at = self.now() + timedelta(milliseconds=delay_ms)
            entry.last_error = error
            entry.locked_by = None
            entry.locked_until = None
            entry.history.append("retry")

    async def fail(
        self, leased: LeasedJob, error: str, retention: RetentionPolicy
    ) -> None:
        async with self._lock:
            entry = self._owned(leased)
            if entry is None:
                return
            entry.status = JobStatus.FAILED
            entry.last_error = error
            self._finish(entry)
            self._prune(leased.queue, JobStatus.FAILED, retention)

    async def recover_stalled(self, queue: str) -> int:
        async with self._lock:
            now = self.now()
            recovered = 0
            for entry in self._entries.values():
                if (
                    entry.queue == queue
                    and entry.status == JobStatus.ACTIVE
                    and entry.locked_until is not None
                    and entry.locked_until < now
                ):
                    entry.status = JobStatus.WAITING
                    entry.run_at = now
                    entry.locked_by = None
                    entry.locked_until = None
                    entry.last_error = "lease expired"
                    entry.history.append("stalled")
                    recovered += 1
            return recovered

    async def counts(self, queue: str) -> QueueCounts:
        async with self._lock:
            now = self.now()
            counts = QueueCounts()
            for entry in self._entries.values():
                if entry.queue != queue:
                    continue
                if entry.status == JobStatus.WAITING:
                    if entry.run_at > now:
                        counts.delayed += 1
                    else:
                        counts.waiting += 1
                elif entry.status == JobStatus.ACTIVE:
                    counts.active += 1
                elif entry.status == JobStatus.COMPLETED:
                    counts.completed += 1
                else:
                    counts.failed += 1
            return counts

    async def pending_for_project(self, queue: str, project_id: str) -> int:
        async with self._lock:
            return sum(
                1
                for entry in self._entries.values()
                if entry.queue == queue
                and entry.job.project_id == project_id
                and entry.status in (JobStatus.WAITING, JobStatus.ACTIVE)
            )

    async def list_jobs(
        self, queue: str, status: JobStatus, limit: int = 50
    ) -> list[JobRecord]:
        async with self._lock:
            entries = [
                entry
                for entry in self._entries.values()
                if entry.queue == queue and entry.status == status
            ]
            entries.sort(key=lambda e: e.seq)
            return [entry.record() for entry in entries[:limit]]

    async def set_paused(self, queue: str, paused: bool, expected: bool = True) -> None:
        async with self._lock:
            if paused:
                self._pauses.setdefault(queue, expected)
            else:
                self._pauses.pop(queue, None)

    async def is_paused(self, queue: str) -> bool:
        return queue in self._pauses

    async def paused_queues(self) -> dict[str, bool]:
        return dict(self._pauses)

    async def close(self) -> None:
        return None

    def _owned(self, leased: LeasedJob) -> _Entry | None:
        entry = self._entries.get(leased.id)
        if (
            entry is None
            or entry.status != JobStatus.ACTIVE
            or entry.locked_by != leased.locked_by
        ):
            # Lease was lost (expired and redelivered); the new holder owns it
            logger.warning(
                "Ignoring outcome for job without a live lease",
                queue=leased.queue,
                job_id=leased.id,
            )
            return None
        return entry

    def _finish(self, entry: _Entry) -> None:
        entry.finished_at = self.now()
        entry.locked_by = None
        entry.locked_until = None
        entry.history.append(entry.status.value)

    def _prune(self, queue: str, status: JobStatus, retention: RetentionPolicy) -> None:
        cutoff = self.now() - timedelta(seconds=retention.age_s)
        finished = sorted(
            (
                entry
                for entry in self._entries.values()
                if entry.queue == queue and entry.status == status
            ),
            key=lambda e: (e.finished_at, e.seq),
            reverse=True,
        )
        for index, entry in enumerate(finished):
            if index >= retention.count or entry.finished_at < cutoff:
                del self._entries[entry.id]
