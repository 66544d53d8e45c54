"""
Queue workers with leases, heartbeats and stalled-job recovery.
"""

import asyncio
import os
import signal
import socket
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from seo_engine.config.logging import get_logger, job_context
from seo_engine.config.settings import Settings
from seo_engine.v1.core.rate_limit import FixedWindowRateLimiter
from seo_engine.v1.queues.config import QueueConfig
from seo_engine.v1.queues.jobs import JOB_VARIANTS, QUEUE_FOR_VARIANT, BaseJob
from seo_engine.v1.queues.registry import QueueRegistry
from seo_engine.v1.queues.retry import Outcome, decide
from seo_engine.v1.queues.schemas import WorkerHealth
from seo_engine.v1.queues.store import LeasedJob, QueueStore

logger = get_logger(__name__)

Handler = Callable[[BaseJob], Awaitable[dict[str, Any] | None]]
HandlerTable = dict[type[BaseJob], Handler]


class QueueWorker:
    """
    Leases and runs jobs from one queue.

    Features:
    - Up to ``max_concurrency`` handler tasks in flight
    - Pause flags (local and shared through the store) and the rate limiter
      observed before every lease
    - Heartbeats extend the leases of in-flight jobs
    - Expired leases are returned to waiting by the recovery loop
    - Handler errors are classified by the retry policy, never re-raised
    """

    def __init__(
        self,
        config: QueueConfig,
        registry: QueueRegistry,
        store: QueueStore,
        handlers: HandlerTable,
        settings: Settings,
        limiter_clock: Callable[[], float] | None = None,
    ):
        self.config = config
        self.queue = config.name.value
        self.registry = registry
        self.store = store
        self.settings = settings
        self.handlers = {
            variant: handler
            for variant, handler in handlers.items()
            if QUEUE_FOR_VARIANT[variant] == config.name
        }
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}-{self.queue}"

        limiter_args: dict[str, Any] = {}
        if limiter_clock is not None:
            limiter_args["clock"] = limiter_clock
        self.limiter = FixedWindowRateLimiter(
            config.limiter.max, config.limiter.duration_ms, **limiter_args
        )

        self.running = False
        self.processed_jobs = 0
        self.failed_jobs = 0
        self.last_job_timestamp: datetime | None = None
        self._slots = asyncio.Semaphore(config.max_concurrency)
        self._tasks: dict[str, asyncio.Task] = {}
        self._stopping = asyncio.Event()

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    def health(self) -> WorkerHealth:
        return WorkerHealth(
            queue_name=self.queue,
            is_running=self.running,
            active_jobs=self.active_jobs,
            processed_jobs=self.processed_jobs,
            failed_jobs=self.failed_jobs,
            last_job_timestamp=self.last_job_timestamp,
        )

    async def start(self) -> None:
        """Run the lease, heartbeat and recovery loops until stopped."""
        if self.running:
            raise RuntimeError("Worker is already running")

        self.running = True
        self._stopping.clear()
        logger.info(
            "Starting queue worker",
            queue=self.queue,
            worker_id=self.worker_id,
            concurrency=self.config.max_concurrency,
        )

        try:
            await asyncio.gather(
                self._lease_loop(),
                self._heartbeat_loop(),
                self._stalled_recovery_loop(),
            )
        finally:
            self.running = False

    async def stop(self, timeout_s: float | None = None) -> None:
        """Stop leasing, wait for in-flight jobs, cancel what is left."""
        timeout = self.settings.shutdown_timeout_s if timeout_s is None else timeout_s
        logger.info("Stopping queue worker", queue=self.queue, worker_id=self.worker_id)
        self._stopping.set()

        in_flight = list(self._tasks.values())
        if in_flight:
            _, pending = await asyncio.wait(in_flight, timeout=timeout)
            if pending:
                # Their leases expire and the jobs are redelivered
                logger.warning(
                    "Worker stopped with active jobs",
                    queue=self.queue,
                    active_jobs=len(pending),
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

    async def is_paused(self) -> bool:
        """Paused by this process's shutdown or, for every process, in the store."""
        if self.registry.is_paused(self.queue):
            return True
        return await self.store.is_paused(self.queue)

    async def run_once(self) -> bool:
        """Lease and process one job inline. Returns False when none was eligible."""
        if await self.is_paused() or not self.limiter.available(self.queue):
            return False
        leased = await self.store.lease(
            self.queue, self.worker_id, self.settings.lock_duration_ms
        )
        if leased is None:
            return False
        self.limiter.check(self.queue)
        await self.process(leased)
        return True

    async def drain(self) -> int:
        """Process eligible jobs inline until none is left; returns how many ran."""
        count = 0
        while await self.run_once():
            count += 1
        return count

    async def process(self, leased: LeasedJob) -> Outcome:
        """Run the handler for a leased job and record its outcome."""
        job = leased.job
        with job_context(
            queue=self.queue,
            job_id=leased.id,
            job_type=job.type,
            project_id=job.project_id,
            correlation_id=job.correlation_id,
        ):
            try:
                handler = self.handlers[type(job)]
                try:
                    result = await handler(job)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    return await self._handle_failure(leased, e)

                await self.store.complete(leased, result, self.config.retain_completed)
                self.processed_jobs += 1
                logger.info("Job completed", retry_count=job.retry_count)
                return Outcome.COMPLETED
            finally:
                self.last_job_timestamp = datetime.now(UTC)

    async def _handle_failure(self, leased: LeasedJob, error: Exception) -> Outcome:
        job = leased.job
        decision = decide(self.config, job.retry_count, error)
        message = f"{error.__class__.__name__}: {error}"

        if decision.outcome == Outcome.SKIPPED:
            await self.store.complete(
                leased,
                {"skipped": True, "reason": str(error)},
                self.config.retain_completed,
            )
            self.processed_jobs += 1
            logger.info("Job skipped", reason=str(error))
        elif decision.outcome == Outcome.RETRY:
            await self.store.retry(leased, decision.delay_ms, message)
            logger.warning(
                "Job retry scheduled",
                error=message,
                retry_count=job.retry_count + 1,
                delay_ms=decision.delay_ms,
            )
        else:
            await self.store.fail(leased, message, self.config.retain_failed)
            self.failed_jobs += 1
            logger.error(
                "Job failed", error=message, retry_count=job.retry_count
            )
        return decision.outcome

    async def _lease_loop(self) -> None:
        poll_s = self.settings.poll_interval_ms / 1000
        while not self._stopping.is_set():
            try:
                if await self.is_paused() or not self.limiter.available(self.queue):
                    await self._sleep(poll_s)
                    continue

                await self._slots.acquire()
                leased = None
                try:
                    if not self._stopping.is_set():
                        leased = await self.store.lease(
                            self.queue, self.worker_id, self.settings.lock_duration_ms
                        )
                finally:
                    if leased is None:
                        self._slots.release()

                if leased is None:
                    await self._sleep(poll_s)
                    continue

                self.limiter.check(self.queue)
                self._tasks[leased.id] = asyncio.create_task(self._run(leased))

            except Exception:
                logger.exception("Error in lease loop", queue=self.queue)
                await self._sleep(5)

    async def _run(self, leased: LeasedJob) -> None:
        try:
            await self.process(leased)
        except asyncio.CancelledError:
            logger.info("Job processing cancelled", queue=self.queue, job_id=leased.id)
            raise
        except Exception:
            # The store rejected the outcome; the lease expires and the job reruns
            logger.exception(
                "Failed to record job outcome", queue=self.queue, job_id=leased.id
            )
        finally:
            self._tasks.pop(leased.id, None)
            self._slots.release()

    async def _heartbeat_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                if self._tasks:
                    await self.store.extend_leases(
                        list(self._tasks),
                        self.worker_id,
                        self.settings.lock_duration_ms,
                    )
                await self._sleep(self.settings.heartbeat_interval_s)
            except Exception:
                logger.exception("Error extending leases", queue=self.queue)
                await self._sleep(self.settings.heartbeat_interval_s)

    async def _stalled_recovery_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                recovered = await self.store.recover_stalled(self.queue)
                if recovered:
                    logger.warning(
                        "Recovered stalled jobs", queue=self.queue, count=recovered
                    )
                await self._sleep(self.settings.stalled_check_interval_s)
            except Exception:
                logger.exception("Error in stalled job recovery", queue=self.queue)
                await self._sleep(self.settings.stalled_check_interval_s)

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except TimeoutError:
            pass


class WorkerPool:
    """One ``QueueWorker`` per queue, sharing a handler table."""

    def __init__(
        self,
        registry: QueueRegistry,
        store: QueueStore,
        handlers: HandlerTable,
        settings: Settings,
        queues: list[str] | None = None,
    ):
        missing = [variant.__name__ for variant in JOB_VARIANTS if variant not in handlers]
        if missing:
            raise RuntimeError(f"No handler registered for job variants: {missing}")

        self.registry = registry
        self.settings = settings
        names = queues or registry.names()
        unknown = [name for name in names if not registry.has(name)]
        if unknown:
            raise ValueError(f"Unknown queues: {unknown}")

        self.workers: dict[str, QueueWorker] = {
            name: QueueWorker(registry.config(name), registry, store, handlers, settings)
            for name in names
        }
        self._tasks: list[asyncio.Task] = []
        self._shutdown = asyncio.Event()

    def worker(self, queue: str) -> QueueWorker:
        return self.workers[queue]

    def health(self) -> list[WorkerHealth]:
        return [worker.health() for worker in self.workers.values()]

    async def start(self) -> None:
        if self._tasks:
            raise RuntimeError("Worker pool is already running")
        self._tasks = [
            asyncio.create_task(worker.start(), name=f"worker-{name}")
            for name, worker in self.workers.items()
        ]
        logger.info("Worker pool started", queues=list(self.workers))

    async def stop(self) -> None:
        """Graceful shutdown: pause leasing everywhere, then stop each worker."""
        self.registry.pause_all(expected=False)
        await asyncio.gather(*(worker.stop() for worker in self.workers.values()))
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = []
        logger.info("Worker pool stopped")

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def serve(self) -> None:
        """Run until SIGINT/SIGTERM, then shut down gracefully."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown)

        await self.start()
        try:
            await self._shutdown.wait()
        finally:
            await self.stop()
