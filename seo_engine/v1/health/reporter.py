from collections.abc import Callable

from seo_engine.config.logging import get_logger
from seo_engine.config.settings import Settings
from seo_engine.v1.queues.registry import QueueRegistry
from seo_engine.v1.queues.schemas import (
    HealthReport,
    QueueHealth,
    QueueMetrics,
    WorkerHealth,
)
from seo_engine.v1.queues.store import QueueStore

logger = get_logger(__name__)

WorkerSource = Callable[[], list[WorkerHealth]]


class HealthReporter:
    """Read-only view of queue counts and worker state, plus pause control."""

    def __init__(
        self,
        registry: QueueRegistry,
        store: QueueStore,
        settings: Settings,
        workers: WorkerSource | None = None,
    ):
        self.registry = registry
        self.store = store
        self.settings = settings
        self._workers = workers or (lambda: [])

    def attach_workers(self, workers: WorkerSource) -> None:
        self._workers = workers

    async def pause_flags(self) -> dict[str, bool]:
        """
        Paused queues mapped to whether every pause on them was expected.

        Operator pauses come from the store and are shared by all processes;
        a shutdown pause of this process comes from the registry.
        """
        flags = await self.store.paused_queues()
        for name, expected in self.registry.paused().items():
            flags[name] = flags.get(name, True) and expected
        return flags

    async def queue_health(self, flags: dict[str, bool] | None = None) -> list[QueueHealth]:
        if flags is None:
            flags = await self.pause_flags()
        report = []
        for name in self.registry.names():
            counts = await self.store.counts(name)
            report.append(
                QueueHealth(
                    name=name,
                    is_paused=name in flags,
                    **counts.model_dump(),
                )
            )
        return report

    def worker_health(self) -> list[WorkerHealth]:
        return self._workers()

    async def check_health(self) -> HealthReport:
        """
        Healthy when no queue is paused other than by an operator and every
        queue's failed count is below the threshold.
        """
        flags = await self.pause_flags()
        queues = await self.queue_health(flags)
        issues = []
        for queue in queues:
            if queue.is_paused and not flags[queue.name]:
                issues.append(f"queue {queue.name} is paused unexpectedly")
            if queue.failed >= self.settings.health_failed_threshold:
                issues.append(
                    f"queue {queue.name} has {queue.failed} failed jobs "
                    f"(threshold {self.settings.health_failed_threshold})"
                )

        if issues:
            logger.warning("Queue health degraded", issues=issues)

        return HealthReport(
            healthy=not issues,
            queues=queues,
            workers=self.worker_health(),
            issues=issues,
        )

    async def metrics(self) -> QueueMetrics:
        queues = await self.queue_health()
        workers = self.worker_health()
        return QueueMetrics(
            total_waiting=sum(q.waiting for q in queues),
            total_active=sum(q.active for q in queues),
            total_completed=sum(q.completed for q in queues),
            total_failed=sum(q.failed for q in queues),
            total_delayed=sum(q.delayed for q in queues),
            paused_queues=sum(1 for q in queues if q.is_paused),
            running_workers=sum(1 for w in workers if w.is_running),
            processed_jobs=sum(w.processed_jobs for w in workers),
            failed_jobs=sum(w.failed_jobs for w in workers),
        )

    async def pause(self, queue: str) -> bool:
        """Operator pause, seen by workers in every process. False for unknown queues."""
        if not self.registry.has(queue):
            return False
        await self.store.set_paused(queue, True, expected=True)
        logger.info("Queue paused", queue=queue, operator=True)
        return True

    async def resume(self, queue: str) -> bool:
        if not self.registry.has(queue):
            return False
        await self.store.set_paused(queue, False)
        self.registry.resume(queue)
        logger.info("Queue resumed", queue=queue)
        return True
