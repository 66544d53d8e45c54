"""
Dispatcher: the only way jobs get onto a queue.

Callers pick a queue and a job variant; the dispatcher checks the pairing,
the delay and the priority, then hands the job to the store. Bulk scheduling
staggers delays by submission index so downstream rate limits are respected.
"""

import secrets
import time
from typing import Any

from seo_engine.config.logging import get_logger
from seo_engine.v1.queues.errors import ValidationError
from seo_engine.v1.queues.jobs import (
    QUEUE_FOR_VARIANT,
    AgentTaskJob,
    BaseJob,
    BuildJob,
    BuildPhase,
    IndexJob,
    MonitorJob,
    OptimizeJob,
    OptimizeReason,
    PublishJob,
    QueueName,
    WebhookJob,
    WebhookType,
)
from seo_engine.v1.queues.registry import QueueRegistry
from seo_engine.v1.queues.store import DEFAULT_PRIORITY, QueueStore

logger = get_logger(__name__)

AGENT_TASK_STAGGER_MS = 100
PUBLISH_STAGGER_MS = 30_000
WEBHOOK_STAGGER_MS = 50


def new_correlation_id(prefix: str) -> str:
    """``<prefix>-<epoch_ms>-<random>``; unique per logical unit of work."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class Dispatcher:
    """Validates and enqueues jobs onto registered queues."""

    def __init__(self, registry: QueueRegistry, store: QueueStore):
        self.registry = registry
        self.store = store

    async def schedule(
        self,
        queue: QueueName | str,
        job: BaseJob,
        delay_ms: int = 0,
        priority: int | None = None,
    ) -> str:
        name = self._check(queue, [job], delay_ms)
        job_id = await self.store.enqueue(
            name, job, delay_ms, self._priority(priority)
        )
        logger.info(
            "Job scheduled",
            queue=name,
            job_id=job_id,
            job_type=job.type,
            project_id=job.project_id,
            correlation_id=job.correlation_id,
            delay_ms=delay_ms,
        )
        return job_id

    async def schedule_bulk(
        self,
        queue: QueueName | str,
        jobs: list[BaseJob],
        stagger_ms: int = 0,
        priority: int | None = None,
    ) -> list[str]:
        """Enqueue ``jobs`` atomically; job ``i`` is delayed ``i * stagger_ms``."""
        if not jobs:
            return []
        name = self._check(queue, jobs, stagger_ms)
        entries = [(job, index * stagger_ms) for index, job in enumerate(jobs)]
        job_ids = await self.store.enqueue_many(name, entries, self._priority(priority))
        logger.info(
            "Jobs scheduled",
            queue=name,
            count=len(job_ids),
            stagger_ms=stagger_ms,
            project_ids=sorted({job.project_id for job in jobs}),
        )
        return job_ids

    # Typed helpers

    async def schedule_agent_task(
        self,
        project_id: str,
        agent_type: str,
        input: dict[str, Any],
        page_id: str | None = None,
        delay_ms: int = 0,
        correlation_id: str | None = None,
    ) -> str:
        job = AgentTaskJob(
            project_id=project_id,
            correlation_id=correlation_id or new_correlation_id("agent"),
            agent_type=agent_type,
            input=input,
            page_id=page_id,
        )
        return await self.schedule(QueueName.AGENT_TASKS, job, delay_ms)

    async def schedule_agent_tasks(
        self, project_id: str, tasks: list[dict[str, Any]]
    ) -> list[str]:
        """Each task is ``{"agent_type", "input", "page_id"?}``."""
        jobs = [
            AgentTaskJob(
                project_id=project_id,
                correlation_id=new_correlation_id("agent"),
                agent_type=task["agent_type"],
                input=task.get("input", {}),
                page_id=task.get("page_id"),
            )
            for task in tasks
        ]
        return await self.schedule_bulk(
            QueueName.AGENT_TASKS, jobs, AGENT_TASK_STAGGER_MS
        )

    async def schedule_build(
        self,
        project_id: str,
        phase: BuildPhase,
        delay_ms: int = 0,
        correlation_id: str | None = None,
    ) -> str:
        job = BuildJob(
            project_id=project_id,
            correlation_id=correlation_id or new_correlation_id(f"build-{phase.value}"),
            phase=phase,
        )
        return await self.schedule(QueueName.BUILD, job, delay_ms)

    async def schedule_publish(
        self, project_id: str, page_id: str, delay_ms: int = 0
    ) -> str:
        job = PublishJob(
            project_id=project_id,
            correlation_id=new_correlation_id("publish"),
            page_id=page_id,
        )
        return await self.schedule(QueueName.PUBLISH, job, delay_ms)

    async def schedule_publish_batch(
        self, project_id: str, page_ids: list[str]
    ) -> list[str]:
        jobs = [
            PublishJob(
                project_id=project_id,
                correlation_id=new_correlation_id("publish"),
                page_id=page_id,
            )
            for page_id in page_ids
        ]
        return await self.schedule_bulk(QueueName.PUBLISH, jobs, PUBLISH_STAGGER_MS)

    async def schedule_index(
        self,
        project_id: str,
        url: str,
        page_id: str | None = None,
        delay_ms: int = 0,
    ) -> str:
        job = IndexJob(
            project_id=project_id,
            correlation_id=new_correlation_id("index"),
            url=url,
            page_id=page_id,
        )
        return await self.schedule(QueueName.INDEX, job, delay_ms)

    async def schedule_monitor(self, project_id: str, delay_ms: int = 0) -> str:
        job = MonitorJob(
            project_id=project_id, correlation_id=new_correlation_id("monitor")
        )
        return await self.schedule(QueueName.MONITOR, job, delay_ms)

    async def schedule_optimize(
        self,
        project_id: str,
        page_id: str,
        reason: OptimizeReason = OptimizeReason.SCHEDULED,
        delay_ms: int = 0,
    ) -> str:
        job = OptimizeJob(
            project_id=project_id,
            correlation_id=new_correlation_id("optimize"),
            page_id=page_id,
            reason=reason,
        )
        return await self.schedule(QueueName.OPTIMIZE, job, delay_ms)

    async def schedule_webhook(
        self,
        project_id: str,
        url: str,
        body: str,
        headers: dict[str, str] | None = None,
        webhook_type: WebhookType = WebhookType.CUSTOM,
        delay_ms: int = 0,
    ) -> str:
        job = WebhookJob(
            project_id=project_id,
            correlation_id=new_correlation_id("webhook"),
            webhook_type=webhook_type,
            url=url,
            headers=headers or {},
            body=body,
        )
        return await self.schedule(QueueName.WEBHOOKS, job, delay_ms)

    async def schedule_webhooks(
        self, project_id: str, deliveries: list[dict[str, Any]]
    ) -> list[str]:
        """Each delivery is ``{"url", "body", "headers"?, "webhook_type"?}``."""
        jobs = [
            WebhookJob(
                project_id=project_id,
                correlation_id=new_correlation_id("webhook"),
                webhook_type=delivery.get("webhook_type", WebhookType.CUSTOM),
                url=delivery["url"],
                headers=delivery.get("headers", {}),
                body=delivery["body"],
            )
            for delivery in deliveries
        ]
        return await self.schedule_bulk(QueueName.WEBHOOKS, jobs, WEBHOOK_STAGGER_MS)

    def _check(self, queue: QueueName | str, jobs: list[BaseJob], delay_ms: int) -> str:
        name = queue.value if isinstance(queue, QueueName) else queue
        if not self.registry.has(name):
            raise ValidationError(f"Unknown queue: {name}", {"queue": name})
        if delay_ms < 0:
            raise ValidationError(
                "Delay must not be negative", {"queue": name, "delay_ms": delay_ms}
            )
        for job in jobs:
            expected = QUEUE_FOR_VARIANT.get(type(job))
            if expected is None or expected.value != name:
                raise ValidationError(
                    f"{type(job).__name__} cannot be scheduled on queue {name}",
                    {"queue": name, "job_type": job.type},
                )
        return name

    @staticmethod
    def _priority(priority: int | None) -> int:
        if priority is None:
            return DEFAULT_PRIORITY
        if not 1 <= priority <= 10:
            raise ValidationError(
                "Priority must be between 1 and 10", {"priority": priority}
            )
        return priority
