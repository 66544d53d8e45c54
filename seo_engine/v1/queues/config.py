"""
Queue configuration: concurrency, retry, retention and rate limits per queue.
"""

from pydantic import BaseModel, ConfigDict, Field

from seo_engine.config.settings import Settings
from seo_engine.v1.queues.jobs import QueueName

DAY_S = 24 * 60 * 60


class RetentionPolicy(BaseModel):
    """How many finished jobs to keep, and for how long."""

    model_config = ConfigDict(frozen=True)

    count: int = Field(..., ge=0)
    age_s: int = Field(..., ge=0)


class LimiterPolicy(BaseModel):
    """At most ``max`` leases per ``duration_ms`` window."""

    model_config = ConfigDict(frozen=True)

    max: int = Field(..., ge=1)
    duration_ms: int = Field(..., ge=1)


class QueueConfig(BaseModel):
    """Immutable configuration for one named queue."""

    model_config = ConfigDict(frozen=True)

    name: QueueName
    max_concurrency: int = Field(..., ge=1)
    retry_attempts: int = Field(..., ge=0)
    backoff_base_ms: int = Field(..., ge=0)
    retain_completed: RetentionPolicy = RetentionPolicy(count=100, age_s=DAY_S)
    retain_failed: RetentionPolicy = RetentionPolicy(count=500, age_s=7 * DAY_S)
    limiter: LimiterPolicy = LimiterPolicy(max=10, duration_ms=60_000)


def build_queue_configs(settings: Settings) -> list[QueueConfig]:
    """Build the queue set for this process from settings."""
    attempts = settings.retry_attempts
    base_ms = settings.retry_delay_ms

    return [
        QueueConfig(
            name=QueueName.AGENT_TASKS,
            max_concurrency=settings.agent_tasks_concurrency,
            retry_attempts=5,
            backoff_base_ms=5000,
        ),
        QueueConfig(
            name=QueueName.BUILD,
            max_concurrency=settings.build_concurrency,
            retry_attempts=attempts,
            backoff_base_ms=base_ms,
        ),
        QueueConfig(
            name=QueueName.PUBLISH,
            max_concurrency=settings.publish_concurrency,
            retry_attempts=attempts,
            backoff_base_ms=base_ms,
            # publishing API allows a handful of writes per minute
            limiter=LimiterPolicy(max=5, duration_ms=60_000),
        ),
        QueueConfig(
            name=QueueName.INDEX,
            max_concurrency=settings.index_concurrency,
            retry_attempts=attempts,
            backoff_base_ms=base_ms,
        ),
        QueueConfig(
            name=QueueName.MONITOR,
            max_concurrency=settings.monitor_concurrency,
            retry_attempts=attempts,
            backoff_base_ms=base_ms,
        ),
        QueueConfig(
            name=QueueName.OPTIMIZE,
            max_concurrency=settings.optimize_concurrency,
            retry_attempts=attempts,
            backoff_base_ms=base_ms,
        ),
        QueueConfig(
            name=QueueName.WEBHOOKS,
            max_concurrency=settings.webhooks_concurrency,
            retry_attempts=10,
            backoff_base_ms=2000,
            limiter=LimiterPolicy(max=20, duration_ms=60_000),
        ),
    ]
