"""
Job variants carried by the pipeline queues.

Every variant shares the envelope fields (project, correlation id, retry
count, enqueue time) and adds its own payload. ``type`` is the discriminator
used when jobs are read back from a store.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class QueueName(str, Enum):
    """Names of the durable queues."""

    AGENT_TASKS = "agent-tasks"
    BUILD = "build"
    PUBLISH = "publish"
    INDEX = "index"
    MONITOR = "monitor"
    OPTIMIZE = "optimize"
    WEBHOOKS = "webhooks"


class BuildPhase(str, Enum):
    """Build phases in pipeline order."""

    RESEARCH = "research"
    ARCHITECTURE = "architecture"
    CONTENT = "content"
    ELEMENTOR = "elementor"
    LINKING = "linking"


class OptimizeReason(str, Enum):
    SCHEDULED = "scheduled"
    PERFORMANCE_DROP = "performance_drop"
    MANUAL = "manual"


class WebhookType(str, Enum):
    WORDPRESS_PUBLISH = "wordpress_publish"
    GSC_UPDATE = "gsc_update"
    CUSTOM = "custom"
    EVENT = "event"


class BaseJob(BaseModel):
    """Fields shared by every job variant."""

    project_id: str = Field(..., min_length=1)
    correlation_id: str = Field(..., min_length=1)
    retry_count: int = Field(default=0, ge=0)
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class AgentTaskJob(BaseJob):
    type: Literal["agent_task"] = "agent_task"
    agent_type: str
    input: dict[str, Any] = Field(default_factory=dict)
    page_id: str | None = None


class BuildJob(BaseJob):
    type: Literal["build"] = "build"
    phase: BuildPhase


class PublishJob(BaseJob):
    type: Literal["publish"] = "publish"
    page_id: str


class IndexJob(BaseJob):
    type: Literal["index"] = "index"
    url: str
    page_id: str | None = None


class MonitorJob(BaseJob):
    type: Literal["monitor"] = "monitor"


class OptimizeJob(BaseJob):
    type: Literal["optimize"] = "optimize"
    page_id: str
    reason: OptimizeReason = OptimizeReason.SCHEDULED


class WebhookJob(BaseJob):
    type: Literal["webhook"] = "webhook"
    webhook_type: WebhookType = WebhookType.CUSTOM
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: str


Job = Annotated[
    Union[
        AgentTaskJob,
        BuildJob,
        PublishJob,
        IndexJob,
        MonitorJob,
        OptimizeJob,
        WebhookJob,
    ],
    Field(discriminator="type"),
]

JOB_VARIANTS: tuple[type[BaseJob], ...] = (
    AgentTaskJob,
    BuildJob,
    PublishJob,
    IndexJob,
    MonitorJob,
    OptimizeJob,
    WebhookJob,
)

# Each variant runs on exactly one queue
QUEUE_FOR_VARIANT: dict[type[BaseJob], QueueName] = {
    AgentTaskJob: QueueName.AGENT_TASKS,
    BuildJob: QueueName.BUILD,
    PublishJob: QueueName.PUBLISH,
    IndexJob: QueueName.INDEX,
    MonitorJob: QueueName.MONITOR,
    OptimizeJob: QueueName.OPTIMIZE,
    WebhookJob: QueueName.WEBHOOKS,
}

_job_adapter: TypeAdapter[BaseJob] = TypeAdapter(Job)


def parse_job(data: dict[str, Any]) -> BaseJob:
    """Rebuild a job variant from its stored JSON form."""
    return _job_adapter.validate_python(data)


def dump_job(job: BaseJob) -> dict[str, Any]:
    return job.model_dump(mode="json")
