"""
Queue health and metrics schemas.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class QueueHealth(BaseModel):
    """Counts and pause state for one queue."""

    name: str
    waiting: int = Field(..., ge=0)
    active: int = Field(..., ge=0)
    completed: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)
    delayed: int = Field(..., ge=0)
    is_paused: bool


class WorkerHealth(BaseModel):
    """Runtime state of the worker attached to one queue."""

    queue_name: str
    is_running: bool
    active_jobs: int = Field(..., ge=0)
    processed_jobs: int = Field(..., ge=0)
    failed_jobs: int = Field(..., ge=0)
    last_job_timestamp: datetime | None = None


class HealthReport(BaseModel):
    healthy: bool
    queues: list[QueueHealth]
    workers: list[WorkerHealth]
    issues: list[str] = Field(default_factory=list)


class QueueMetrics(BaseModel):
    """Totals across every queue and worker."""

    total_waiting: int
    total_active: int
    total_completed: int
    total_failed: int
    total_delayed: int
    paused_queues: int
    running_workers: int
    processed_jobs: int
    failed_jobs: int


class QueueActionResponse(BaseModel):
    queue: str
    is_paused: bool
