"""
Durable queue tables used by the Postgres queue store.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, TIMESTAMP, Boolean, CheckConstraint, SmallInteger, Text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from seo_engine.infra.database import Base
from seo_engine.v1.queues.store import JobStatus


class QueueJob(Base):
    """
    One job on one named queue.

    Rows move waiting -> active -> completed|failed. A retry puts the row
    back to waiting with a later ``run_at``; an expired lease puts it back
    to waiting immediately.
    """

    __tablename__ = "queue_jobs"

    id: Mapped[UUID] = mapped_column(PG_UUID, primary_key=True, default=uuid4)
    queue: Mapped[str] = mapped_column(Text, nullable=False, comment="Queue name")
    type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job variant discriminator"
    )
    project_id: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Owning project"
    )
    correlation_id: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Trace id shared by a job's retries"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, comment="Serialized job variant"
    )

    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.WAITING.value,
        comment="Job status: waiting|active|completed|failed",
    )
    priority: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
        default=5,
        comment="Priority 1-10, lower is higher priority",
    )
    run_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default="now()",
        comment="Earliest time the job may be leased",
    )
    retry_count: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Retries already scheduled"
    )

    # Lease
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker holding the lease"
    )
    locked_until: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Lease expiry"
    )

    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Handler result"
    )
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default="now()",
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default="now()",
        default=lambda: datetime.now(UTC),
    )
    finished_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    # Indexes are created in the migration
    __table_args__ = (
        CheckConstraint(
            "status IN ('waiting', 'active', 'completed', 'failed')",
            name="queue_jobs_status_check",
        ),
        CheckConstraint("priority BETWEEN 1 AND 10", name="queue_jobs_priority_check"),
    )


class QueuePause(Base):
    """
    A paused queue. Workers in every process check this table before
    leasing; a queue without a row is running.
    """

    __tablename__ = "queue_pauses"

    queue: Mapped[str] = mapped_column(Text, primary_key=True, comment="Queue name")
    expected: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Paused by an operator action",
    )
    paused_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default="now()",
        default=lambda: datetime.now(UTC),
    )
