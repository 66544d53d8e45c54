"""create queue_jobs table

Revision ID: 3b7c1e9a4f20
Revises:
Create Date: 2026-10-17 09:12:40.118204

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7c1e9a4f20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "queue_jobs",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("queue", sa.Text, nullable=False, comment="Queue name"),
        sa.Column(
            "type", sa.Text, nullable=False, comment="Job variant discriminator"
        ),
        sa.Column("project_id", sa.Text, nullable=False, comment="Owning project"),
        sa.Column(
            "correlation_id",
            sa.Text,
            nullable=False,
            comment="Trace id shared by a job's retries",
        ),
        sa.Column(
            "payload", sa.JSON, nullable=False, comment="Serialized job variant"
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="waiting",
            comment="Job status: waiting|active|completed|failed",
        ),
        sa.Column(
            "priority",
            sa.SmallInteger,
            nullable=False,
            server_default="5",
            comment="Priority 1-10, lower is higher priority",
        ),
        sa.Column(
            "run_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time the job may be leased",
        ),
        sa.Column(
            "retry_count",
            sa.SmallInteger,
            nullable=False,
            server_default="0",
            comment="Retries already scheduled",
        ),
        # Lease
        sa.Column(
            "locked_by", sa.Text, nullable=True, comment="Worker holding the lease"
        ),
        sa.Column(
            "locked_until",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Lease expiry",
        ),
        sa.Column("result", sa.JSON, nullable=True, comment="Handler result"),
        sa.Column("last_error", sa.Text, nullable=True, comment="Last error message"),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("finished_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('waiting', 'active', 'completed', 'failed')",
            name="queue_jobs_status_check",
        ),
        sa.CheckConstraint(
            "priority BETWEEN 1 AND 10", name="queue_jobs_priority_check"
        ),
    )

    # Lease scan: next waiting job per queue
    op.create_index(
        "ix_queue_jobs_queue_status_run_at", "queue_jobs", ["queue", "status", "run_at"]
    )
    # Pending-monitor lookups per project
    op.create_index(
        "ix_queue_jobs_queue_project_status",
        "queue_jobs",
        ["queue", "project_id", "status"],
    )
    op.create_index("ix_queue_jobs_locked_until", "queue_jobs", ["locked_until"])
    op.create_index("ix_queue_jobs_finished_at", "queue_jobs", ["finished_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("queue_jobs")
