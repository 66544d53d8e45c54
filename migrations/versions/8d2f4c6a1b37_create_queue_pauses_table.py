"""create queue_pauses table

Revision ID: 8d2f4c6a1b37
Revises: 3b7c1e9a4f20
Create Date: 2026-10-17 15:41:07.502913

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "8d2f4c6a1b37"
down_revision: Union[str, Sequence[str], None] = "3b7c1e9a4f20"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "queue_pauses",
        sa.Column("queue", sa.Text, primary_key=True, comment="Queue name"),
        sa.Column(
            "expected",
            sa.Boolean,
            nullable=False,
            server_default=sa.true(),
            comment="Paused by an operator action",
        ),
        sa.Column(
            "paused_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("queue_pauses")
