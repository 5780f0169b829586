"""Create the task delay queue table

Revision ID: 001
Revises: 
Create Date: 2026-10-16 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "task_delay_queue",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("scheduled_at", sa.BigInteger, nullable=False),
        sa.Column("type", sa.String(255), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=True),
        sa.Column("claim_marker", sa.Integer, nullable=False, server_default="0"),
        sa.Column("partition_key", sa.Integer, nullable=False, server_default="0"),
        sa.Column("claimed_at", sa.BigInteger, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    # Ready scan: partition_key = 0 AND claim_marker = 0 AND scheduled_at < now ORDER BY scheduled_at
    op.create_index(
        "ix_task_delay_queue_ready",
        "task_delay_queue",
        ["partition_key", "claim_marker", "scheduled_at"],
    )

    # Reaper scan over claimed items by claim age
    op.create_index(
        "ix_task_delay_queue_claimed",
        "task_delay_queue",
        ["claim_marker", "claimed_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_task_delay_queue_claimed", table_name="task_delay_queue")
    op.drop_index("ix_task_delay_queue_ready", table_name="task_delay_queue")
    op.drop_table("task_delay_queue")
