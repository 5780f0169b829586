"""
SQLAlchemy database models.
Defines the delay queue table.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from delayqueue.constants import CLAIM_UNCLAIMED, STATIC_PARTITION, TABLE_NAME
from delayqueue.types.item import DelayQueueItem

# JSONB on PostgreSQL, plain JSON elsewhere
PayloadType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class DelayQueueRow(Base):
    """
    Persistent form of a delay queue item.

    Key constraints:
    - ``id`` and ``scheduled_at`` never change after insert
    - ``claim_marker`` only moves 0 -> 1, through a conditional update
    - ``(partition_key, claim_marker, scheduled_at)`` serves the ready scan
    """

    __tablename__ = TABLE_NAME

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    scheduled_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    type: Mapped[str] = mapped_column(String(255), nullable=False)

    payload: Mapped[Any] = mapped_column(PayloadType, nullable=True)

    claim_marker: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=CLAIM_UNCLAIMED,
        server_default=str(CLAIM_UNCLAIMED),
    )

    partition_key: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=STATIC_PARTITION,
        server_default=str(STATIC_PARTITION),
    )

    claimed_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        Index(
            "ix_task_delay_queue_ready",
            "partition_key",
            "claim_marker",
            "scheduled_at",
        ),
        Index(
            "ix_task_delay_queue_claimed",
            "claim_marker",
            "claimed_at",
        ),
    )

    def to_item(self) -> DelayQueueItem:
        return DelayQueueItem(
            id=self.id,
            scheduled_at=self.scheduled_at,
            type=self.type,
            payload=self.payload,
            claim_marker=self.claim_marker,
            partition_key=self.partition_key,
            claimed_at=self.claimed_at,
        )

    def __repr__(self) -> str:
        return (
            f"DelayQueueRow(id={self.id}, type={self.type}, "
            f"scheduled_at={self.scheduled_at}, claim_marker={self.claim_marker})"
        )
