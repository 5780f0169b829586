"""
The delay queue item: the scheduling record for one delayed job.
"""

import time
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from delayqueue.constants import CLAIM_UNCLAIMED, STATIC_PARTITION


def new_item_id() -> str:
    """Generate a random, collision-resistant item ID."""
    return uuid4().hex


class DelayQueueItem(BaseModel):
    """
    A job scheduled to be dispatched at or after ``scheduled_at``.

    Items are immutable snapshots. ``claim_marker`` only ever changes inside
    the store, through the atomic 0 -> 1 claim; a fetched item reflects the
    store state at the time it was read.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_item_id)
    scheduled_at: int = 0
    type: str
    payload: Any = None
    claim_marker: int = CLAIM_UNCLAIMED
    partition_key: int = STATIC_PARTITION
    claimed_at: int | None = None

    @classmethod
    def create(
        cls,
        item_type: str,
        scheduled_at: int | None = None,
        payload: Any = None,
    ) -> "DelayQueueItem":
        """
        Build a new unclaimed item with a fresh ID.

        Args:
            item_type: Job kind, interpreted by the downstream consumer.
            scheduled_at: Unix timestamp of the earliest dispatch; defaults to now.
            payload: Serializable data carried through to the job envelope.

        Returns:
            The new item (not yet persisted).
        """
        return cls(
            type=item_type,
            scheduled_at=scheduled_at or int(time.time()),
            payload=payload,
        )

    @property
    def is_claimed(self) -> bool:
        return self.claim_marker != CLAIM_UNCLAIMED

    def is_ready(self, now: int | None = None) -> bool:
        """Check whether the item is due and still unclaimed."""
        if now is None:
            now = int(time.time())
        return not self.is_claimed and self.scheduled_at < now

    def with_defaults(self) -> "DelayQueueItem":
        """Return a copy with a missing ID or schedule time filled in."""
        update: dict[str, Any] = {}
        if not self.id:
            update["id"] = new_item_id()
        if not self.scheduled_at:
            update["scheduled_at"] = int(time.time())
        return self.model_copy(update=update) if update else self
