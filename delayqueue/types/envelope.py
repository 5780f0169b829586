"""
Job envelope pushed to the work queue.
"""

from typing import Any

from pydantic import BaseModel

from delayqueue.types.item import DelayQueueItem


class JobEnvelope(BaseModel):
    """
    Message handed to the downstream work queue.

    Carries the item's type and payload unmodified, plus provenance so the
    consumer can acknowledge (delete) the originating item.
    """

    type: str
    payload: Any = None
    origin_id: str | None = None
    origin_scheduled_at: int | None = None

    @classmethod
    def from_item(cls, item: DelayQueueItem) -> "JobEnvelope":
        """Create the envelope for a claimed item."""
        return cls(
            type=item.type,
            payload=item.payload,
            origin_id=item.id,
            origin_scheduled_at=item.scheduled_at,
        )
