"""
Exception hierarchy for the delay queue.

Lock contention and missing items are not errors: claims report ``False``
and lookups report ``None``.
"""

import json
from typing import Any


class DelayQueueError(Exception):
    """Base class for all delay queue errors."""


class StoreThrottledError(DelayQueueError):
    """The item store rejected an operation because it is under load."""


class ClaimThrottledError(StoreThrottledError):
    """
    A claim attempt was throttled.

    The outcome is unknown: the caller must not assume it won or lost.
    """

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"check_lock throttled for item {item_id}")


class RetriesExhaustedError(DelayQueueError):
    """A throttled write kept failing until its attempt budget ran out."""

    def __init__(self, item_id: str, attempts: int, item: dict[str, Any] | None = None):
        self.item_id = item_id
        self.attempts = attempts
        self.item = item or {"id": item_id}
        super().__init__(
            f"max retries exceeded after {attempts} attempts for item "
            f"{json.dumps(self.item, default=str, sort_keys=True)}"
        )


class PushError(DelayQueueError):
    """A claimed item could not be pushed to the work queue."""

    def __init__(self, item_id: str, reason: str):
        self.item_id = item_id
        super().__init__(f"push failed for claimed item {item_id}: {reason}")
