"""
Item store contract.

Any key-value or document store with a secondary ordered index and an atomic
conditional update can back the delay queue by implementing this protocol.
Throttling is reported by raising ``StoreThrottledError``; every other
failure propagates as the store's own exception.
"""

from typing import Protocol, runtime_checkable

from delayqueue.types.item import DelayQueueItem


@runtime_checkable
class ItemStore(Protocol):
    """Durable keyed storage for delay queue items."""

    async def put(self, item: DelayQueueItem) -> None:
        """
        Write an item.

        Inserting an existing ID overwrites only its type and payload; the
        ID, schedule time and claim state are never changed by a put.
        """
        ...

    async def get(self, item_id: str) -> DelayQueueItem | None:
        """Fetch an item by ID, or None when absent."""
        ...

    async def delete(self, item_id: str) -> bool:
        """Delete an item by ID. Returns False if it did not exist."""
        ...

    async def query_ready(
        self,
        partition: int,
        before: int,
        limit: int,
        claim_marker: int = 0,
    ) -> list[DelayQueueItem]:
        """
        Items in ``partition`` with ``scheduled_at < before`` and the given
        claim marker, earliest first, at most ``limit``.
        """
        ...

    async def conditional_increment(
        self,
        item_id: str,
        expected: int,
        new_value: int,
        claimed_at: int,
    ) -> bool:
        """
        Atomically set the claim marker to ``new_value`` (and stamp
        ``claimed_at``) only if it currently equals ``expected``.

        Returns True for exactly one caller per transition.
        """
        ...

    async def query_claimed(self, claimed_before: int, limit: int) -> list[DelayQueueItem]:
        """Claimed items whose claim is older than ``claimed_before``, oldest first."""
        ...

    async def touch_claim(self, item_id: str, expected_claimed_at: int, claimed_at: int) -> bool:
        """Compare-and-swap the claim timestamp of a claimed item."""
        ...

    async def purge_claimed(self, claimed_before: int) -> int:
        """Delete claimed items whose claim is older than ``claimed_before``."""
        ...

    async def ensure_schema(self) -> None:
        """Create the backing table and indexes if missing. Idempotent."""
        ...

    async def ping(self) -> None:
        """Round-trip to the store; raises if it is unreachable."""
        ...
