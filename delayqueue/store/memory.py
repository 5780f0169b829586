"""
In-process item store for local development and tests.
"""

import asyncio

from delayqueue.constants import CLAIM_CLAIMED
from delayqueue.types.item import DelayQueueItem


class MemoryItemStore:
    """
    Dict-backed item store.

    A single ``asyncio.Lock`` serializes every operation, which gives the
    conditional increment the same single-winner guarantee as a database
    conditional update within one event loop.
    """

    def __init__(self) -> None:
        self._items: dict[str, DelayQueueItem] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._items)

    async def put(self, item: DelayQueueItem) -> None:
        async with self._lock:
            existing = self._items.get(item.id)
            if existing is not None:
                item = existing.model_copy(update={"type": item.type, "payload": item.payload})
            self._items[item.id] = item

    async def get(self, item_id: str) -> DelayQueueItem | None:
        async with self._lock:
            return self._items.get(item_id)

    async def delete(self, item_id: str) -> bool:
        async with self._lock:
            return self._items.pop(item_id, None) is not None

    async def query_ready(
        self,
        partition: int,
        before: int,
        limit: int,
        claim_marker: int = 0,
    ) -> list[DelayQueueItem]:
        async with self._lock:
            matches = [
                item
                for item in self._items.values()
                if item.partition_key == partition
                and item.claim_marker == claim_marker
                and item.scheduled_at < before
            ]
        matches.sort(key=lambda item: item.scheduled_at)
        return matches[:limit]

    async def conditional_increment(
        self,
        item_id: str,
        expected: int,
        new_value: int,
        claimed_at: int,
    ) -> bool:
        async with self._lock:
            item = self._items.get(item_id)
            if item is None or item.claim_marker != expected:
                return False
            self._items[item_id] = item.model_copy(
                update={"claim_marker": new_value, "claimed_at": claimed_at}
            )
            return True

    async def query_claimed(self, claimed_before: int, limit: int) -> list[DelayQueueItem]:
        async with self._lock:
            matches = [
                item
                for item in self._items.values()
                if item.claim_marker == CLAIM_CLAIMED
                and item.claimed_at is not None
                and item.claimed_at < claimed_before
            ]
        matches.sort(key=lambda item: item.claimed_at or 0)
        return matches[:limit]

    async def touch_claim(self, item_id: str, expected_claimed_at: int, claimed_at: int) -> bool:
        async with self._lock:
            item = self._items.get(item_id)
            if (
                item is None
                or item.claim_marker != CLAIM_CLAIMED
                or item.claimed_at != expected_claimed_at
            ):
                return False
            self._items[item_id] = item.model_copy(update={"claimed_at": claimed_at})
            return True

    async def purge_claimed(self, claimed_before: int) -> int:
        async with self._lock:
            stale = [
                item_id
                for item_id, item in self._items.items()
                if item.claim_marker == CLAIM_CLAIMED
                and item.claimed_at is not None
                and item.claimed_at < claimed_before
            ]
            for item_id in stale:
                del self._items[item_id]
        return len(stale)

    async def ensure_schema(self) -> None:
        return None

    async def ping(self) -> None:
        return None
