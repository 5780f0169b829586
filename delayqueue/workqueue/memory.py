"""
In-process work queue for local development and tests.
"""

import asyncio

from delayqueue.types.envelope import JobEnvelope


class InMemoryWorkQueue:
    """Work queue backed by an ``asyncio.Queue``."""

    def __init__(self, queue_name: str = "memory") -> None:
        self.queue_name = queue_name
        self._queue: asyncio.Queue[JobEnvelope] = asyncio.Queue()

    async def push(self, envelope: JobEnvelope) -> None:
        await self._queue.put(envelope)

    async def pop(self, timeout: float) -> JobEnvelope | None:
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except TimeoutError:
            return None

    async def depth(self) -> int:
        return self._queue.qsize()

    def drain(self) -> list[JobEnvelope]:
        """Remove and return every queued envelope without waiting."""
        envelopes = []
        while not self._queue.empty():
            envelopes.append(self._queue.get_nowait())
        return envelopes

    async def close(self) -> None:
        return None
