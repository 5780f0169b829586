"""
Work queue contract.

The dispatcher only ever pushes. ``pop`` and ``close`` serve the reference
consumer and process shutdown.
"""

from typing import Protocol, runtime_checkable

from delayqueue.types.envelope import JobEnvelope


@runtime_checkable
class WorkQueue(Protocol):
    """Downstream queue that receives dispatched job envelopes."""

    async def push(self, envelope: JobEnvelope) -> None:
        """Enqueue an envelope. Raises on failure."""
        ...

    async def pop(self, timeout: float) -> JobEnvelope | None:
        """Dequeue the oldest envelope, waiting up to ``timeout`` seconds."""
        ...

    async def close(self) -> None:
        ...
