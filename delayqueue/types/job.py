"""
Job-related type definitions for the reference consumer.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from delayqueue.types.envelope import JobEnvelope

if TYPE_CHECKING:
    from delayqueue.service import DelayQueue


class JobResult(BaseModel):
    """
    Result of job execution.
    Returned by job handlers after processing.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: float | None = None


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    """

    envelope: JobEnvelope
    worker_id: str
    delay_queue: "DelayQueue | None" = None

    @property
    def job_type(self) -> str:
        return self.envelope.type

    @property
    def payload(self) -> Any:
        return self.envelope.payload

    @property
    def origin_id(self) -> str | None:
        return self.envelope.origin_id
