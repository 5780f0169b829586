"""
Outcome reports returned by the dispatcher and the reaper.
"""

from dataclasses import dataclass, field


@dataclass
class DispatchReport:
    """
    Per-item outcome of one dispatch pass.

    ``lock_errors`` holds items whose claim outcome is unknown (left for the
    next pass). ``push_errors`` holds items that were claimed but not pushed;
    those claims are not rolled back.
    """

    polled: int = 0
    dispatched: list[str] = field(default_factory=list)
    contended: list[str] = field(default_factory=list)
    lock_errors: dict[str, Exception] = field(default_factory=dict)
    push_errors: dict[str, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.lock_errors and not self.push_errors


@dataclass
class ReapReport:
    """Outcome of one reconciliation pass."""

    redelivered: list[str] = field(default_factory=list)
    redeliver_errors: dict[str, Exception] = field(default_factory=dict)
    purged: int = 0
