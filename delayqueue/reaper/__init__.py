"""
Reaper module.
Contains the reconciliation pass for claimed delay queue items.
"""

from delayqueue.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
