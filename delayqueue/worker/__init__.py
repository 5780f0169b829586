"""
Worker module.
Contains the reference consumer and its handler registry.
"""

from delayqueue.worker.main import Worker, run

__all__ = ["Worker", "run"]
