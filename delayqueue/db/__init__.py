"""
Database module.
Contains the engine lifecycle and the delay queue table model.
"""

from delayqueue.db.connection import close_db, create_engine, get_engine, init_db
from delayqueue.db.models import Base, DelayQueueRow

__all__ = [
    "create_engine",
    "get_engine",
    "init_db",
    "close_db",
    "DelayQueueRow",
    "Base",
]
