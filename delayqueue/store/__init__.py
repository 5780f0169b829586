"""
Item store module.
Contains the store contract and its relational and in-memory implementations.
"""

from sqlalchemy.ext.asyncio import AsyncEngine

from delayqueue.config import Settings
from delayqueue.store.base import ItemStore
from delayqueue.store.memory import MemoryItemStore
from delayqueue.store.sql import SqlItemStore, is_throttle_error


def build_store(settings: Settings, engine: AsyncEngine | None = None) -> ItemStore:
    """
    Build the item store selected by ``settings.store_backend``.

    Args:
        settings: Application settings.
        engine: Async engine, required for the ``sql`` backend.

    Returns:
        The configured item store.
    """
    if settings.store_backend == "memory":
        return MemoryItemStore()
    if settings.store_backend == "sql":
        if engine is None:
            raise ValueError("The sql store backend needs an initialized engine")
        return SqlItemStore(engine)
    raise ValueError(f"Unknown store backend: {settings.store_backend}")


__all__ = [
    "ItemStore",
    "MemoryItemStore",
    "SqlItemStore",
    "build_store",
    "is_throttle_error",
]
