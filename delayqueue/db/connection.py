"""
Database connection management.
Handles the process-wide async SQLAlchemy engine. Stores open their own
sessions on it.
"""

import logging

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from delayqueue.config import get_settings

logger = logging.getLogger(__name__)

# Process-wide engine, created by init_db() in the entry points
_engine: AsyncEngine | None = None


def create_engine(database_url: str, pool_size: int = 10, max_overflow: int = 20) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    SQLite engines get the dialect's default pool; pool sizing only applies
    to server databases.

    Args:
        database_url: SQLAlchemy async database URL.
        pool_size: Connection pool size for server databases.
        max_overflow: Pool overflow for server databases.

    Returns:
        AsyncEngine: The new engine.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        return create_async_engine(url, echo=False)

    settings = get_settings()
    return create_async_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        echo=settings.log_level == "DEBUG",
        pool_pre_ping=True,
    )


def get_engine() -> AsyncEngine:
    """
    Get or create the process-wide async database engine.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )
    return _engine


async def init_db() -> AsyncEngine:
    """
    Initialize the database engine.
    Should be called on process startup.

    Returns:
        AsyncEngine: The initialized engine, for injection into stores.
    """
    engine = get_engine()
    logger.info("Database connection initialized")
    return engine


async def close_db() -> None:
    """
    Close the database connection.
    Should be called on process shutdown.
    """
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        logger.info("Database connection closed")

