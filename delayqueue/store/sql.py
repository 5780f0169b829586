"""
Relational item store over SQLAlchemy asyncio.

Backs the delay queue with PostgreSQL (asyncpg) in production and SQLite
(aiosqlite) for local runs and tests. The claim is a single conditional
``UPDATE``; the ready scan is one indexed range query.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import and_, delete, select, text, update
from sqlalchemy import exc as sa_exc
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from delayqueue.constants import CLAIM_CLAIMED
from delayqueue.db.models import Base, DelayQueueRow
from delayqueue.errors import StoreThrottledError
from delayqueue.types.item import DelayQueueItem

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available,
# too_many_connections, configuration_limit_exceeded, query_canceled
THROTTLE_SQLSTATES = frozenset({"40001", "40P01", "55P03", "53300", "53400", "57014"})

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def is_throttle_error(exc: BaseException) -> bool:
    """
    Check whether a database error means "store under load, try later".

    Args:
        exc: The exception raised by SQLAlchemy.

    Returns:
        True for transient load conditions, False for real failures.
    """
    # Pool checkout timed out
    if isinstance(exc, sa_exc.TimeoutError):
        return True
    if isinstance(exc, sa_exc.DBAPIError):
        orig = exc.orig
        code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if code in THROTTLE_SQLSTATES:
            return True
        if "database is locked" in str(orig):
            return True
    return False


@contextmanager
def _translate_throttling(operation: str) -> Iterator[None]:
    try:
        yield
    except (sa_exc.DBAPIError, sa_exc.TimeoutError) as e:
        if is_throttle_error(e):
            raise StoreThrottledError(f"{operation} throttled: {e}") from e
        raise


class SqlItemStore:
    """
    Item store backed by the ``task_delay_queue`` table.

    Each operation runs in its own short transaction, so concurrent
    dispatchers on separate connections only synchronize on the row-level
    conditional update.
    """

    def __init__(self, engine: AsyncEngine):
        """
        Initialize the store with an async engine.

        Args:
            engine: The SQLAlchemy async engine.

        Raises:
            ValueError: If the engine's dialect has no upsert support here.
        """
        dialect = engine.dialect.name
        if dialect not in _INSERTS:
            raise ValueError(f"Unsupported database dialect for SqlItemStore: {dialect}")

        self._engine = engine
        self._insert = _INSERTS[dialect]
        self._session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def put(self, item: DelayQueueItem) -> None:
        """Insert an item; on conflict overwrite only its type and payload."""
        stmt = self._insert(DelayQueueRow).values(
            id=item.id,
            scheduled_at=item.scheduled_at,
            type=item.type,
            payload=item.payload,
            claim_marker=item.claim_marker,
            partition_key=item.partition_key,
            claimed_at=item.claimed_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "type": stmt.excluded.type,
                "payload": stmt.excluded.payload,
            },
        )

        with _translate_throttling("put"):
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(stmt)

    async def get(self, item_id: str) -> DelayQueueItem | None:
        with _translate_throttling("get"):
            async with self._session_factory() as session:
                row = await session.get(DelayQueueRow, item_id)
                return row.to_item() if row is not None else None

    async def delete(self, item_id: str) -> bool:
        stmt = delete(DelayQueueRow).where(DelayQueueRow.id == item_id)
        with _translate_throttling("delete"):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    return result.rowcount > 0

    async def query_ready(
        self,
        partition: int,
        before: int,
        limit: int,
        claim_marker: int = 0,
    ) -> list[DelayQueueItem]:
        """
        Ready scan served by ``ix_task_delay_queue_ready``.

        Equivalent to ``WHERE partition_key = :p AND claim_marker = :c AND
        scheduled_at < :before ORDER BY scheduled_at LIMIT :limit``.
        """
        stmt = (
            select(DelayQueueRow)
            .where(
                and_(
                    DelayQueueRow.partition_key == partition,
                    DelayQueueRow.claim_marker == claim_marker,
                    DelayQueueRow.scheduled_at < before,
                )
            )
            .order_by(DelayQueueRow.scheduled_at, DelayQueueRow.id)
            .limit(limit)
        )
        with _translate_throttling("query_ready"):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [row.to_item() for row in result.scalars().all()]

    async def conditional_increment(
        self,
        item_id: str,
        expected: int,
        new_value: int,
        claimed_at: int,
    ) -> bool:
        """
        Claim via ``UPDATE .. WHERE id = :id AND claim_marker = :expected``.

        Concurrent updates of the same row serialize on its row lock; every
        loser re-evaluates the predicate after the winner commits and matches
        no rows.
        """
        stmt = (
            update(DelayQueueRow)
            .where(
                and_(
                    DelayQueueRow.id == item_id,
                    DelayQueueRow.claim_marker == expected,
                )
            )
            .values(claim_marker=new_value, claimed_at=claimed_at)
            .execution_options(synchronize_session=False)
        )
        with _translate_throttling("conditional_increment"):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    return result.rowcount == 1

    async def query_claimed(self, claimed_before: int, limit: int) -> list[DelayQueueItem]:
        stmt = (
            select(DelayQueueRow)
            .where(
                and_(
                    DelayQueueRow.claim_marker == CLAIM_CLAIMED,
                    DelayQueueRow.claimed_at < claimed_before,
                )
            )
            .order_by(DelayQueueRow.claimed_at, DelayQueueRow.id)
            .limit(limit)
        )
        with _translate_throttling("query_claimed"):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [row.to_item() for row in result.scalars().all()]

    async def touch_claim(self, item_id: str, expected_claimed_at: int, claimed_at: int) -> bool:
        stmt = (
            update(DelayQueueRow)
            .where(
                and_(
                    DelayQueueRow.id == item_id,
                    DelayQueueRow.claim_marker == CLAIM_CLAIMED,
                    DelayQueueRow.claimed_at == expected_claimed_at,
                )
            )
            .values(claimed_at=claimed_at)
            .execution_options(synchronize_session=False)
        )
        with _translate_throttling("touch_claim"):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    return result.rowcount == 1

    async def purge_claimed(self, claimed_before: int) -> int:
        stmt = (
            delete(DelayQueueRow)
            .where(
                and_(
                    DelayQueueRow.claim_marker == CLAIM_CLAIMED,
                    DelayQueueRow.claimed_at < claimed_before,
                )
            )
            .execution_options(synchronize_session=False)
        )
        with _translate_throttling("purge_claimed"):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    return result.rowcount

    async def ensure_schema(self) -> None:
        """
        Create the table and indexes if they do not exist.

        Safe to call on every process start; a concurrent process winning the
        create race is not an error.
        """
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (sa_exc.ProgrammingError, sa_exc.IntegrityError, sa_exc.OperationalError) as e:
            message = str(e)
            if "already exists" not in message and "duplicate key" not in message:
                raise
            logger.debug("Delay queue schema created concurrently", extra={"error": message})
            return
        logger.info("Delay queue schema ensured")

    async def ping(self) -> None:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
