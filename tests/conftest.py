"""
Pytest configuration and shared fixtures.
"""

import time
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry
from sqlalchemy.ext.asyncio import AsyncEngine

from delayqueue.db.connection import create_engine
from delayqueue.dispatcher.main import Dispatcher
from delayqueue.observability.metrics import MetricsCollector
from delayqueue.retry import BackoffRetryWriter
from delayqueue.service import DelayQueue
from delayqueue.store.memory import MemoryItemStore
from delayqueue.store.sql import SqlItemStore
from delayqueue.workqueue.memory import InMemoryWorkQueue


@pytest.fixture
def now() -> int:
    """Current Unix time, fixed for the test."""
    return int(time.time())


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on a private registry."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def fast_writer(metrics: MetricsCollector) -> BackoffRetryWriter:
    """Retry writer with the default budget and no waiting between attempts."""
    return BackoffRetryWriter(base_delay=0, max_jitter=0, metrics=metrics)


@pytest.fixture
def memory_store() -> MemoryItemStore:
    """Create an empty in-memory item store."""
    return MemoryItemStore()


@pytest.fixture
def work_queue() -> InMemoryWorkQueue:
    """Create an empty in-memory work queue."""
    return InMemoryWorkQueue("throttles")


@pytest.fixture
def delay_queue(
    memory_store: MemoryItemStore,
    fast_writer: BackoffRetryWriter,
    metrics: MetricsCollector,
) -> DelayQueue:
    """Delay queue service over the in-memory store."""
    return DelayQueue(memory_store, writer=fast_writer, metrics=metrics)


@pytest.fixture
def dispatcher(
    delay_queue: DelayQueue,
    work_queue: InMemoryWorkQueue,
    metrics: MetricsCollector,
) -> Dispatcher:
    """Dispatcher moving items from the in-memory store to the in-memory queue."""
    return Dispatcher(delay_queue, work_queue, batch_limit=10, metrics=metrics)


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path) -> AsyncGenerator[AsyncEngine]:
    """Async engine on a file-backed SQLite database."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'delayqueue.db'}")

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def sql_store(sqlite_engine: AsyncEngine) -> SqlItemStore:
    """Relational item store with its schema created."""
    store = SqlItemStore(sqlite_engine)
    await store.ensure_schema()
    return store
