"""
Operational HTTP surface: health probes and Prometheus metrics.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from delayqueue import __version__
from delayqueue.api.routes import health_router
from delayqueue.config import get_settings
from delayqueue.db import close_db, init_db
from delayqueue.observability.logging import setup_logging
from delayqueue.observability.metrics import setup_metrics
from delayqueue.observability.tracing import instrument_fastapi, setup_tracing
from delayqueue.store import build_store
from delayqueue.store.base import ItemStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the item store on startup unless one was injected.
    """
    setup_logging("api")
    setup_metrics()
    setup_tracing()

    owns_store = getattr(app.state, "store", None) is None
    if owns_store:
        settings = get_settings()
        engine = await init_db() if settings.store_backend == "sql" else None
        app.state.store = build_store(settings, engine)

    logger.info("Application started")

    yield

    if owns_store:
        await close_db()
    logger.info("Application shutdown")


def create_app(store: ItemStore | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        store: Item store to probe; built from settings at startup if omitted.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="Delay Queue Operations API",
        description="Health and metrics for delay queue processes",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.store = store

    app.include_router(health_router)

    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    app = create_app()

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
