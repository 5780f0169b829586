"""
Health check routes.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import Response

from delayqueue import __version__
from delayqueue.observability.metrics import get_metrics
from delayqueue.store.base import ItemStore
from delayqueue.types.api import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


async def _store_healthy(store: ItemStore) -> bool:
    try:
        await store.ping()
    except Exception as e:
        logger.warning("Item store health check failed", extra={"error": str(e)})
        return False
    return True


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the service and its item store.",
)
async def health_check(request: Request) -> HealthResponse:
    """
    Perform a health check.

    Round-trips to the item store and returns service status.
    """
    store_status = "healthy" if await _store_healthy(request.app.state.store) else "unhealthy"

    return HealthResponse(
        status="healthy" if store_status == "healthy" else "degraded",
        version=__version__,
        store=store_status,
        timestamp=datetime.now(timezone.utc),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(request: Request) -> dict:
    """Kubernetes readiness probe endpoint."""
    return {"ready": await _store_healthy(request.app.state.store)}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    """Kubernetes liveness probe endpoint."""
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics() -> Response:
    """Expose Prometheus metrics."""
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
