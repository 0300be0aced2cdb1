"""
Health check routes.

Reports the active queue backend and, when durable, Redis latency.
"""
import time

from fastapi import APIRouter, Depends

from leadflow.config import settings
from leadflow.dependencies.delivery import get_delivery_service
from leadflow.services.delivery_service import DeliveryService
from leadflow.services.durable_queue import DurableQueue

router = APIRouter(tags=["health"])


async def redis_health(service: DeliveryService) -> dict:
    """PING the broker of a durable backend."""
    backend = service.backend
    if not isinstance(backend, DurableQueue):
        return {"status": "disabled", "message": "Redis not configured or unavailable at startup"}

    try:
        start = time.monotonic()
        await backend.pool.ping()
        latency_ms = (time.monotonic() - start) * 1000
        return {"status": "connected", "latency_ms": round(latency_ms, 2)}
    except Exception as e:
        return {"status": "error", "message": str(e)}


@router.get("/health")
async def health(service: DeliveryService = Depends(get_delivery_service)):
    """Liveness plus queue backend state."""
    return {
        "status": "ok",
        "version": settings.APP_VERSION,
        "queue_backend": service.backend_kind,
        "redis": await redis_health(service),
    }
