"""
Delivery service dependency for FastAPI routes.
"""
from fastapi import HTTPException, Request, status

from leadflow.services.delivery_service import DeliveryService


def get_delivery_service(request: Request) -> DeliveryService:
    """The DeliveryService created during application startup."""
    service = getattr(request.app.state, "delivery_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Delivery service not started"
        )
    return service
