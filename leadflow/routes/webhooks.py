"""
Webhook API routes.

Enqueue partner webhook deliveries, inspect queue and ledger state, and
test partner authentication configs.
"""
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from leadflow.dependencies.auth import TokenPayload, require_scope
from leadflow.dependencies.delivery import get_delivery_service
from leadflow.models.job import WebhookJob
from leadflow.services import auth_resolver
from leadflow.services.delivery_service import DeliveryService
from leadflow.services.queue_backend import QueueStats


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


class EnqueueWebhookRequest(BaseModel):
    """Request model for queueing a delivery."""
    lead_id: str
    partner_id: str
    target_url: str
    payload: Any = Field(default_factory=dict)
    auth_config: Optional[dict[str, Any]] = None
    content_type: Optional[str] = None


class AuthTestRequest(BaseModel):
    """Request model for a live auth test."""
    auth_type: str
    auth_config: dict[str, Any] = Field(default_factory=dict)
    url: str
    method: str = "GET"
    test_payload: Any = None


class DeliveryResponse(BaseModel):
    """Response model for a ledger record."""
    lead_id: str
    partner_id: str
    webhook_url: str
    status: str
    response_code: int | None = None
    response_status: str | None = None
    response_body: str | None = None
    response_time_ms: int | None = None
    attempts: int
    delivered_at: str | None = None

    class Config:
        from_attributes = True


@router.post("/deliveries", response_model=dict, status_code=status.HTTP_202_ACCEPTED)
async def enqueue_delivery(
    request: EnqueueWebhookRequest,
    token: TokenPayload = Depends(require_scope("webhooks:write")),
    service: DeliveryService = Depends(get_delivery_service)
):
    """
    Queue a webhook delivery.

    Returns immediately with an opaque job id; delivery happens in the
    background.
    """
    job = WebhookJob(**request.model_dump())
    job_id = await service.enqueue_webhook(job)

    if job_id is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook could not be queued"
        )

    return {
        "job_id": job_id,
        "backend": service.backend_kind,
        "status": "queued"
    }


@router.get("/queue/stats", response_model=QueueStats)
async def queue_stats(
    token: TokenPayload = Depends(require_scope("webhooks:read")),
    service: DeliveryService = Depends(get_delivery_service)
):
    """Queue counters for the active backend."""
    return await service.get_queue_stats()


@router.get("/deliveries/stats", response_model=dict)
async def delivery_stats(
    partner_id: Optional[str] = None,
    token: TokenPayload = Depends(require_scope("webhooks:read")),
    service: DeliveryService = Depends(get_delivery_service)
):
    """Ledger counts per status, optionally for one partner."""
    return await service.ledger.get_stats(partner_id)


@router.get("/deliveries/{lead_id}/{partner_id}", response_model=DeliveryResponse)
async def get_delivery(
    lead_id: str,
    partner_id: str,
    token: TokenPayload = Depends(require_scope("webhooks:read")),
    service: DeliveryService = Depends(get_delivery_service)
):
    """Latest delivery outcome for a lead/partner pair."""
    delivery = await service.ledger.get_delivery(lead_id, partner_id)
    if delivery is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Delivery not found"
        )

    return DeliveryResponse(
        lead_id=delivery.lead_id,
        partner_id=delivery.partner_id,
        webhook_url=delivery.webhook_url,
        status=delivery.status,
        response_code=delivery.response_code,
        response_status=delivery.response_status,
        response_body=delivery.response_body,
        response_time_ms=delivery.response_time_ms,
        attempts=delivery.attempts,
        delivered_at=delivery.delivered_at.isoformat() if delivery.delivered_at else None,
    )


@router.get("/auth/types", response_model=dict)
async def auth_types(
    token: TokenPayload = Depends(require_scope("webhooks:read"))
):
    """Supported auth types and their config templates."""
    return auth_resolver.get_all_auth_types()


@router.post("/auth/test", response_model=dict)
async def test_auth(
    request: AuthTestRequest,
    token: TokenPayload = Depends(require_scope("webhooks:write"))
):
    """
    Test a partner auth config against a live endpoint.

    auth_valid stays true for 400/422 responses: the credentials were
    accepted even though the test payload was not.
    """
    result = await auth_resolver.test_authentication(
        request.auth_type,
        request.auth_config,
        request.url,
        method=request.method,
        test_payload=request.test_payload,
    )
    return {
        "success": result.success,
        "auth_valid": result.auth_valid,
        "status_code": result.status_code,
        "response": result.response,
        "error": result.error,
    }
