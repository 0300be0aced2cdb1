"""
API route tests.

The app is assembled from the routers with a fallback-backed
DeliveryService on app.state, so no Redis or lifespan is involved.
"""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi import FastAPI

from leadflow.middleware.logging import LoggingMiddleware
from leadflow.models.webhook import DeliveryStatus
from leadflow.routes.health import router as health_router
from leadflow.routes.metrics import router as metrics_router
from leadflow.routes.webhooks import router as webhooks_router
from leadflow.services.delivery_service import DeliveryService
from leadflow.services.fallback_queue import FallbackQueue
from leadflow.services.jwt_service import JWTService

URL = "https://partner.example.com/hooks/leads"


def auth_header(*scopes: str) -> dict:
    token = JWTService().create_token("lead-assignment", list(scopes))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def service(ledger, scripted_worker):
    worker = scripted_worker()
    return DeliveryService(FallbackQueue(worker, ledger, poll_interval=0.05), ledger, worker)


@pytest.fixture
async def api(service):
    app = FastAPI()
    app.add_middleware(LoggingMiddleware)
    app.include_router(metrics_router)
    app.include_router(health_router)
    app.include_router(webhooks_router)
    app.state.delivery_service = service

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    await service.close()


class TestEnqueueRoute:

    @pytest.mark.asyncio
    async def test_accepts_and_returns_job_id(self, api, service):
        response = await api.post(
            "/api/webhooks/deliveries",
            json={
                "lead_id": "lead-1",
                "partner_id": "p-1",
                "target_url": URL,
                "payload": {"email": "a@example.com"},
                "auth_config": {"type": "bearer_token", "token": "abc"},
            },
            headers=auth_header("webhooks:write"),
        )

        assert response.status_code == 202
        data = response.json()
        assert data["job_id"].startswith("mem_")
        assert data["backend"] == "fallback"
        assert data["status"] == "queued"

        await asyncio.sleep(0.01)
        assert service.worker.seen_attempts == [1]

    @pytest.mark.asyncio
    async def test_refused_enqueue_is_503(self, api, service, monkeypatch):
        monkeypatch.setattr(service, "enqueue_webhook", AsyncMock(return_value=None))

        response = await api.post(
            "/api/webhooks/deliveries",
            json={"lead_id": "lead-1", "partner_id": "p-1", "target_url": URL},
            headers=auth_header("webhooks:write"),
        )

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_requires_token(self, api):
        response = await api.post(
            "/api/webhooks/deliveries",
            json={"lead_id": "lead-1", "partner_id": "p-1", "target_url": URL},
        )

        assert response.status_code in (401, 403)

    @pytest.mark.asyncio
    async def test_invalid_token(self, api):
        response = await api.post(
            "/api/webhooks/deliveries",
            json={"lead_id": "lead-1", "partner_id": "p-1", "target_url": URL},
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_requires_write_scope(self, api):
        response = await api.post(
            "/api/webhooks/deliveries",
            json={"lead_id": "lead-1", "partner_id": "p-1", "target_url": URL},
            headers=auth_header("webhooks:read"),
        )

        assert response.status_code == 403
        assert "webhooks:write" in response.json()["detail"]


class TestReadRoutes:

    @pytest.mark.asyncio
    async def test_queue_stats(self, api):
        response = await api.get("/api/webhooks/queue/stats", headers=auth_header("webhooks:read"))

        assert response.status_code == 200
        data = response.json()
        assert data["type"] == "fallback"
        assert data["waiting"] == 0

    @pytest.mark.asyncio
    async def test_delivery_lookup(self, api, ledger):
        await ledger.record("lead-1", "p-1", URL, {"a": 1}, None, 40, DeliveryStatus.FAILED, "timeout")

        response = await api.get("/api/webhooks/deliveries/lead-1/p-1", headers=auth_header("webhooks:read"))

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "failed"
        assert data["attempts"] == 1
        assert data["response_body"] == "timeout"

    @pytest.mark.asyncio
    async def test_delivery_lookup_not_found(self, api):
        response = await api.get("/api/webhooks/deliveries/lead-x/p-x", headers=auth_header("webhooks:read"))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delivery_stats(self, api, ledger):
        await ledger.record("lead-1", "p-1", URL, {}, None, 40, DeliveryStatus.SUCCESS)

        response = await api.get(
            "/api/webhooks/deliveries/stats",
            params={"partner_id": "p-1"},
            headers=auth_header("webhooks:read"),
        )

        assert response.status_code == 200
        assert response.json()["by_status"]["success"] == 1

    @pytest.mark.asyncio
    async def test_auth_types(self, api):
        response = await api.get("/api/webhooks/auth/types", headers=auth_header("webhooks:read"))

        assert response.status_code == 200
        assert "query_param" in response.json()["templates"]


class TestAuthTestRoute:

    @pytest.mark.asyncio
    async def test_passes_request_through(self, api, monkeypatch):
        fake = AsyncMock(return_value=SimpleNamespace(
            success=False, auth_valid=True, status_code=422, response={"error": "x"},
            error="Request data issue (422): x",
        ))
        monkeypatch.setattr("leadflow.services.auth_resolver.test_authentication", fake)

        response = await api.post(
            "/api/webhooks/auth/test",
            json={"auth_type": "api_key", "auth_config": {"key": "k", "header_name": "X-Key"}, "url": URL},
            headers=auth_header("webhooks:write"),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["auth_valid"] is True
        assert data["status_code"] == 422
        assert fake.await_args.args == ("api_key", {"key": "k", "header_name": "X-Key"}, URL)


class TestHealthAndMetrics:

    @pytest.mark.asyncio
    async def test_health_reports_fallback(self, api):
        response = await api.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["queue_backend"] == "fallback"
        assert data["redis"]["status"] == "disabled"

    @pytest.mark.asyncio
    async def test_metrics_exposed(self, api):
        response = await api.get("/metrics")

        assert response.status_code == 200
        assert "webhook" in response.text

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, api):
        response = await api.get("/health", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"

    @pytest.mark.asyncio
    async def test_request_id_generated(self, api):
        response = await api.get("/health")

        assert len(response.headers["X-Request-ID"]) == 32
