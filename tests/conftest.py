"""
Shared pytest fixtures for LeadFlow tests.

The ledger runs against a throwaway SQLite file so the real
ON CONFLICT upsert is exercised; outbound HTTP goes through
httpx.MockTransport.
"""
import asyncio

import pytest
import httpx
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from leadflow.models.base import Base
from leadflow.models.job import WebhookJob
from leadflow.models.webhook import WebhookDelivery  # noqa: F401
from leadflow.services.delivery_ledger import DeliveryLedger
from leadflow.services.delivery_worker import DeliveryError


@pytest.fixture
async def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def ledger(session_factory):
    return DeliveryLedger(session_factory)


@pytest.fixture
def mock_ledger():
    """Ledger double recording calls."""
    ledger = MagicMock(spec=DeliveryLedger)
    ledger.record = AsyncMock()
    ledger.mark_terminal = AsyncMock()
    return ledger


@pytest.fixture
def sample_job():
    return WebhookJob(
        lead_id="lead-1001",
        partner_id="partner-7",
        target_url="https://partner.example.com/hooks/leads",
        payload={"event": "lead.converted", "lead": {"id": "lead-1001", "email": "a@example.com"}},
        auth_config={"type": "bearer_token", "token": "abc"},
    )


@pytest.fixture
def make_client():
    """Factory for an AsyncClient routing every request to handler(request)."""
    def factory(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return factory


class ScriptedWorker:
    """
    Delivery worker double.

    Fails the first `failures` calls with DeliveryError, then succeeds.
    Records the attempt_count it saw and whether calls overlapped.
    """

    def __init__(self, failures: int = 0, error: Exception | None = None):
        self.failures = failures
        self.error = error
        self.seen_attempts: list[int] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def process(self, job):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            self.seen_attempts.append(job.attempt_count)
            if self.error is not None:
                raise self.error
            if len(self.seen_attempts) <= self.failures:
                raise DeliveryError("HTTP 503 Service Unavailable", category="http_error", status_code=503)
            return None
        finally:
            self.in_flight -= 1

    async def close(self):
        pass


@pytest.fixture
def scripted_worker():
    return ScriptedWorker
