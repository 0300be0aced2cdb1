"""
Tests for the delivery ledger upsert and terminal marking.
"""
import httpx
import pytest
from sqlalchemy import func, select
from unittest.mock import patch

from leadflow.models.webhook import DeliveryStatus, WebhookDelivery
from leadflow.services.delivery_ledger import DeliveryLedger

URL = "https://partner.example.com/hooks"
PAYLOAD = {"event": "lead.converted", "lead_id": "lead-1"}


def response(status_code: int, **kwargs) -> httpx.Response:
    return httpx.Response(status_code, request=httpx.Request("POST", URL), **kwargs)


async def count_rows(session_factory) -> int:
    async with session_factory() as db:
        return (await db.execute(select(func.count(WebhookDelivery.id)))).scalar_one()


class TestRecord:

    @pytest.mark.asyncio
    async def test_first_attempt_inserts(self, ledger, session_factory):
        await ledger.record("lead-1", "p-1", URL, PAYLOAD, response(200, json={"ok": True}), 120,
                            DeliveryStatus.SUCCESS)

        delivery = await ledger.get_delivery("lead-1", "p-1")
        assert delivery is not None
        assert delivery.status == "success"
        assert delivery.attempts == 1
        assert delivery.response_code == 200
        assert delivery.response_status == "OK"
        assert delivery.response_body == '{"ok": true}'
        assert delivery.response_time_ms == 120
        assert delivery.payload == PAYLOAD
        assert delivery.delivered_at is not None

    @pytest.mark.asyncio
    async def test_upsert_keeps_one_row_and_counts_attempts(self, ledger, session_factory):
        await ledger.record("lead-1", "p-1", URL, PAYLOAD, None, 30000, DeliveryStatus.FAILED, "timeout")
        await ledger.record("lead-1", "p-1", URL, PAYLOAD, response(500, text="boom"), 80, DeliveryStatus.FAILED)
        await ledger.record("lead-1", "p-1", URL, PAYLOAD, response(201), 45, DeliveryStatus.SUCCESS)

        assert await count_rows(session_factory) == 1
        delivery = await ledger.get_delivery("lead-1", "p-1")
        assert delivery.attempts == 3
        assert delivery.status == "success"
        assert delivery.response_code == 201
        assert delivery.response_time_ms == 45

    @pytest.mark.asyncio
    async def test_later_failure_overwrites_success(self, ledger):
        # Out-of-order writes are not reconciled; latest write wins
        await ledger.record("lead-1", "p-1", URL, PAYLOAD, response(200), 10, DeliveryStatus.SUCCESS)
        await ledger.record("lead-1", "p-1", URL, PAYLOAD, response(502), 10, DeliveryStatus.FAILED)

        delivery = await ledger.get_delivery("lead-1", "p-1")
        assert delivery.status == "failed"
        assert delivery.attempts == 2

    @pytest.mark.asyncio
    async def test_pairs_are_independent(self, ledger, session_factory):
        await ledger.record("lead-1", "p-1", URL, PAYLOAD, response(200), 10, DeliveryStatus.SUCCESS)
        await ledger.record("lead-1", "p-2", URL, PAYLOAD, response(200), 10, DeliveryStatus.SUCCESS)
        await ledger.record("lead-2", "p-1", URL, PAYLOAD, response(200), 10, DeliveryStatus.SUCCESS)

        assert await count_rows(session_factory) == 3

    @pytest.mark.asyncio
    async def test_error_message_stored_without_response(self, ledger):
        await ledger.record("lead-1", "p-1", URL, PAYLOAD, None, 5, DeliveryStatus.FAILED,
                            "Endpoint unreachable - connection refused or DNS failure")

        delivery = await ledger.get_delivery("lead-1", "p-1")
        assert delivery.response_code is None
        assert delivery.response_body == "Endpoint unreachable - connection refused or DNS failure"

    @pytest.mark.asyncio
    async def test_body_truncated_to_1000_chars(self, ledger):
        await ledger.record("lead-1", "p-1", URL, PAYLOAD, response(500, text="x" * 5000), 5,
                            DeliveryStatus.FAILED)

        delivery = await ledger.get_delivery("lead-1", "p-1")
        assert len(delivery.response_body) == 1000

    @pytest.mark.asyncio
    async def test_write_failure_is_swallowed_and_reported(self):
        def broken_factory():
            raise RuntimeError("database is down")

        ledger = DeliveryLedger(broken_factory)
        with patch("leadflow.services.delivery_ledger.capture_exception") as capture:
            await ledger.record("lead-1", "p-1", URL, PAYLOAD, None, 5, DeliveryStatus.FAILED, "x")
            await ledger.mark_terminal("lead-1", "p-1", "x")

        assert capture.call_count == 2


class TestMarkTerminal:

    @pytest.mark.asyncio
    async def test_promotes_existing_record(self, ledger):
        await ledger.record("lead-1", "p-1", URL, PAYLOAD, response(503), 10, DeliveryStatus.FAILED)
        await ledger.mark_terminal("lead-1", "p-1", "HTTP 503 Service Unavailable")

        delivery = await ledger.get_delivery("lead-1", "p-1")
        assert delivery.status == "permanently_failed"
        assert delivery.response_body == "HTTP 503 Service Unavailable"
        assert delivery.attempts == 1

    @pytest.mark.asyncio
    async def test_without_record_is_noop(self, ledger, session_factory):
        await ledger.mark_terminal("lead-9", "p-9", "Invalid auth config")

        assert await count_rows(session_factory) == 0


class TestStats:

    @pytest.mark.asyncio
    async def test_counts_by_status(self, ledger):
        await ledger.record("lead-1", "p-1", URL, PAYLOAD, response(200), 100, DeliveryStatus.SUCCESS)
        await ledger.record("lead-2", "p-1", URL, PAYLOAD, response(200), 300, DeliveryStatus.SUCCESS)
        await ledger.record("lead-3", "p-1", URL, PAYLOAD, response(500), 50, DeliveryStatus.FAILED)
        await ledger.record("lead-3", "p-1", URL, PAYLOAD, response(500), 50, DeliveryStatus.FAILED)
        await ledger.mark_terminal("lead-3", "p-1", "gave up")
        await ledger.record("lead-4", "p-2", URL, PAYLOAD, response(200), 10, DeliveryStatus.SUCCESS)

        stats = await ledger.get_stats("p-1")

        assert stats["total"] == 3
        assert stats["by_status"] == {"success": 2, "failed": 0, "permanently_failed": 1}
        assert stats["total_attempts"] == 4
        assert stats["success_rate"] == pytest.approx(2 / 3, abs=1e-4)
        assert stats["avg_response_time_ms"] == pytest.approx(150.0)

    @pytest.mark.asyncio
    async def test_empty_ledger(self, ledger):
        stats = await ledger.get_stats()

        assert stats["total"] == 0
        assert stats["success_rate"] is None
        assert stats["avg_response_time_ms"] is None
