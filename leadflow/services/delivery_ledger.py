"""
Delivery ledger service.

Best-effort persistence of webhook delivery outcomes. A lost ledger
write must never abort a delivery, so write failures are logged and
reported, never raised.
"""
import json
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import structlog
from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadflow.models.webhook import WebhookDelivery, DeliveryStatus, RESPONSE_BODY_LIMIT
from leadflow.sentry_config import capture_exception

logger = structlog.get_logger()


def _insert_for(session: AsyncSession):
    """Dialect-specific INSERT supporting ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Upsert not supported for dialect: {dialect}")


def response_snippet(response: Optional[httpx.Response], error_message: Optional[str]) -> Optional[str]:
    """Response body for the ledger, truncated; error message when there is no response."""
    if response is None:
        return error_message[:RESPONSE_BODY_LIMIT] if error_message else None
    try:
        body = json.dumps(response.json())
    except ValueError:
        body = response.text
    return body[:RESPONSE_BODY_LIMIT]


class DeliveryLedger:
    """Upsert-only ledger keyed by (lead_id, partner_id)."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def record(
        self,
        lead_id: str,
        partner_id: str,
        webhook_url: str,
        payload: Any,
        response: Optional[httpx.Response],
        response_time_ms: Optional[int],
        status: DeliveryStatus,
        error_message: Optional[str] = None
    ) -> None:
        """
        Record one delivery attempt.

        Inserts the first attempt; later attempts overwrite the outcome
        fields and increment attempts. Prior outcomes are not kept.

        Args:
            lead_id: Lead being delivered
            partner_id: Receiving partner
            webhook_url: Target endpoint
            payload: Payload snapshot (JSON document)
            response: HTTP response, or None on transport failure
            response_time_ms: Round-trip time
            status: Outcome of this attempt
            error_message: Stored as the body when there is no response
        """
        status_value = DeliveryStatus(status).value
        now = datetime.now(timezone.utc)
        values = {
            "lead_id": lead_id,
            "partner_id": partner_id,
            "webhook_url": webhook_url,
            "payload": payload,
            "response_code": response.status_code if response is not None else None,
            "response_status": response.reason_phrase if response is not None else None,
            "response_body": response_snippet(response, error_message),
            "response_time_ms": response_time_ms,
            "status": status_value,
            "delivered_at": now,
            "attempts": 1,
        }

        try:
            async with self.session_factory() as db:
                insert = _insert_for(db)
                stmt = insert(WebhookDelivery).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[WebhookDelivery.lead_id, WebhookDelivery.partner_id],
                    set_={
                        "response_code": stmt.excluded.response_code,
                        "response_status": stmt.excluded.response_status,
                        "response_body": stmt.excluded.response_body,
                        "response_time_ms": stmt.excluded.response_time_ms,
                        "status": stmt.excluded.status,
                        "delivered_at": stmt.excluded.delivered_at,
                        "attempts": WebhookDelivery.attempts + 1,
                        "updated_at": func.now(),
                    },
                )
                await db.execute(stmt)
                await db.commit()
        except Exception as e:
            logger.error(
                "delivery_ledger_write_failed",
                lead_id=lead_id,
                partner_id=partner_id,
                status=status_value,
                error=str(e),
            )
            capture_exception(e)

    async def mark_terminal(self, lead_id: str, partner_id: str, error_message: str) -> None:
        """Promote the pair's record to permanently_failed. No-op if it was never recorded."""
        try:
            async with self.session_factory() as db:
                stmt = (
                    update(WebhookDelivery)
                    .where(
                        WebhookDelivery.lead_id == lead_id,
                        WebhookDelivery.partner_id == partner_id,
                    )
                    .values(
                        status=DeliveryStatus.PERMANENTLY_FAILED.value,
                        response_body=(error_message or "")[:RESPONSE_BODY_LIMIT],
                        updated_at=func.now(),
                    )
                )
                result = await db.execute(stmt)
                await db.commit()
                if result.rowcount == 0:
                    logger.warning(
                        "delivery_ledger_terminal_without_record",
                        lead_id=lead_id,
                        partner_id=partner_id,
                    )
        except Exception as e:
            logger.error(
                "delivery_ledger_terminal_write_failed",
                lead_id=lead_id,
                partner_id=partner_id,
                error=str(e),
            )
            capture_exception(e)

    async def get_delivery(self, lead_id: str, partner_id: str) -> WebhookDelivery | None:
        """Get the live record for a lead/partner pair."""
        async with self.session_factory() as db:
            stmt = select(WebhookDelivery).where(
                WebhookDelivery.lead_id == lead_id,
                WebhookDelivery.partner_id == partner_id,
            )
            result = await db.execute(stmt)
            return result.scalar_one_or_none()

    async def get_stats(self, partner_id: Optional[str] = None) -> dict:
        """
        Delivery counts per status and average response time.

        Read-only; used by status dashboards.
        """
        async with self.session_factory() as db:
            stmt = select(
                WebhookDelivery.status,
                func.count(WebhookDelivery.id),
                func.sum(WebhookDelivery.attempts),
                func.avg(WebhookDelivery.response_time_ms),
                func.count(WebhookDelivery.response_time_ms),
            ).group_by(WebhookDelivery.status)
            if partner_id is not None:
                stmt = stmt.where(WebhookDelivery.partner_id == partner_id)
            rows = (await db.execute(stmt)).all()

        by_status = {s.value: 0 for s in DeliveryStatus}
        total_attempts = 0
        weighted_time = 0.0
        timed = 0
        for status, count, attempts, avg_ms, timed_count in rows:
            by_status[status] = count
            total_attempts += attempts or 0
            if avg_ms is not None:
                weighted_time += float(avg_ms) * timed_count
                timed += timed_count

        total = sum(by_status.values())
        return {
            "partner_id": partner_id,
            "total": total,
            "by_status": by_status,
            "total_attempts": total_attempts,
            "success_rate": round(by_status[DeliveryStatus.SUCCESS.value] / total, 4) if total else None,
            "avg_response_time_ms": round(weighted_time / timed, 2) if timed else None,
        }
