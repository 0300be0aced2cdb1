"""
Delivery worker.

Performs a single webhook delivery attempt. Raises on every non-success
outcome so the owning queue backend can apply its retry policy.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from leadflow.config import settings
from leadflow.models.job import WebhookJob
from leadflow.models.webhook import DeliveryStatus
from leadflow.routes.metrics import track_delivery
from leadflow.services.auth_resolver import AuthType, resolve_auth
from leadflow.services.delivery_ledger import DeliveryLedger

logger = structlog.get_logger()


class AuthConfigError(Exception):
    """Auth config cannot be resolved. Not retriable."""


class DeliveryError(Exception):
    """
    A delivery attempt failed.

    category is one of: http_error, timeout, unreachable, transport_error.
    """

    def __init__(self, message: str, category: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.category = category
        self.status_code = status_code


@dataclass
class DeliveryResult:
    success: bool
    status_code: int
    response_time_ms: int


def classify_transport_error(exc: Exception) -> tuple[str, str]:
    """Map a transport error or overall deadline expiry to (category, user-facing message)."""
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return "timeout", "Request timeout - endpoint may be slow or unreachable"
    if isinstance(exc, httpx.ConnectError):
        return "unreachable", "Endpoint unreachable - connection refused or DNS failure"
    return "transport_error", f"Request failed: {exc}"


def _request_body(job: WebhookJob) -> dict:
    """httpx body kwargs matching the job's content type."""
    if isinstance(job.payload, (str, bytes)):
        return {"content": job.payload}
    if job.effective_content_type.startswith("application/x-www-form-urlencoded") and isinstance(job.payload, dict):
        return {"data": job.payload}
    return {"json": job.payload}


class DeliveryWorker:
    """Delivers one WebhookJob and records the outcome."""

    def __init__(
        self,
        ledger: DeliveryLedger,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float | None = None,
    ):
        self.ledger = ledger
        self.timeout_seconds = timeout_seconds or settings.WEBHOOK_TIMEOUT_SECONDS
        self.timeout = httpx.Timeout(self.timeout_seconds)
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self):
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def process(self, job: WebhookJob) -> DeliveryResult:
        """
        Deliver a webhook job.

        Args:
            job: Job to deliver

        Returns:
            DeliveryResult for a 2xx response

        Raises:
            AuthConfigError: Auth config invalid; no request was made
            DeliveryError: Non-2xx response or transport failure
        """
        log = logger.bind(
            lead_id=job.lead_id,
            partner_id=job.partner_id,
            attempt=job.attempt_count,
        )

        headers = {
            "Content-Type": job.effective_content_type,
            "User-Agent": settings.WEBHOOK_USER_AGENT,
        }
        url = job.target_url

        auth_config = job.auth_config or {}
        auth_type = auth_config.get("type", AuthType.NONE.value)
        if "type" not in auth_config and auth_config:
            log.warning("webhook_auth_type_missing", config_keys=sorted(auth_config))
        if auth_type != AuthType.NONE:
            auth = resolve_auth(auth_type, auth_config, job.target_url)
            if not auth.valid:
                log.warning("webhook_auth_invalid", auth_type=auth_type, error=auth.error)
                raise AuthConfigError(auth.error)
            headers.update(auth.headers)
            url = auth.url

        log.info("webhook_delivery_started", target_url=job.target_url)

        client = await self._get_client()
        start = time.monotonic()
        try:
            # httpx timeouts are per phase; the whole exchange gets one deadline
            response = await asyncio.wait_for(
                client.post(url, headers=headers, timeout=self.timeout, **_request_body(job)),
                timeout=self.timeout_seconds,
            )
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            response_time_ms = int((time.monotonic() - start) * 1000)
            category, message = classify_transport_error(e)
            await self.ledger.record(
                job.lead_id, job.partner_id, job.target_url, job.payload,
                None, response_time_ms, DeliveryStatus.FAILED, message,
            )
            track_delivery(job.partner_id, DeliveryStatus.FAILED.value, response_time_ms / 1000)
            log.warning(
                "webhook_delivery_transport_error",
                category=category,
                error=str(e),
                response_time_ms=response_time_ms,
            )
            raise DeliveryError(message, category=category) from e

        response_time_ms = int((time.monotonic() - start) * 1000)

        if 200 <= response.status_code < 300:
            await self.ledger.record(
                job.lead_id, job.partner_id, job.target_url, job.payload,
                response, response_time_ms, DeliveryStatus.SUCCESS,
            )
            track_delivery(job.partner_id, DeliveryStatus.SUCCESS.value, response_time_ms / 1000)
            log.info(
                "webhook_delivered",
                status_code=response.status_code,
                response_time_ms=response_time_ms,
            )
            return DeliveryResult(
                success=True,
                status_code=response.status_code,
                response_time_ms=response_time_ms,
            )

        message = f"HTTP {response.status_code} {response.reason_phrase}".strip()
        await self.ledger.record(
            job.lead_id, job.partner_id, job.target_url, job.payload,
            response, response_time_ms, DeliveryStatus.FAILED, message,
        )
        track_delivery(job.partner_id, DeliveryStatus.FAILED.value, response_time_ms / 1000)
        log.warning(
            "webhook_delivery_http_error",
            status_code=response.status_code,
            response_time_ms=response_time_ms,
        )
        raise DeliveryError(message, category="http_error", status_code=response.status_code)
