"""
Webhook Delivery Service

Façade over the queue backends. Picks the backend once at startup:
ARQ on Redis when Redis answers, the in-process queue otherwise.
"""
from typing import Optional

import httpx
import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from leadflow.config import settings
from leadflow.models.job import WebhookJob
from leadflow.sentry_config import capture_exception
from leadflow.services.delivery_ledger import DeliveryLedger
from leadflow.services.delivery_worker import DeliveryWorker
from leadflow.services.durable_queue import DurableQueue, probe_redis
from leadflow.services.fallback_queue import FallbackQueue
from leadflow.services.queue_backend import QueueBackend, QueueStats
from leadflow.services.retry_policy import RetryPolicy

logger = structlog.get_logger()


class DeliveryService:
    """Owns the active queue backend for the lifetime of the process."""

    def __init__(self, backend: QueueBackend, ledger: DeliveryLedger, worker: DeliveryWorker):
        self.backend = backend
        self.ledger = ledger
        self.worker = worker

    @classmethod
    async def create(
        cls,
        session_factory: async_sessionmaker,
        redis_url: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        poll_interval: Optional[float] = None,
    ) -> "DeliveryService":
        """
        Build the service and select the backend.

        Selection happens here only; a Redis outage later in the run
        does not switch backends.
        """
        policy = policy or RetryPolicy.from_settings()
        ledger = DeliveryLedger(session_factory)
        worker = DeliveryWorker(ledger, client=http_client)

        pool = await probe_redis(redis_url)
        if pool is not None:
            backend: QueueBackend = DurableQueue(pool, worker, ledger, policy=policy)
        else:
            backend = FallbackQueue(worker, ledger, policy=policy, poll_interval=poll_interval)

        logger.info("webhook_backend_selected", backend=backend.kind)
        return cls(backend, ledger, worker)

    @property
    def backend_kind(self) -> str:
        return self.backend.kind

    async def start(self) -> None:
        await self.backend.start()

    async def close(self) -> None:
        await self.backend.close()
        await self.worker.close()

    async def enqueue_webhook(self, job: WebhookJob) -> Optional[str]:
        """
        Queue a webhook delivery.

        Fire-and-forget: returns the opaque job id, or None if the
        backend refused the job. Never raises.
        """
        try:
            return await self.backend.enqueue(job)
        except Exception as e:
            logger.error(
                "webhook_enqueue_failed",
                backend=self.backend.kind,
                lead_id=job.lead_id,
                partner_id=job.partner_id,
                error=str(e),
            )
            capture_exception(e)
            return None

    async def get_queue_stats(self) -> QueueStats:
        return await self.backend.stats()


async def create_delivery_service(session_factory: async_sessionmaker) -> DeliveryService:
    """Service wired from application settings."""
    return await DeliveryService.create(session_factory, redis_url=settings.REDIS_URL)
