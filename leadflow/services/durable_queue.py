"""
Durable webhook queue backed by ARQ on Redis.

Jobs survive process restarts. Retry scheduling is delegated to ARQ via
the deliver_webhook task in leadflow.worker.
"""
import asyncio
from typing import Optional

import structlog
from arq import create_pool
from arq.connections import ArqRedis
from arq.constants import in_progress_key_prefix
from arq.worker import Worker

from leadflow.config import settings
from leadflow.models.job import WebhookJob
from leadflow.routes.metrics import track_enqueued, update_queue_depth
from leadflow.services.delivery_ledger import DeliveryLedger
from leadflow.services.delivery_worker import DeliveryWorker
from leadflow.services.queue_backend import QueueBackend, QueueStats
from leadflow.services.retry_policy import RetryPolicy
from leadflow.worker import DELIVER_WEBHOOK, redis_settings, worker_functions

logger = structlog.get_logger()


async def probe_redis(redis_url: Optional[str]) -> Optional[ArqRedis]:
    """
    Connect to Redis once, without retry loops.

    Returns a ready pool, or None if Redis is not configured or not
    answering PING.
    """
    if not redis_url:
        logger.warning("redis_not_configured", fallback="memory")
        return None

    try:
        pool = await create_pool(redis_settings(redis_url, conn_retries=0))
        await pool.ping()
        return pool
    except Exception as e:
        logger.warning("redis_unavailable", error=str(e), fallback="memory")
        return None


class DurableQueue(QueueBackend):
    """ARQ-backed queue with bounded concurrency and automatic retries."""

    kind = "durable"

    def __init__(
        self,
        pool: ArqRedis,
        worker: DeliveryWorker,
        ledger: DeliveryLedger,
        policy: Optional[RetryPolicy] = None,
        queue_name: Optional[str] = None,
        concurrency: Optional[int] = None,
        keep_result_seconds: Optional[int] = None,
        run_worker: bool = True,
    ):
        self.pool = pool
        self.worker = worker
        self.ledger = ledger
        self.policy = policy or RetryPolicy.from_settings()
        self.queue_name = queue_name or settings.WEBHOOK_QUEUE_NAME
        self.concurrency = concurrency or settings.WEBHOOK_CONCURRENCY
        self.keep_result_seconds = keep_result_seconds or settings.WEBHOOK_KEEP_RESULT_SECONDS
        self.run_worker = run_worker
        self._arq_worker: Optional[Worker] = None
        self._worker_task: Optional[asyncio.Task] = None

    async def enqueue(self, job: WebhookJob) -> str:
        arq_job = await self.pool.enqueue_job(
            DELIVER_WEBHOOK,
            job.to_queue_message(),
            _queue_name=self.queue_name,
        )
        if arq_job is None:
            raise RuntimeError("ARQ refused the job (duplicate job id)")

        track_enqueued(self.kind)
        logger.info(
            "webhook_queued",
            backend=self.kind,
            job_id=arq_job.job_id,
            lead_id=job.lead_id,
            partner_id=job.partner_id,
        )
        return arq_job.job_id

    async def start(self) -> None:
        """Run an ARQ worker inside this process."""
        if not self.run_worker or self._arq_worker is not None:
            return

        self._arq_worker = Worker(
            functions=worker_functions(self.policy),
            redis_pool=self.pool,
            queue_name=self.queue_name,
            max_jobs=self.concurrency,
            max_tries=self.policy.max_attempts,
            keep_result=self.keep_result_seconds,
            job_timeout=int(settings.WEBHOOK_TIMEOUT_SECONDS) + 30,
            handle_signals=False,
            ctx={
                "ledger": self.ledger,
                "delivery_worker": self.worker,
                "retry_policy": self.policy,
            },
        )
        self._worker_task = asyncio.create_task(self._arq_worker.async_run())
        logger.info(
            "durable_queue_started",
            queue_name=self.queue_name,
            concurrency=self.concurrency,
            max_attempts=self.policy.max_attempts,
        )

    async def close(self) -> None:
        if self._worker_task is not None:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None
        if self._arq_worker is not None:
            # Worker.close() also closes the shared pool
            await self._arq_worker.close()
            self._arq_worker = None
        else:
            await self.pool.aclose()

    async def stats(self) -> QueueStats:
        try:
            waiting = await self.pool.zcard(self.queue_name)
            active = 0
            async for _ in self.pool.scan_iter(match=f"{in_progress_key_prefix}*"):
                active += 1
            results = await self.pool.all_job_results()
        except Exception as e:
            logger.error("durable_queue_stats_failed", error=str(e))
            return QueueStats(type="durable", error=str(e))

        update_queue_depth(self.kind, waiting)
        completed = sum(1 for r in results if r.success)
        return QueueStats(
            type="durable",
            waiting=waiting,
            active=active,
            completed=completed,
            failed=len(results) - completed,
        )
