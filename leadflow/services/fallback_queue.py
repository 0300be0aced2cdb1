"""
In-process fallback queue.

Used when Redis is not configured or unreachable at startup. Jobs live
only in this process; a restart loses them.
"""
import asyncio
import collections
from typing import Optional

import structlog

from leadflow.config import settings
from leadflow.models.job import WebhookJob, generate_fallback_job_id
from leadflow.routes.metrics import track_enqueued, track_retry, track_permanent_failure, update_queue_depth
from leadflow.sentry_config import capture_message
from leadflow.services.delivery_ledger import DeliveryLedger
from leadflow.services.delivery_worker import AuthConfigError, DeliveryWorker
from leadflow.services.queue_backend import QueueBackend, QueueStats
from leadflow.services.retry_policy import RetryPolicy
from leadflow.services.scheduler import DelayedScheduler

logger = structlog.get_logger()


class FallbackQueue(QueueBackend):
    """
    Ordered in-memory buffer with a single timer-driven consumer.

    At most one processing cycle runs at a time: a trigger that arrives
    while a cycle is in flight returns without doing anything. Failed
    jobs are held in a DelayedScheduler and re-enter at the tail once
    their backoff has elapsed, so ordering across retries is not kept.
    """

    kind = "fallback"

    def __init__(
        self,
        worker: DeliveryWorker,
        ledger: DeliveryLedger,
        policy: Optional[RetryPolicy] = None,
        poll_interval: Optional[float] = None,
        scheduler: Optional[DelayedScheduler] = None,
    ):
        self.worker = worker
        self.ledger = ledger
        self.policy = policy or RetryPolicy.from_settings()
        self.poll_interval = poll_interval or settings.FALLBACK_POLL_INTERVAL_SECONDS
        self.scheduler: DelayedScheduler = scheduler if scheduler is not None else DelayedScheduler()
        self._buffer: collections.deque[tuple[str, WebhookJob]] = collections.deque()
        self._in_flight = asyncio.Lock()
        self._timer: Optional[asyncio.Task] = None
        self._kicks: set[asyncio.Task] = set()
        self.completed = 0
        self.failed = 0

    async def enqueue(self, job: WebhookJob) -> str:
        job_id = generate_fallback_job_id()
        # The queue owns the attempt counter from here on
        job = job.model_copy(update={"attempt_count": 0})
        self._buffer.append((job_id, job))
        track_enqueued(self.kind)

        logger.info(
            "webhook_queued",
            backend=self.kind,
            job_id=job_id,
            lead_id=job.lead_id,
            partner_id=job.partner_id,
        )

        # Start processing now rather than waiting for the next tick
        task = asyncio.create_task(self.process_once())
        self._kicks.add(task)
        task.add_done_callback(self._kicks.discard)
        return job_id

    async def start(self) -> None:
        if self._timer is None:
            self._timer = asyncio.create_task(self._run())
            logger.info("fallback_queue_started", poll_interval=self.poll_interval)

    async def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        kicks = list(self._kicks)
        for task in kicks:
            task.cancel()
        await asyncio.gather(*kicks, return_exceptions=True)
        if self._buffer or len(self.scheduler):
            logger.warning(
                "fallback_queue_closed_with_pending_jobs",
                waiting=len(self._buffer),
                delayed=len(self.scheduler),
            )

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.process_once()
            except Exception as e:
                logger.error("fallback_queue_cycle_failed", error=str(e))

    def _promote_due(self) -> None:
        for entry in self.scheduler.due():
            self._buffer.append(entry)

    async def process_once(self) -> bool:
        """
        Run one processing cycle.

        Returns True if a job was handed to the worker.
        """
        if self._in_flight.locked():
            return False

        async with self._in_flight:
            self._promote_due()
            update_queue_depth(self.kind, len(self._buffer))
            if not self._buffer:
                return False

            job_id, job = self._buffer.popleft()
            job.attempt_count += 1
            attempt = job.attempt_count
            log = logger.bind(
                backend=self.kind,
                job_id=job_id,
                lead_id=job.lead_id,
                partner_id=job.partner_id,
                attempt=attempt,
            )

            try:
                await self.worker.process(job)
            except AuthConfigError as e:
                self.failed += 1
                log.error("webhook_rejected_invalid_auth", error=str(e))
                await self.ledger.mark_terminal(job.lead_id, job.partner_id, f"Invalid auth config: {e}")
            except Exception as e:
                if self.policy.should_retry(attempt):
                    delay = self.policy.delay_for(attempt)
                    self.scheduler.schedule((job_id, job), delay)
                    track_retry(self.kind)
                    log.warning("webhook_retry_scheduled", error=str(e), delay_seconds=delay)
                else:
                    self.failed += 1
                    track_permanent_failure(self.kind)
                    log.error("webhook_permanently_failed", error=str(e))
                    capture_message(
                        f"Webhook for lead {job.lead_id} to partner {job.partner_id} "
                        f"permanently failed after {attempt} attempts",
                        level="error",
                    )
                    await self.ledger.mark_terminal(job.lead_id, job.partner_id, str(e))
            else:
                self.completed += 1
                log.info("webhook_job_completed")

            return True

    async def stats(self) -> QueueStats:
        return QueueStats(
            type="fallback",
            waiting=len(self._buffer) + len(self.scheduler),
            active=1 if self._in_flight.locked() else 0,
            completed=self.completed,
            failed=self.failed,
        )
