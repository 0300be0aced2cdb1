"""
ARQ Background Worker for LeadFlow webhook delivery.

Processes webhook jobs from the Redis queue. Runs either inside the API
process (started by DurableQueue) or standalone:

    arq leadflow.worker.WorkerSettings
"""
from dataclasses import asdict

import structlog
from arq import Retry
from arq.connections import RedisSettings
from arq.worker import func

from leadflow.config import settings
from leadflow.database import AsyncSessionLocal
from leadflow.logging_config import configure_logging
from leadflow.models.job import WebhookJob
from leadflow.routes.metrics import track_retry, track_permanent_failure
from leadflow.sentry_config import capture_message, configure_sentry
from leadflow.services.delivery_ledger import DeliveryLedger
from leadflow.services.delivery_worker import AuthConfigError, DeliveryWorker
from leadflow.services.retry_policy import RetryPolicy

logger = structlog.get_logger()

DELIVER_WEBHOOK = "deliver_webhook"


def redis_settings(redis_url: str | None = None, conn_retries: int | None = None) -> RedisSettings:
    """arq RedisSettings from a redis:// DSN."""
    redis = RedisSettings.from_dsn(redis_url or settings.REDIS_URL or "redis://localhost:6379")
    if conn_retries is not None:
        redis.conn_retries = conn_retries
    return redis


async def deliver_webhook(ctx: dict, job_data: dict) -> dict:
    """
    Deliver one webhook job.

    ARQ's job_try (starts at 1) is the attempt number. Retries are
    scheduled with Retry(defer=...) from the shared policy; the last
    failure is re-raised so ARQ records the job as failed.
    """
    job_try = ctx.get("job_try", 1)
    policy: RetryPolicy = ctx["retry_policy"]
    delivery_worker: DeliveryWorker = ctx["delivery_worker"]
    ledger: DeliveryLedger = ctx["ledger"]

    job = WebhookJob.from_queue_message(job_data)
    job.attempt_count = job_try
    log = logger.bind(
        backend="durable",
        job_id=ctx.get("job_id"),
        lead_id=job.lead_id,
        partner_id=job.partner_id,
        attempt=job_try,
    )

    try:
        result = await delivery_worker.process(job)
    except AuthConfigError as e:
        log.error("webhook_rejected_invalid_auth", error=str(e))
        await ledger.mark_terminal(job.lead_id, job.partner_id, f"Invalid auth config: {e}")
        raise
    except Exception as e:
        if policy.should_retry(job_try):
            delay = policy.delay_for(job_try)
            track_retry("durable")
            log.warning("webhook_retry_scheduled", error=str(e), delay_seconds=delay)
            raise Retry(defer=delay) from e

        track_permanent_failure("durable")
        log.error("webhook_permanently_failed", error=str(e))
        capture_message(
            f"Webhook for lead {job.lead_id} to partner {job.partner_id} "
            f"permanently failed after {job_try} attempts",
            level="error",
        )
        await ledger.mark_terminal(job.lead_id, job.partner_id, str(e))
        raise

    log.info("webhook_job_completed", status_code=result.status_code)
    return asdict(result)


def worker_functions(policy: RetryPolicy) -> list:
    """Registered ARQ functions; max_tries follows the shared policy."""
    return [func(deliver_webhook, name=DELIVER_WEBHOOK, max_tries=policy.max_attempts)]


async def startup(ctx: dict) -> None:
    """Standalone worker startup: wire ledger and delivery worker into ctx."""
    configure_logging()
    configure_sentry()
    ledger = DeliveryLedger(AsyncSessionLocal)
    ctx["ledger"] = ledger
    ctx["delivery_worker"] = DeliveryWorker(ledger)
    ctx["retry_policy"] = RetryPolicy.from_settings()
    logger.info("webhook_worker_started", redis=settings.REDIS_URL)


async def shutdown(ctx: dict) -> None:
    delivery_worker = ctx.get("delivery_worker")
    if delivery_worker is not None:
        await delivery_worker.close()
    logger.info("webhook_worker_stopped")


class WorkerSettings:
    """Settings for ARQ worker - use with 'arq leadflow.worker.WorkerSettings'"""
    redis_settings = redis_settings()
    queue_name = settings.WEBHOOK_QUEUE_NAME
    functions = worker_functions(RetryPolicy.from_settings())
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = settings.WEBHOOK_CONCURRENCY
    max_tries = settings.WEBHOOK_MAX_ATTEMPTS
    keep_result = settings.WEBHOOK_KEEP_RESULT_SECONDS
    job_timeout = int(settings.WEBHOOK_TIMEOUT_SECONDS) + 30
