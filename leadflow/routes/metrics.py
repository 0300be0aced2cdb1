"""
Prometheus metrics endpoint.

Exposes webhook delivery and queue metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# Delivery Metrics
# ============================================

webhook_deliveries_total = Counter(
    'webhook_deliveries_total',
    'Total webhook delivery attempts',
    ['partner_id', 'status']
)

webhook_delivery_duration = Histogram(
    'webhook_delivery_duration_seconds',
    'Webhook delivery round-trip time in seconds',
    ['partner_id'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

webhook_retries_total = Counter(
    'webhook_retries_total',
    'Total webhook retries scheduled',
    ['backend']
)

webhook_permanent_failures_total = Counter(
    'webhook_permanent_failures_total',
    'Total webhooks that exhausted their retry budget',
    ['backend']
)

# ============================================
# Queue Metrics
# ============================================

webhooks_enqueued_total = Counter(
    'webhooks_enqueued_total',
    'Total webhook jobs enqueued',
    ['backend']
)

webhook_queue_depth = Gauge(
    'webhook_queue_waiting',
    'Webhook jobs waiting in the queue',
    ['backend']
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_delivery(partner_id: str, status: str, duration_seconds: float):
    """Record one delivery attempt."""
    webhook_deliveries_total.labels(partner_id=partner_id, status=status).inc()
    webhook_delivery_duration.labels(partner_id=partner_id).observe(duration_seconds)


def track_enqueued(backend: str):
    """Record a job being enqueued."""
    webhooks_enqueued_total.labels(backend=backend).inc()


def track_retry(backend: str):
    """Record a retry being scheduled."""
    webhook_retries_total.labels(backend=backend).inc()


def track_permanent_failure(backend: str):
    """Record a job exhausting its retries."""
    webhook_permanent_failures_total.labels(backend=backend).inc()


def update_queue_depth(backend: str, waiting: int):
    """Update waiting job gauge."""
    webhook_queue_depth.labels(backend=backend).set(waiting)


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
