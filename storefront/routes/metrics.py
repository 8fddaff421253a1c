"""
Prometheus metrics endpoint.

Exposes request and webhook delivery metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Webhook Metrics
# ============================================

webhooks_queued = Counter(
    'webhooks_queued_total',
    'Total webhooks queued for delivery',
    ['event_type']
)

webhooks_sent = Counter(
    'webhooks_sent_total',
    'Total webhook delivery attempts',
    ['event_type', 'status']
)

webhooks_failed = Counter(
    'webhooks_failed_total',
    'Total webhooks that exhausted their attempts',
    ['event_type']
)

webhooks_retry_total = Counter(
    'webhooks_retry_total',
    'Total webhook retries scheduled',
    ['event_type']
)

webhook_delivery_duration = Histogram(
    'webhook_delivery_duration_seconds',
    'Outbound webhook request duration in seconds',
    ['event_type'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

webhook_queue_depth = Gauge(
    'webhook_queue_pending_count',
    'Webhook queue entries due or waiting for retry'
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Call this after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_webhook_queued(event_type: str):
    """Record a webhook being queued."""
    webhooks_queued.labels(event_type=event_type).inc()


def track_webhook_sent(event_type: str, status: str, duration_seconds: float):
    """Record one delivery attempt and its latency."""
    webhooks_sent.labels(event_type=event_type, status=status).inc()
    webhook_delivery_duration.labels(event_type=event_type).observe(duration_seconds)


def track_webhook_retry(event_type: str):
    """Record a retry being scheduled."""
    webhooks_retry_total.labels(event_type=event_type).inc()


def track_webhook_failed(event_type: str):
    """Record a webhook failing permanently."""
    webhooks_failed.labels(event_type=event_type).inc()


def update_queue_depth(depth: int):
    """Update pending webhook count."""
    webhook_queue_depth.set(depth)


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
