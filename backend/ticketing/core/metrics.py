"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Payment reconciliation metrics
reconciliation_outcomes = Counter(
    'payment_reconciliation_total',
    'Payment callback reconciliations',
    ['outcome']  # applied, duplicate, ignored, unknown_correlation_id, malformed, failed
)

reconciliation_latency = Histogram(
    'payment_reconciliation_latency_seconds',
    'Time spent reconciling one provider callback',
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
)

issuance_retries = Counter(
    'ticket_issuance_retries_total',
    'Reconciliation transactions retried after a redemption code collision'
)

# Ticket metrics
tickets_issued = Counter(
    'tickets_issued_total',
    'Tickets issued',
    ['source']  # callback, manual
)

redemption_attempts = Counter(
    'ticket_redemption_attempts_total',
    'Door scans by result',
    ['result']  # accepted, already_used, not_found, booking_not_confirmed
)

redemption_latency = Histogram(
    'ticket_redemption_latency_seconds',
    'Door scan latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Payment initiation metrics
stk_push_requests = Counter(
    'mpesa_stk_push_requests_total',
    'STK push requests sent to the provider',
    ['status']  # accepted, error
)

# Infrastructure metrics
redis_publish_errors = Counter(
    'redis_publish_errors_total',
    'Domain events that could not be published to Redis'
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_reconciliation(outcome: str, duration_seconds: float):
    """Record one reconciliation run and how long it took."""
    reconciliation_outcomes.labels(outcome=outcome).inc()
    reconciliation_latency.observe(duration_seconds)


def record_tickets_issued(count: int, source: str):
    if count:
        tickets_issued.labels(source=source).inc(count)


def record_redemption(result: str, duration_seconds: float):
    redemption_attempts.labels(result=result).inc()
    redemption_latency.observe(duration_seconds)


def record_stk_push(accepted: bool):
    stk_push_requests.labels(status="accepted" if accepted else "error").inc()
