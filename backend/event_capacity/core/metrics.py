"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Reservation metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total reservation attempts',
    ['result']  # reserved, capacity_exceeded, duplicate, lock_timeout, error
)

booking_cancellations = Counter(
    'booking_cancellations_total',
    'Bookings cancelled, by reason',
    ['reason', 'changed']  # changed=false for idempotent repeats
)

booking_confirmations = Counter(
    'booking_confirmations_total',
    'Pending bookings confirmed by payment'
)

# Locking metrics
lock_wait_seconds = Histogram(
    'event_lock_wait_seconds',
    'Time spent acquiring the event row lock',
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

lock_retries = Counter(
    'event_lock_retries_total',
    'Operations retried after a lock timeout'
)

# Operator metrics
capacity_adjustments = Counter(
    'capacity_adjustments_total',
    'Operator capacity changes',
    ['result']  # applied, rejected
)

reconcile_corrections = Counter(
    'capacity_reconcile_corrections_total',
    'Events whose available_spots had drifted and were repaired'
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


def record_booking_attempt(result: str):
    """Result: reserved, capacity_exceeded, duplicate, lock_timeout, error"""
    booking_attempts.labels(result=result).inc()


def record_cancellation(reason: str, changed: bool):
    booking_cancellations.labels(reason=reason, changed=str(changed).lower()).inc()


def record_capacity_adjustment(applied: bool):
    capacity_adjustments.labels(result="applied" if applied else "rejected").inc()
