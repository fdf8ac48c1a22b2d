"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'slot_booking_attempts_total',
    'Total booking attempts',
    ['outcome']  # success, insufficient, conflict, invalid, not_found, error
)

booking_latency = Histogram(
    'slot_booking_latency_seconds',
    'Booking transaction latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0]
)

slot_lock_wait = Histogram(
    'slot_lock_wait_seconds',
    'Time spent waiting for the per-slot lock',
    buckets=[0.0001, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)

# Capacity released back to slots
seat_releases = Counter(
    'slot_seat_releases_total',
    'Bookings whose seats were returned to the slot',
    ['reason']  # expired, cancelled
)

# Cache metrics
cache_operations = Counter(
    'slot_cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_booking_attempt(outcome: str):
    booking_attempts.labels(outcome=outcome).inc()


def record_release(reason: str):
    seat_releases.labels(reason=reason).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
