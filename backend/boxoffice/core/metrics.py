"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Purchase saga metrics
purchase_attempts = Counter(
    'ticket_purchase_attempts_total',
    'Ticket purchase attempts by outcome',
    ['outcome']  # purchased, replayed, conflict, sold_out, payment_failed, lock_timeout, error
)

purchase_latency = Histogram(
    'ticket_purchase_latency_seconds',
    'End-to-end purchase saga latency',
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

compensations = Counter(
    'ticket_purchase_compensations_total',
    'Reservations cancelled by saga compensation',
    ['reason']  # declined, timeout, gateway_error, reservation_expired
)

# Inventory lock metrics
lock_wait = Histogram(
    'inventory_lock_wait_seconds',
    'Time spent waiting for the per-ticket-type inventory lock',
    ['backend'],
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)

lock_timeouts = Counter(
    'inventory_lock_timeouts_total',
    'Inventory lock acquisitions abandoned after the wait timeout',
    ['backend']
)

remaining_drift = Counter(
    'inventory_remaining_drift_total',
    'Denormalized remaining_quantity counters found out of sync with the live ticket count'
)

# Idempotency ledger metrics
ledger_decisions = Counter(
    'idempotency_ledger_decisions_total',
    'Ledger begin() decisions',
    ['command', 'decision']  # proceed, replay, in_flight, retry_after_failure
)

# Ticket lifecycle metrics
tickets_swept = Counter(
    'ticket_reservations_expired_total',
    'Reserved tickets cancelled by the expiry sweep'
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/invalidate, hit/miss/error
)

redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)

side_effect_failures = Counter(
    'side_effect_failures_total',
    'Best-effort cache invalidation / event publication failures',
    ['channel']  # cache, events
)

active_reservations = Gauge(
    'ticket_reservations_in_flight',
    'Purchase sagas currently between reservation and payment outcome'
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


# Convenience functions for instrumentation
def record_purchase(outcome: str):
    """Record purchase outcome."""
    purchase_attempts.labels(outcome=outcome).inc()


def record_ledger_decision(command: str, decision: str):
    ledger_decisions.labels(command=command, decision=decision).inc()


def record_cache_operation(operation: str, result: str):
    """Record cache operation. Result: hit, miss, error"""
    cache_operations.labels(operation=operation, result=result).inc()
