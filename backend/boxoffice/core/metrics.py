"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Checkout metrics
checkout_attempts = Counter(
    'checkout_attempts_total',
    'Total checkout attempts',
    ['result']  # created, insufficient, invalid, gateway_error
)

checkout_latency = Histogram(
    'checkout_latency_seconds',
    'Checkout request latency',
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

capacity_guard_retries = Counter(
    'capacity_guard_retries_total',
    'Checkout retries caused by concurrent reservations on the same category'
)

inventory_checks = Counter(
    'inventory_checks_total',
    'Inventory availability checks',
    ['result']  # ok, disabled, sold_out, insufficient
)

# Order lifecycle
order_transitions = Counter(
    'order_transitions_total',
    'Order status transitions',
    ['from_status', 'to_status']
)

orders_expired = Counter(
    'orders_expired_total',
    'Orders moved to expired by the sweep'
)

# Payments
payment_events = Counter(
    'payment_events_total',
    'Payment provider events handled',
    ['kind', 'outcome']  # processed, already_processed, ignored
)

# Tickets
tickets_issued = Counter(
    'tickets_issued_total',
    'Tickets issued for paid orders'
)

ticket_redemptions = Counter(
    'ticket_redemptions_total',
    'Ticket redemption attempts at the gate',
    ['result']
)

redemption_latency = Histogram(
    'redemption_latency_seconds',
    'Ticket redemption latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25]
)

# Collaborators
notifications = Counter(
    'notifications_total',
    'Notification dispatches',
    ['kind', 'result']  # sent, failed
)

cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss/error
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


def record_checkout(result: str):
    """Record checkout attempt. Result: created, insufficient, invalid, gateway_error"""
    checkout_attempts.labels(result=result).inc()


def record_transition(from_status: str, to_status: str):
    order_transitions.labels(from_status=from_status, to_status=to_status).inc()


def record_payment_event(kind: str, outcome: str):
    payment_events.labels(kind=kind, outcome=outcome).inc()


def record_redemption(result: str):
    ticket_redemptions.labels(result=result).inc()


def record_notification(kind: str, sent: bool):
    notifications.labels(kind=kind, result="sent" if sent else "failed").inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
