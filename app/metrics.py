"""
Prometheus metrics: order mutations (API), notifications published (API) and sent (worker), outbox depth.
"""
from prometheus_client import Counter, Gauge, generate_latest

# API: order lifecycle
orders_created_total = Counter(
    "orders_created_total",
    "Total orders created",
)
order_transitions_total = Counter(
    "order_transitions_total",
    "Total status transitions applied",
    ["from_status", "to_status"],
)
order_returns_requested_total = Counter(
    "order_returns_requested_total",
    "Total customer-initiated return requests",
    ["return_type"],
)
order_mutations_rejected_total = Counter(
    "order_mutations_rejected_total",
    "Total order/staff mutations rejected (permission, transition, return state, validation, not found)",
    ["reason"],
)

# Notification outbox
notifications_published_total = Counter(
    "notifications_published_total",
    "Total status notifications pushed to the outbox",
    ["status"],
)
notifications_sent_total = Counter(
    "notifications_sent_total",
    "Total status notifications composed and handed off by the worker",
)
notifications_failed_total = Counter(
    "notifications_failed_total",
    "Total notifications that failed composition (retried or sent to DLQ)",
)
notifications_dlq_total = Counter(
    "notifications_dlq_total",
    "Total notifications moved to DLQ after max retries",
)
notification_queue_depth = Gauge(
    "notification_queue_depth",
    "Notifications waiting in the Redis outbox",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
