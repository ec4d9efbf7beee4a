"""
Prometheus metrics: lifecycle transitions, fan-out deliveries, courier location reports.
"""
from prometheus_client import Counter, Gauge, generate_latest

order_transitions_total = Counter(
    "order_transitions_total",
    "Total order status transitions applied",
    ["from_status", "to_status"],
)
order_transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total order status transition requests rejected",
    ["reason"],
)
orders_created_total = Counter(
    "orders_created_total",
    "Total orders created",
)

broadcast_messages_sent_total = Counter(
    "broadcast_messages_sent_total",
    "Total messages pushed to connected channels",
    ["message_type"],
)
broadcast_messages_dropped_total = Counter(
    "broadcast_messages_dropped_total",
    "Total pushes skipped because the channel was closed, failed or timed out",
    ["message_type"],
)

location_reports_total = Counter(
    "location_reports_total",
    "Total delivery partner location reports accepted",
)

connected_channels = Gauge(
    "realtime_connected_channels",
    "Number of currently connected real-time channels",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
