"""
Prometheus metrics: committed and rejected lifecycle transitions, notification outcomes.
"""
from prometheus_client import Counter, generate_latest

order_transitions_total = Counter(
    "order_transitions_total",
    "Total committed order lifecycle transitions (including submit and modify)",
    ["transition"],
)
order_transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total lifecycle operations rejected, by error kind",
    ["transition", "reason"],
)

notifications_published_total = Counter(
    "notifications_published_total",
    "Total notifications published to the bus",
)
notifications_failed_total = Counter(
    "notifications_failed_total",
    "Total notifications that failed or timed out (never surfaced to callers)",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
