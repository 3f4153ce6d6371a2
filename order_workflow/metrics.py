"""
Prometheus metrics: orders placed, transitions applied/rejected, admin overrides.
"""
from prometheus_client import Counter, generate_latest

orders_placed_total = Counter(
    "orders_placed_total",
    "Total orders created at the initial stage",
)

order_transitions_total = Counter(
    "order_transitions_total",
    "Total workflow transitions applied",
    ["from_stage", "to_stage", "actor_role"],
)

order_transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total transition requests rejected, by error kind",
    ["reason"],
)

order_overrides_total = Counter(
    "order_overrides_total",
    "Total admin overrides applied outside the transition table",
    ["to_stage"],
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
