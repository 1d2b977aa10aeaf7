"""Prometheus metrics helpers for the payments domain."""
from __future__ import annotations

from prometheus_client import Counter, Histogram

PAYMENTS_REQUEST_COUNT = Counter(
    "payments_request_total",
    "Number of payments API requests",
    labelnames=("endpoint", "method", "status"),
)

PAYMENTS_REQUEST_LATENCY = Histogram(
    "payments_request_duration_seconds",
    "Latency of payments API requests",
    labelnames=("endpoint", "method"),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

WEBHOOK_EVENT_COUNT = Counter(
    "payments_webhook_events_total",
    "Webhook deliveries by gateway and outcome",
    labelnames=("gateway", "outcome"),
)

WEBHOOK_RETRY_COUNT = Counter(
    "payments_webhook_retry_total",
    "Retry queue transitions by gateway and resulting status",
    labelnames=("gateway", "status"),
)

SIDE_EFFECT_FAILURE_COUNT = Counter(
    "payments_side_effect_failure_total",
    "Best-effort side effects (email, notification, invoice) that failed",
    labelnames=("operation",),
)

CREDIT_MUTATION_COUNT = Counter(
    "payments_credits_mutations_total",
    "Credit balance mutations by entry type",
    labelnames=("entry_type",),
)
