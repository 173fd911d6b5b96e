"""Prometheus collectors shared by the HTTP layer and the enforcer."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

HTTP_REQUESTS = Counter(
    "canquota_http_requests_total",
    "HTTP requests served, by route template",
    labelnames=("method", "route", "status"),
)
HTTP_LATENCY = Histogram(
    "canquota_http_request_duration_seconds",
    "Wall time spent serving HTTP requests",
    labelnames=("method", "route"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)
QUOTA_DECISIONS = Counter(
    "canquota_quota_decisions_total",
    "Quota decisions grouped by action, caller kind and outcome",
    labelnames=("action", "limit_type", "outcome"),
)
STORE_LATENCY = Histogram(
    "canquota_store_operation_seconds",
    "Time spent in the usage store per enforcer action",
    labelnames=("action",),
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1, 2.5, 5),
)


def count_decision(action: str, limit_type: str, outcome: str) -> None:
    QUOTA_DECISIONS.labels(action=action, limit_type=limit_type, outcome=outcome).inc()
