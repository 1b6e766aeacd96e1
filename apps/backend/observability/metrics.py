"""
Prometheus metrics collection for the Bonus Engine backend.

Provides RED metrics (Rate, Errors, Duration) and bonus business metrics.
"""

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    REGISTRY,
)

# Use the default registry
metrics_registry = REGISTRY

# HTTP Metrics (RED - Rate, Errors, Duration)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
    registry=metrics_registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=metrics_registry,
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests in progress",
    ["method", "endpoint"],
    registry=metrics_registry,
)

# Business Metrics
bonus_events_total = Counter(
    "bonus_events_total",
    "Total bonus group events",
    ["event_type"],  # group_created, group_updated, group_deleted, group_redeemed, group_auto_created
    registry=metrics_registry,
)

bonus_redeemed_amount_total = Counter(
    "bonus_redeemed_amount_total",
    "Total bonus amount paid out through redemptions",
    registry=metrics_registry,
)

draft_saves_total = Counter(
    "draft_saves_total",
    "Draft autosave attempts",
    ["outcome"],  # saved, failed
    registry=metrics_registry,
)

draft_pending_gauge = Gauge(
    "draft_pending_gauge",
    "Drafts waiting for a debounced save",
    registry=metrics_registry,
)
