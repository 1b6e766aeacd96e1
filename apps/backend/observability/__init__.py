"""
Observability infrastructure for the Bonus Engine backend.

Provides:
- Structured logging with correlation IDs
- Sentry error tracking
- Prometheus metrics
- Health check utilities
"""

from .logging import get_logger, correlation_id_context, get_correlation_id
from .metrics import (
    metrics_registry,
    http_requests_total,
    http_request_duration_seconds,
    http_requests_in_progress,
    bonus_events_total,
    bonus_redeemed_amount_total,
    draft_saves_total,
    draft_pending_gauge,
)

__all__ = [
    "get_logger",
    "correlation_id_context",
    "get_correlation_id",
    "metrics_registry",
    "http_requests_total",
    "http_request_duration_seconds",
    "http_requests_in_progress",
    "bonus_events_total",
    "bonus_redeemed_amount_total",
    "draft_saves_total",
    "draft_pending_gauge",
]
