"""
Health check utilities for dependency monitoring.

The bonus engine depends on the database only, plus its in-process
draft autosaver whose backlog is reported as a soft signal.
"""

import time
import asyncio
from typing import Dict, Any, Optional
from datetime import datetime
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .logging import get_logger

logger = get_logger(__name__)

# More unsaved drafts than this means saves keep failing
PENDING_DRAFTS_DEGRADED = 50


class HealthCheckResult:
    """Result of a health check."""

    def __init__(self, name: str, status: str, details: Optional[Dict[str, Any]] = None, error: Optional[str] = None):
        self.name = name
        self.status = status  # "ok", "degraded", "error"
        self.details = details or {}
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "status": self.status,
            "details": self.details,
        }
        if self.error:
            result["error"] = self.error
        return result

    @property
    def is_healthy(self) -> bool:
        return self.status == "ok"


async def check_database(session: AsyncSession, timeout: float = 5.0) -> HealthCheckResult:
    """
    Check database connectivity and latency.

    Args:
        session: Database session
        timeout: Timeout in seconds
    """
    start_time = time.time()

    try:
        await asyncio.wait_for(session.execute(text("SELECT 1")), timeout=timeout)
        latency = time.time() - start_time
        return HealthCheckResult(
            name="database",
            status="ok",
            details={"latency_ms": round(latency * 1000, 2)},
        )

    except asyncio.TimeoutError:
        return HealthCheckResult(
            name="database",
            status="error",
            error=f"Database query timeout after {timeout}s",
        )

    except (SQLAlchemyError, OSError) as e:
        logger.error("Database health check failed", exc_info=True)
        return HealthCheckResult(
            name="database",
            status="error",
            error=str(e)[:200],
        )


def check_draft_autosaver(autosaver) -> HealthCheckResult:
    """Report how many drafts are waiting for a save."""
    if autosaver is None:
        return HealthCheckResult(name="draft_autosaver", status="degraded", details={"message": "not started"})
    pending = autosaver.pending_count()
    status = "degraded" if pending > PENDING_DRAFTS_DEGRADED else "ok"
    return HealthCheckResult(name="draft_autosaver", status=status, details={"pending_drafts": pending})


async def run_health_checks(session: AsyncSession, autosaver=None) -> Dict[str, Any]:
    """Run all health checks and return aggregated results."""
    checks = {
        "database": await check_database(session),
        "draft_autosaver": check_draft_autosaver(autosaver),
    }

    statuses = [check.status for check in checks.values()]
    if any(status == "error" for status in statuses):
        overall_status = "unhealthy"
    elif any(status == "degraded" for status in statuses):
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    return {
        "status": overall_status,
        "timestamp": datetime.utcnow().isoformat(),
        "checks": {name: check.to_dict() for name, check in checks.items()},
    }
