"""Health check utilities for the KYC vault.

Provides health checks for the database and the archival pipeline.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from .logging_config import get_logger

logger = get_logger(__name__)

# A scheduled run more than this far in the past means the scheduler stalled
ARCHIVAL_OVERDUE_GRACE = timedelta(hours=2)


class HealthStatus(str, Enum):
    """Health check status enum."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class ComponentHealth:
    """Health status for a single component."""
    status: HealthStatus
    message: Optional[str] = None
    latency_ms: Optional[float] = None


def check_database_health(db: Session) -> ComponentHealth:
    """Check database connectivity.

    Args:
        db: Database session

    Returns:
        ComponentHealth: Database health status
    """
    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        latency_ms = (time.time() - start) * 1000

        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message="Database connection OK",
            latency_ms=round(latency_ms, 2)
        )
    except Exception as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            message=f"Database error: {str(e)}"
        )


def check_archival_health(service, now: Optional[datetime] = None) -> ComponentHealth:
    """Check the archival pipeline from its recorded run times.

    DEGRADED when the last run reported errors or the next scheduled run is
    overdue; UNHEALTHY when the stats cannot be read.

    Args:
        service: ArchivalService instance
        now: Reference time (defaults to the current UTC time)
    """
    now = now or datetime.now(timezone.utc)
    try:
        stats = service.get_stats()
    except Exception as e:
        logger.error(f"Archival health check failed: {e}", exc_info=True)
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            message=f"Archival error: {str(e)}"
        )

    report = service.last_report
    if report is not None and report.total_errors:
        return ComponentHealth(
            status=HealthStatus.DEGRADED,
            message=f"Last archival run had {report.total_errors} error(s)"
        )

    next_run = stats["config"].get("nextArchivalRun")
    if next_run and not stats["isRunning"]:
        next_run_at = datetime.fromisoformat(next_run)
        if next_run_at.tzinfo is None:
            next_run_at = next_run_at.replace(tzinfo=timezone.utc)
        if now - next_run_at > ARCHIVAL_OVERDUE_GRACE:
            return ComponentHealth(
                status=HealthStatus.DEGRADED,
                message=f"Archival run overdue since {next_run}"
            )

    return ComponentHealth(status=HealthStatus.HEALTHY, message="Archival OK")


def get_overall_health(components: Dict[str, ComponentHealth]) -> HealthStatus:
    """Determine overall health from component statuses.

    Args:
        components: Dictionary of component health statuses

    Returns:
        HealthStatus: Overall system health
    """
    if all(c.status == HealthStatus.HEALTHY for c in components.values()):
        return HealthStatus.HEALTHY

    if any(c.status == HealthStatus.UNHEALTHY for c in components.values()):
        return HealthStatus.UNHEALTHY

    return HealthStatus.DEGRADED
