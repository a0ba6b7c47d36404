"""Observability module for the KYC vault.

Provides structured logging, metrics, run correlation, and health checks.
"""

from .logging_config import JSONFormatter, RunIDFilter, configure_logging, get_logger
from .metrics import (
    archival_runs_total,
    archival_run_duration_seconds,
    archival_warnings_total,
    archival_deletions_total,
    archival_rescues_total,
    archival_errors_total,
    notifications_sent_total,
    field_decode_failures_total,
    outbox_events_total,
)
from .run_context import run_id_var, get_run_id, set_run_id, generate_run_id, run_scope
from .health import (
    HealthStatus,
    ComponentHealth,
    check_archival_health,
    check_database_health,
    get_overall_health,
)

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    "JSONFormatter",
    "RunIDFilter",
    # Metrics
    "archival_runs_total",
    "archival_run_duration_seconds",
    "archival_warnings_total",
    "archival_deletions_total",
    "archival_rescues_total",
    "archival_errors_total",
    "notifications_sent_total",
    "field_decode_failures_total",
    "outbox_events_total",
    # Run ID
    "run_id_var",
    "get_run_id",
    "set_run_id",
    "generate_run_id",
    "run_scope",
    # Health
    "HealthStatus",
    "ComponentHealth",
    "check_database_health",
    "check_archival_health",
    "get_overall_health",
]
