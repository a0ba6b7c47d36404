"""Audit logging for record lifecycle events."""

from .service import (
    AuditSink,
    SqlAuditSink,
    log_audit_event,
    RECORD_DELETED,
    RECORD_MANUALLY_DELETED,
    RECORD_MARKED_FOR_DELETION,
)

__all__ = [
    "AuditSink",
    "SqlAuditSink",
    "log_audit_event",
    "RECORD_DELETED",
    "RECORD_MANUALLY_DELETED",
    "RECORD_MARKED_FOR_DELETION",
]
