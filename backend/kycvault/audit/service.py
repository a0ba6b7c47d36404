"""Audit logging for data-lifecycle events.

Every retention decision that changes or removes a PII record leaves an
immutable audit_log row:

- record_marked_for_deletion
- record_deleted
- record_manually_deleted

Writers go through the AuditSink port so the orchestrator does not depend on
the storage of audit rows.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Dict, Any, Union
from uuid import UUID

from sqlalchemy.orm import Session

from ..models.audit_log import AuditLog

RECORD_MARKED_FOR_DELETION = "record_marked_for_deletion"
RECORD_DELETED = "record_deleted"
RECORD_MANUALLY_DELETED = "record_manually_deleted"


def log_audit_event(
    db: Session,
    action: str,
    module: str,
    resource: str,
    resource_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    actor_id: Optional[UUID] = None,
    created_at: Optional[datetime] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AuditLog:
    """Create an audit log entry.

    All parameters are stored as-is. The entry is flushed, not committed;
    it becomes durable with the caller's transaction.

    Args:
        db: Database session
        action: Event action (e.g., "record_deleted")
        module: Archival module the record belongs to (e.g., "panKyc")
        resource: Kind of resource affected (e.g., "pan_kyc")
        resource_id: ID of affected resource (kept after the resource is gone)
        details: Additional context as JSON
        actor_id: User who performed the action (None for system events)
        created_at: Event time (defaults to now)
        ip_address: Client IP address for user-initiated events
        user_agent: Client User-Agent for user-initiated events

    Returns:
        AuditLog: The created audit log entry

    Example:
        log_audit_event(
            db=db,
            action="record_deleted",
            module="panKyc",
            resource="pan_kyc",
            resource_id=str(record.id),
            details={"reason": "retention policy"},
        )
    """
    audit_entry = AuditLog(
        user_id=actor_id,
        action=action,
        module=module,
        resource=resource,
        resource_id=resource_id,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    if created_at is not None:
        audit_entry.created_at = created_at

    db.add(audit_entry)
    db.flush()  # Get ID without committing transaction

    return audit_entry


class AuditSink(ABC):
    """Append-only audit port used by the archival orchestrator."""

    @abstractmethod
    def log(
        self,
        action: str,
        module: str,
        resource: str,
        details: Dict[str, Any],
        actor_id: Optional[Union[UUID, str]] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        ...


class SqlAuditSink(AuditSink):
    """AuditSink writing audit_log rows in the caller's session."""

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        action: str,
        module: str,
        resource: str,
        details: Dict[str, Any],
        actor_id: Optional[Union[UUID, str]] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        if actor_id is not None and not isinstance(actor_id, UUID):
            actor_id = UUID(str(actor_id))
        log_audit_event(
            db=self.db,
            action=action,
            module=module,
            resource=resource,
            resource_id=details.get("recordId"),
            details=details,
            actor_id=actor_id,
            created_at=timestamp,
        )
