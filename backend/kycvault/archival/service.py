"""Archival orchestrator for PII records.

Drives each enrolled record through the retention lifecycle:

    ACTIVE --(warn + mark)--> MARKED_FOR_DELETION --(delete)--> DELETED
                                       |
                                       +--(policy relaxed)--> ACTIVE

A run sweeps every enabled module in two phases:

1. Warn+mark: unwarned, unmarked records inside their warning window are
   marked with a scheduled deletion date and their owner (plus the module's
   admin addresses) is notified.
2. Delete: marked records whose scheduled date has passed are re-checked
   against the current policy and either hard-deleted or reverted to ACTIVE.

Records are processed one at a time and each transition is committed on its
own, so one failing record never rolls back another. Notifications are
delivered through an EventPublisher after the transition commits; a failed
send never undoes the transition.

At most one run is active per orchestrator instance. With ARCHIVAL_USE_LEASE
the run also needs the durable lease, which extends the guarantee across
processes.
"""

import copy
import enum
import logging
import math
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Union
from uuid import UUID

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from ..audit.service import AuditSink, SqlAuditSink
from ..config import Settings, get_settings
from ..database import SessionLocal
from ..infrastructure.encryption import SENTINEL, decrypt_many
from ..models import AadhaarPan, PanKyc, User
from ..models.retention_config import DEFAULT_MODULE_STATS
from ..notifications.ports import NotificationDispatcher
from ..notifications.smtp import SmtpNotificationDispatcher
from ..observability import metrics
from ..observability.run_context import run_scope
from ..retention.policy import RetentionPolicy, UnknownModuleError, get_or_create_config
from .events import (
    RECORD_DELETED,
    RECORD_MANUALLY_DELETED,
    RECORD_MARKED_FOR_DELETION,
    RECORD_RESCUED,
    ArchivalEvent,
    DeliveryResult,
    EventPublisher,
    InlinePublisher,
    OutboxPublisher,
    OutboxRelay,
)
from .lease import DatabaseLease
from .notifications import NotificationConsumer
from .schemas import ArchivalRunReport, ModuleRunStats

logger = logging.getLogger(__name__)

# Archival module name -> record model
MODULE_MODELS = {
    "panKyc": PanKyc,
    "aadhaarPan": AadhaarPan,
}

MAX_PAGE_SIZE = 100


class RecordNotFoundError(LookupError):
    """Raised when a record addressed by ID does not exist."""
    pass


class RunState(str, enum.Enum):
    """Orchestrator run state"""
    IDLE = "idle"
    RUNNING = "running"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_uuid(value: Union[UUID, str]) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def mask_identifier(value: Any) -> Optional[str]:
    """Show only the last four characters of an identity number."""
    if not isinstance(value, str) or not value or value == SENTINEL:
        return None
    visible = value[-4:]
    return "X" * max(0, len(value) - 4) + visible


def get_model_for_module(module: str):
    try:
        return MODULE_MODELS[module]
    except KeyError:
        raise UnknownModuleError(module)


class ArchivalService:
    """Runs the retention lifecycle over all archival modules.

    Args:
        session_factory: Callable returning a new Session (default SessionLocal)
        dispatcher: Notification transport (default SMTP)
        audit_sink_factory: Builds an AuditSink for a session (default SqlAuditSink)
        clock: Returns the current aware UTC datetime
        sleep: Called with the inter-record delay after notifications
        settings: Application settings (default get_settings())
        lease: Durable lease; built from settings when ARCHIVAL_USE_LEASE is on
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        audit_sink_factory: Optional[Callable[[Session], AuditSink]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], None]] = None,
        settings: Optional[Settings] = None,
        lease: Optional[DatabaseLease] = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory or SessionLocal
        self.clock = clock or _utcnow
        self.sleep = sleep or time.sleep
        self.dispatcher = dispatcher or SmtpNotificationDispatcher(self.settings)
        self.consumer = NotificationConsumer(self.dispatcher, self.settings.FRONTEND_URL, self.clock)
        self.audit_sink_factory = audit_sink_factory or SqlAuditSink
        self.notification_delay = self.settings.ARCHIVAL_NOTIFICATION_DELAY_SECONDS
        self.notification_mode = self.settings.ARCHIVAL_NOTIFICATION_MODE

        if lease is None and self.settings.ARCHIVAL_USE_LEASE:
            lease = DatabaseLease(
                self.session_factory,
                self.settings.ARCHIVAL_LEASE_TTL_SECONDS,
                clock=self.clock,
            )
        self.lease = lease

        self._state_lock = threading.Lock()
        self._state = RunState.IDLE
        self.current_run_id: Optional[str] = None
        self.last_report: Optional[ArchivalRunReport] = None

    # ------------------------------------------------------------------
    # Run state
    # ------------------------------------------------------------------

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == RunState.RUNNING

    def _try_begin(self) -> bool:
        with self._state_lock:
            if self._state == RunState.RUNNING:
                return False
            self._state = RunState.RUNNING
            return True

    def _finish(self) -> None:
        with self._state_lock:
            self._state = RunState.IDLE
            self.current_run_id = None

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, trigger: str = "manual") -> Optional[ArchivalRunReport]:
        """Run both phases over every enabled module.

        Args:
            trigger: Label for logs and metrics (scheduled, manual, task)

        Returns:
            The run report, or None if another run holds the orchestrator
            (or the durable lease) and nothing was done
        """
        if not self._try_begin():
            logger.warning("Archival run already in progress, skipping")
            metrics.archival_runs_total.labels(trigger=trigger, outcome="skipped").inc()
            return None

        try:
            if self.lease is not None and not self.lease.acquire():
                logger.warning("Archival lease held by another instance, skipping")
                metrics.archival_runs_total.labels(trigger=trigger, outcome="skipped").inc()
                return None
            try:
                with run_scope() as run_id:
                    self.current_run_id = run_id
                    report = self._run(run_id, trigger)
            finally:
                if self.lease is not None:
                    self.lease.release()
        finally:
            self._finish()

        self.last_report = report
        return report

    def _run(self, run_id: str, trigger: str) -> ArchivalRunReport:
        started = self.clock()
        timer = time.monotonic()
        report = ArchivalRunReport(run_id=run_id, trigger=trigger, started_at=started)
        logger.info(f"Archival run started ({trigger})")

        db = self.session_factory()
        try:
            policy = RetentionPolicy(db, clock=self.clock)
            if not policy.is_globally_enabled():
                logger.info("Global archival is disabled, skipping run")
                report.status = "disabled"
            else:
                audit = self.audit_sink_factory(db)
                publisher = self._build_publisher(db)
                for module, model in MODULE_MODELS.items():
                    if not policy.is_module_enabled(module):
                        logger.info(f"{module} archival is disabled, skipping", extra={"module_name": module})
                        continue
                    stats = ModuleRunStats()
                    report.modules[module] = stats
                    self._process_module(db, policy, audit, publisher, module, model, stats)
                self._record_run(db, report)
        except Exception:
            db.rollback()
            report.status = "failed"
            metrics.archival_runs_total.labels(trigger=trigger, outcome="failed").inc()
            logger.error("Archival run failed", exc_info=True)
            raise
        finally:
            db.close()

        report.completed_at = self.clock()
        report.duration_seconds = round(time.monotonic() - timer, 3)
        metrics.archival_run_duration_seconds.observe(report.duration_seconds)
        metrics.archival_runs_total.labels(trigger=trigger, outcome=report.status).inc()
        logger.info(
            "Archival run finished",
            extra={"stats": {m: s.model_dump() for m, s in report.modules.items()}},
        )
        return report

    def _build_publisher(self, db: Session) -> EventPublisher:
        if self.notification_mode == "outbox":
            return OutboxPublisher(db)
        return InlinePublisher(self.consumer)

    def _process_module(
        self,
        db: Session,
        policy: RetentionPolicy,
        audit: AuditSink,
        publisher: EventPublisher,
        module: str,
        model,
        stats: ModuleRunStats,
    ) -> None:
        try:
            self._warn_and_mark(db, policy, audit, publisher, module, model, stats)
            self._delete_expired(db, policy, audit, publisher, module, model, stats)
        except Exception:
            # A failed sweep query; records already committed stay committed
            db.rollback()
            publisher.discard()
            stats.errors += 1
            logger.error(f"Error processing {module} archival", exc_info=True, extra={"module_name": module})
        else:
            logger.info(f"{module} archival processing completed", extra={"stats": stats.model_dump()})

    # ------------------------------------------------------------------
    # Phase 1: warn + mark
    # ------------------------------------------------------------------

    def _warn_and_mark(self, db, policy, audit, publisher, module, model, stats) -> None:
        now = self.clock()
        records = (
            db.query(model)
            .filter(
                model.deletion_warning_sent.is_(False),
                model.is_marked_for_deletion.is_(False),
            )
            .order_by(model.created_at)
            .all()
        )
        logger.info(f"Found {len(records)} {module} records to check for warnings", extra={"module_name": module})

        for record in records:
            record_id = str(record.id)
            try:
                if not policy.should_warn(record.created_at, record.user_id, module, now=now):
                    continue

                deletion_date = policy.get_deletion_date(record.created_at, record.user_id, module)
                settings = policy.get_user_module_settings(record.user_id, module)

                record.is_marked_for_deletion = True
                record.scheduled_deletion_date = deletion_date
                record.deletion_warning_sent = True
                record.warning_sent_at = now

                audit.log(
                    RECORD_MARKED_FOR_DELETION,
                    module,
                    model.__tablename__,
                    {
                        "recordId": record_id,
                        "userId": str(record.user_id),
                        "module": module,
                        "scheduledDeletionDate": _iso(deletion_date),
                    },
                    timestamp=now,
                )
                publisher.publish(self._build_event(
                    db, policy, RECORD_MARKED_FOR_DELETION, module, record, settings,
                    scheduledDeletionDate=_iso(deletion_date),
                ))
                db.commit()
            except Exception:
                self._record_failure(db, publisher, module, record_id, "warn", stats)
                continue

            stats.records_processed += 1
            metrics.archival_warnings_total.labels(module=module).inc()

            try:
                result = self._deliver(publisher)
            except Exception:
                stats.errors += 1
                metrics.archival_errors_total.labels(module=module, phase="notify").inc()
                logger.error(
                    "Warning delivery failed",
                    exc_info=True,
                    extra={"module_name": module, "record_id": record_id},
                )
                continue
            stats.warnings_sent += result.sent + result.queued
            if result.failed:
                stats.errors += result.failed
                logger.warning(
                    f"{result.failed} warning notification(s) failed",
                    extra={"module_name": module, "record_id": record_id},
                )

    # ------------------------------------------------------------------
    # Phase 2: delete (or rescue)
    # ------------------------------------------------------------------

    def _delete_expired(self, db, policy, audit, publisher, module, model, stats) -> None:
        now = self.clock()
        records = (
            db.query(model)
            .filter(
                model.is_marked_for_deletion.is_(True),
                model.scheduled_deletion_date <= now,
                model.actual_deletion_date.is_(None),
            )
            .order_by(model.scheduled_deletion_date)
            .all()
        )
        logger.info(f"Found {len(records)} {module} records to delete", extra={"module_name": module})

        for record in records:
            record_id = str(record.id)
            try:
                settings = policy.get_user_module_settings(record.user_id, module)
                if policy.should_delete(record.created_at, record.user_id, module, now=now):
                    event = self._build_event(
                        db, policy, RECORD_DELETED, module, record, settings,
                        deletedAt=_iso(now),
                        reason="retention_policy",
                    )
                    audit.log(
                        RECORD_DELETED,
                        module,
                        model.__tablename__,
                        {
                            "recordId": record_id,
                            "userId": str(record.user_id),
                            "module": module,
                            "batchId": record.batch_id,
                            "deletionReason": "retention_policy",
                            "retentionPeriod": settings["retentionPeriodDays"],
                        },
                        timestamp=now,
                    )
                    record.actual_deletion_date = now
                    db.delete(record)
                    publisher.publish(event)
                    db.commit()
                    deleted = True
                else:
                    # Policy relaxed since marking: back to ACTIVE, eligible for a fresh warning later
                    record.is_marked_for_deletion = False
                    record.scheduled_deletion_date = None
                    record.deletion_warning_sent = False
                    record.warning_sent_at = None
                    publisher.publish(self._build_event(
                        db, policy, RECORD_RESCUED, module, record, settings,
                    ))
                    db.commit()
                    deleted = False
            except Exception:
                self._record_failure(db, publisher, module, record_id, "delete", stats)
                continue

            if deleted:
                stats.records_deleted += 1
                metrics.archival_deletions_total.labels(module=module).inc()
            else:
                stats.records_rescued += 1
                metrics.archival_rescues_total.labels(module=module).inc()
                logger.info(
                    f"Unmarked {module} record - no longer eligible for deletion",
                    extra={"module_name": module, "record_id": record_id},
                )

            # Confirmation notices are best-effort
            try:
                result = self._deliver(publisher)
            except Exception:
                logger.error(
                    "Confirmation delivery failed",
                    exc_info=True,
                    extra={"module_name": module, "record_id": record_id},
                )
                continue
            if result.failed:
                logger.warning(
                    f"{result.failed} confirmation notification(s) failed",
                    extra={"module_name": module, "record_id": record_id},
                )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record_failure(self, db, publisher, module, record_id, phase, stats) -> None:
        db.rollback()
        publisher.discard()
        stats.errors += 1
        metrics.archival_errors_total.labels(module=module, phase=phase).inc()
        logger.error(
            f"Error processing {module} record in {phase} phase",
            exc_info=True,
            extra={"module_name": module, "record_id": record_id},
        )

    def _deliver(self, publisher: EventPublisher) -> DeliveryResult:
        """Hand committed events to the publisher and pace the transport."""
        result = publisher.dispatch()
        if result.attempted and self.notification_delay > 0:
            self.sleep(self.notification_delay)
        return result

    def _build_event(
        self,
        db: Session,
        policy: RetentionPolicy,
        event_type: str,
        module: str,
        record,
        settings: Dict[str, Any],
        notify_owner: Optional[bool] = None,
        **extra: Any,
    ) -> ArchivalEvent:
        """Snapshot everything a notification needs while the record still exists."""
        user = db.get(User, record.user_id)
        owner = {}
        if user is not None:
            owner = {"email": user.email, "firstName": user.first_name, "lastName": user.last_name}

        notify = policy.notifications_enabled() and settings["sendEmailNotifications"]
        if notify_owner is None:
            notify_owner = notify
        data = record.decrypt_data()
        status = record.status

        payload = {
            "recordId": str(record.id),
            "userId": str(record.user_id),
            "module": module,
            "batchId": record.batch_id,
            "status": getattr(status, "value", status),
            "createdAt": _iso(record.created_at),
            "owner": owner,
            "notifyOwner": bool(notify_owner and owner.get("email")),
            "adminEmails": list(settings["notificationEmails"]) if notify else [],
            "maskedIdentifier": mask_identifier(data.get("pan_number") or data.get("aadhaar_number")),
        }
        payload.update(extra)
        return ArchivalEvent(
            event_type=event_type,
            module=module,
            record_id=str(record.id),
            payload=payload,
            occurred_at=self.clock(),
        )

    def _record_run(self, db: Session, report: ArchivalRunReport) -> None:
        """Fold the run's counters into the config stats and stamp run times."""
        now = self.clock()
        config = get_or_create_config(db)
        stats = copy.deepcopy(config.stats or {})

        for module, run_stats in report.modules.items():
            entry = dict(DEFAULT_MODULE_STATS)
            entry.update(stats.get(module) or {})
            entry["totalRecordsProcessed"] += run_stats.records_processed
            entry["totalRecordsDeleted"] += run_stats.records_deleted
            entry["totalEmailsSent"] += run_stats.warnings_sent
            entry["totalErrors"] += run_stats.errors
            entry["totalRecordsRescued"] += run_stats.records_rescued
            entry["lastProcessedDate"] = _iso(now)
            stats[module] = entry

        config.stats = stats
        config.last_archival_run = now
        config.next_archival_run = now + timedelta(days=1)
        db.commit()

    # ------------------------------------------------------------------
    # Queries and admin operations
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Config summary plus live per-module record counts.

        ``deleted`` is the historical total from the config stats, since
        deleted rows no longer exist.
        """
        db = self.session_factory()
        try:
            config = get_or_create_config(db)
            config_stats = copy.deepcopy(config.stats or {})
            stats = {}
            for module, model in MODULE_MODELS.items():
                total, marked, warned = db.query(
                    func.count(model.id),
                    func.coalesce(func.sum(case((model.is_marked_for_deletion.is_(True), 1), else_=0)), 0),
                    func.coalesce(func.sum(case((model.deletion_warning_sent.is_(True), 1), else_=0)), 0),
                ).one()
                stats[module] = {
                    "totalRecords": int(total or 0),
                    "markedForDeletion": int(marked or 0),
                    "warningSent": int(warned or 0),
                    "deleted": (config_stats.get(module) or {}).get("totalRecordsDeleted", 0),
                }

            return {
                "config": {
                    "globalSettings": copy.deepcopy(config.global_settings),
                    "moduleSettings": copy.deepcopy(config.module_settings),
                    "lastArchivalRun": _iso(config.last_archival_run),
                    "nextArchivalRun": _iso(config.next_archival_run),
                },
                "stats": stats,
                "configStats": config_stats,
                "isRunning": self.is_running,
            }
        finally:
            db.close()

    def manual_delete_record(
        self,
        record_id: Union[UUID, str],
        module: str,
        admin_user_id: Union[UUID, str],
        reason: str = "manual",
    ) -> Dict[str, Any]:
        """Delete one record immediately on an administrator's request.

        The owner is notified whenever they have an address, regardless of
        their notification preference.

        Raises:
            UnknownModuleError: If the module is not enrolled in archival
            RecordNotFoundError: If no such record exists
        """
        model = get_model_for_module(module)
        db = self.session_factory()
        try:
            record = db.get(model, _as_uuid(record_id))
            if record is None:
                raise RecordNotFoundError(f"{module} record {record_id} not found")

            now = self.clock()
            policy = RetentionPolicy(db, clock=self.clock)
            settings = policy.get_user_module_settings(record.user_id, module)
            event = self._build_event(
                db, policy, RECORD_MANUALLY_DELETED, module, record, settings,
                notify_owner=True,
                deletedAt=_iso(now),
                reason=reason,
                adminUserId=str(admin_user_id),
            )
            self.audit_sink_factory(db).log(
                RECORD_MANUALLY_DELETED,
                module,
                model.__tablename__,
                {
                    "recordId": str(record.id),
                    "userId": str(record.user_id),
                    "module": module,
                    "adminUserId": str(admin_user_id),
                    "deletionReason": reason,
                    "batchId": record.batch_id,
                },
                actor_id=admin_user_id,
                timestamp=now,
            )
            publisher = self._build_publisher(db)
            db.delete(record)
            publisher.publish(event)
            db.commit()
        except Exception:
            db.rollback()
            db.close()
            raise

        try:
            result = publisher.dispatch()
        finally:
            db.close()

        metrics.archival_deletions_total.labels(module=module).inc()
        logger.info(
            f"{module} record manually deleted",
            extra={"module_name": module, "record_id": str(record_id), "user_id": str(admin_user_id)},
        )
        return {
            "success": True,
            "message": f"{module} record deleted successfully",
            "notificationsSent": result.sent,
        }

    def get_user_records_marked_for_deletion(
        self,
        user_id: Union[UUID, str],
        module: str,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """A user's records awaiting deletion, soonest first, decrypted."""
        model = get_model_for_module(module)
        page = max(1, int(page))
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))

        db = self.session_factory()
        try:
            query = db.query(model).filter(
                model.user_id == _as_uuid(user_id),
                model.is_marked_for_deletion.is_(True),
                model.actual_deletion_date.is_(None),
            )
            total = query.count()
            records = (
                query.order_by(model.scheduled_deletion_date.asc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            return {
                "records": decrypt_many(records),
                "pagination": {
                    "page": page,
                    "limit": limit,
                    "total": total,
                    "pages": math.ceil(total / limit) if total else 0,
                },
            }
        finally:
            db.close()

    def drain_outbox(self, limit: int = 100) -> Dict[str, int]:
        """Deliver pending outbox events (outbox notification mode)."""
        db = self.session_factory()
        try:
            return OutboxRelay(db, self.consumer, self.settings.OUTBOX_MAX_ATTEMPTS, self.clock).drain(limit)
        finally:
            db.close()
