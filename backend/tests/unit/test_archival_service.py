"""Unit tests for the archival orchestrator.

Covers the warn+mark and delete phases, rescue on policy relaxation,
notification handling, run reentrancy, the durable lease, the outbox
notification path, and the admin operations.
"""

import threading
from datetime import timedelta
from uuid import uuid4

import pytest

from kycvault.archival.lease import DatabaseLease
from kycvault.archival.service import ArchivalService, RecordNotFoundError, mask_identifier
from kycvault.audit.service import SqlAuditSink
from kycvault.config import Settings
from kycvault.database import SessionLocal
from kycvault.models import AuditLog, OutboxEvent, OutboxStatus, PanKyc, RetentionConfig, User
from kycvault.notifications import InMemoryNotificationDispatcher
from kycvault.retention import RetentionPolicy, UnknownModuleError


def audit_actions(db_session):
    db_session.expire_all()
    return sorted(row.action for row in db_session.query(AuditLog).all())


def reload(db_session, record):
    db_session.expire_all()
    return db_session.get(PanKyc, record.id)


class TestEndToEnd:
    """Test a full run over a record past its retention period."""

    def test_expired_record_warned_and_deleted_in_one_run(
        self, db_session, archival_service, make_pan_record, dispatcher, clock
    ):
        """Phase 1 marks and warns, phase 2 deletes; exactly two audit events."""
        record = make_pan_record(created_at=clock.now - timedelta(days=366))
        owner_email = db_session.get(User, record.user_id).email
        record_id = record.id

        report = archival_service.run()

        assert report.status == "completed"
        stats = report.modules["panKyc"]
        assert stats.records_processed == 1
        assert stats.records_deleted == 1
        assert stats.errors == 0

        assert audit_actions(db_session) == ["record_deleted", "record_marked_for_deletion"]
        assert db_session.get(PanKyc, record_id) is None

        subjects = [n.subject for n in dispatcher.sent]
        assert len(subjects) == 2
        assert subjects[0].startswith("Data Deletion Warning - PAN KYC")
        assert subjects[1].startswith("Data Deleted - PAN KYC")
        assert all(n.to == owner_email for n in dispatcher.sent)

    def test_audit_details(self, db_session, archival_service, make_pan_record, clock):
        record = make_pan_record(created_at=clock.now - timedelta(days=366))

        archival_service.run()

        db_session.expire_all()
        deleted = db_session.query(AuditLog).filter(AuditLog.action == "record_deleted").one()
        assert deleted.module == "panKyc"
        assert deleted.resource == "pan_kyc"
        assert deleted.resource_id == str(record.id)
        assert deleted.details["deletionReason"] == "retention_policy"
        assert deleted.details["retentionPeriod"] == 365

    def test_second_run_is_noop(self, db_session, archival_service, make_pan_record, dispatcher, clock):
        make_pan_record(created_at=clock.now - timedelta(days=366))
        archival_service.run()
        dispatcher.clear()

        report = archival_service.run()

        assert report.modules["panKyc"].records_processed == 0
        assert report.modules["panKyc"].records_deleted == 0
        assert dispatcher.sent == []
        assert len(audit_actions(db_session)) == 2


class TestWarnPhase:
    """Test marking records inside the warning window."""

    def test_record_outside_window_untouched(self, db_session, archival_service, make_pan_record, clock):
        record = make_pan_record(created_at=clock.now - timedelta(days=300))

        report = archival_service.run()

        assert report.modules["panKyc"].records_processed == 0
        record = reload(db_session, record)
        assert record.is_marked_for_deletion is False
        assert record.scheduled_deletion_date is None
        assert audit_actions(db_session) == []

    def test_record_in_window_marked(self, db_session, archival_service, make_pan_record, dispatcher, clock):
        created = clock.now - timedelta(days=360)
        record = make_pan_record(created_at=created)

        report = archival_service.run()

        record = reload(db_session, record)
        assert record.is_marked_for_deletion is True
        assert record.deletion_warning_sent is True
        assert record.warning_sent_at == clock.now
        assert record.scheduled_deletion_date == created + timedelta(days=365)
        assert record.actual_deletion_date is None
        assert report.modules["panKyc"].warnings_sent == 1
        assert audit_actions(db_session) == ["record_marked_for_deletion"]

        message = dispatcher.sent[0]
        assert "5 days" in message.html_body
        assert "XXXXXX234F" in message.html_body
        assert "ABCDE1234F" not in message.html_body

    def test_admin_emails_notified(self, db_session, archival_service, make_pan_record, dispatcher, clock):
        RetentionPolicy(db_session).update_module_settings(
            "panKyc", {"notificationEmails": ["kyc-admin@example.com", "dpo@example.com"]}
        )
        make_pan_record(created_at=clock.now - timedelta(days=360))

        report = archival_service.run()

        assert report.modules["panKyc"].warnings_sent == 3
        admin = dispatcher.sent_to("kyc-admin@example.com")
        assert len(admin) == 1
        assert admin[0].subject.startswith("Admin Notification - PAN KYC")
        assert len(dispatcher.sent_to("dpo@example.com")) == 1

    def test_notifications_disabled(self, db_session, archival_service, make_pan_record, dispatcher, clock):
        """Marking still happens when e-mail is switched off."""
        RetentionPolicy(db_session).update_global_settings({"sendEmailNotifications": False})
        record = make_pan_record(created_at=clock.now - timedelta(days=360))

        report = archival_service.run()

        assert report.modules["panKyc"].records_processed == 1
        assert report.modules["panKyc"].warnings_sent == 0
        assert dispatcher.sent == []
        assert reload(db_session, record).is_marked_for_deletion is True

    def test_notification_failure_counted(self, db_session, engine, make_user, make_pan_record, clock):
        """A failed send is an error but the transition stands."""
        user = make_user(email="unreachable@example.com")
        record = make_pan_record(user=user, created_at=clock.now - timedelta(days=360))
        failing = InMemoryNotificationDispatcher(fail_for={"unreachable@example.com"})
        service = ArchivalService(dispatcher=failing, clock=clock, sleep=lambda s: None)

        report = service.run()

        assert report.modules["panKyc"].errors == 1
        assert report.modules["panKyc"].warnings_sent == 0
        assert reload(db_session, record).is_marked_for_deletion is True

    def test_transport_exception_does_not_stop_sweep(self, db_session, engine, make_user, make_pan_record, clock):
        """An unexpected transport error counts once; later records and deletions still run."""

        class CrashingDispatcher(InMemoryNotificationDispatcher):
            def send(self, to, subject, html_body, metadata=None):
                if to == "boom@example.com":
                    raise RuntimeError("relay connection reset")
                return super().send(to, subject, html_body, metadata)

        expired = make_pan_record(
            user=make_user(email="boom@example.com"), created_at=clock.now - timedelta(days=366)
        )
        expired_id = expired.id
        pending = make_pan_record(created_at=clock.now - timedelta(days=360))
        dispatcher = CrashingDispatcher()
        service = ArchivalService(dispatcher=dispatcher, clock=clock, sleep=lambda s: None)

        report = service.run()

        stats = report.modules["panKyc"]
        assert stats.records_processed == 2
        assert stats.records_deleted == 1
        assert stats.warnings_sent == 1
        assert stats.errors == 1
        assert db_session.get(PanKyc, expired_id) is None
        assert reload(db_session, pending).is_marked_for_deletion is True

    def test_consumer_crash_contained_per_record(self, db_session, engine, dispatcher, make_pan_record, clock):
        """A delivery step that raises is counted against its record only."""

        class BrokenConsumer:
            def handle(self, event):
                raise RuntimeError("template rendering failed")

        expired = make_pan_record(created_at=clock.now - timedelta(days=366))
        expired_id = expired.id
        pending = make_pan_record(created_at=clock.now - timedelta(days=360))
        service = ArchivalService(dispatcher=dispatcher, clock=clock, sleep=lambda s: None)
        service.consumer = BrokenConsumer()

        report = service.run()

        stats = report.modules["panKyc"]
        assert stats.records_processed == 2
        assert stats.records_deleted == 1
        assert stats.errors == 2
        assert db_session.get(PanKyc, expired_id) is None
        assert reload(db_session, pending).is_marked_for_deletion is True

    def test_owner_also_admin_gets_both_notices(
        self, db_session, archival_service, make_user, make_pan_record, dispatcher, clock
    ):
        """An owner listed as an admin receives the owner warning and the admin copy."""
        RetentionPolicy(db_session).update_module_settings(
            "panKyc", {"notificationEmails": ["admin@example.com"]}
        )
        make_pan_record(user=make_user(email="admin@example.com"), created_at=clock.now - timedelta(days=360))

        report = archival_service.run()

        subjects = sorted(n.subject for n in dispatcher.sent_to("admin@example.com"))
        assert len(subjects) == 2
        assert subjects[0].startswith("Admin Notification - PAN KYC")
        assert subjects[1].startswith("Data Deletion Warning - PAN KYC")
        assert report.modules["panKyc"].warnings_sent == 2

    def test_per_record_failure_isolated(self, db_session, engine, dispatcher, make_user, make_pan_record, clock):
        """One failing record is rolled back and counted; the next proceeds."""
        user = make_user()
        bad = make_pan_record(user=user, created_at=clock.now - timedelta(days=361))
        good = make_pan_record(user=user, created_at=clock.now - timedelta(days=360))
        bad_id = str(bad.id)

        class FlakySink(SqlAuditSink):
            def log(self, action, module, resource, details, actor_id=None, timestamp=None):
                if details.get("recordId") == bad_id:
                    raise RuntimeError("audit store unavailable")
                return super().log(action, module, resource, details, actor_id, timestamp)

        service = ArchivalService(
            dispatcher=dispatcher, audit_sink_factory=FlakySink, clock=clock, sleep=lambda s: None
        )

        report = service.run()

        assert report.modules["panKyc"].errors == 1
        assert report.modules["panKyc"].records_processed == 1
        assert reload(db_session, bad).is_marked_for_deletion is False
        assert reload(db_session, good).is_marked_for_deletion is True

    def test_pacing_after_notifications(self, engine, dispatcher, make_pan_record, clock):
        delays = []
        service = ArchivalService(dispatcher=dispatcher, clock=clock, sleep=delays.append)
        service.notification_delay = 0.1
        make_pan_record(created_at=clock.now - timedelta(days=360))
        make_pan_record(created_at=clock.now - timedelta(days=300))

        service.run()

        assert delays == [0.1]


class TestRescue:
    """Test reverting marked records when the policy is relaxed."""

    def test_relaxed_policy_rescues_record(self, db_session, archival_service, make_user, make_pan_record, dispatcher, clock):
        user = make_user()
        policy = RetentionPolicy(db_session, clock=clock)
        policy.set_user_override(user.id, "panKyc", {"retentionPeriodDays": 30})
        record = make_pan_record(user=user, created_at=clock.now - timedelta(days=25))

        archival_service.run()
        marked = reload(db_session, record)
        assert marked.is_marked_for_deletion is True
        assert marked.scheduled_deletion_date == record.created_at + timedelta(days=30)

        policy.refresh()
        policy.set_user_override(user.id, "panKyc", {"retentionPeriodDays": 365})
        clock.advance(days=6)
        dispatcher.clear()

        report = archival_service.run()

        assert report.modules["panKyc"].records_rescued == 1
        assert report.modules["panKyc"].records_deleted == 0
        rescued = reload(db_session, record)
        assert rescued is not None
        assert rescued.is_marked_for_deletion is False
        assert rescued.scheduled_deletion_date is None
        assert rescued.deletion_warning_sent is False
        assert rescued.warning_sent_at is None
        assert dispatcher.sent[0].subject.startswith("Deletion Cancelled")
        assert audit_actions(db_session) == ["record_marked_for_deletion"]

    def test_rescued_record_warned_again_later(self, db_session, archival_service, make_user, make_pan_record, clock):
        user = make_user()
        policy = RetentionPolicy(db_session, clock=clock)
        policy.set_user_override(user.id, "panKyc", {"retentionPeriodDays": 30})
        record = make_pan_record(user=user, created_at=clock.now - timedelta(days=25))
        archival_service.run()

        policy.refresh()
        policy.set_user_override(user.id, "panKyc", {"retentionPeriodDays": 60})
        clock.advance(days=6)
        archival_service.run()
        assert reload(db_session, record).is_marked_for_deletion is False

        clock.advance(days=25)
        archival_service.run()

        record = reload(db_session, record)
        assert record.is_marked_for_deletion is True
        assert record.scheduled_deletion_date == record.created_at + timedelta(days=60)


class TestRunControl:
    """Test global/module switches and run bookkeeping."""

    def test_globally_disabled_run(self, db_session, archival_service, make_pan_record, clock):
        RetentionPolicy(db_session).update_global_settings({"isEnabled": False})
        record = make_pan_record(created_at=clock.now - timedelta(days=400))

        report = archival_service.run()

        assert report.status == "disabled"
        assert report.modules == {}
        assert reload(db_session, record) is not None
        db_session.expire_all()
        assert db_session.query(RetentionConfig).one().last_archival_run is None

    def test_module_disabled(self, db_session, archival_service, make_pan_record, make_aadhaar_pan_record, clock):
        RetentionPolicy(db_session).update_module_settings("panKyc", {"isEnabled": False})
        pan = make_pan_record(created_at=clock.now - timedelta(days=400))
        make_aadhaar_pan_record(created_at=clock.now - timedelta(days=400))

        report = archival_service.run()

        assert "panKyc" not in report.modules
        assert report.modules["aadhaarPan"].records_deleted == 1
        assert reload(db_session, pan) is not None

    def test_run_stats_recorded(self, db_session, archival_service, make_pan_record, clock):
        make_pan_record(created_at=clock.now - timedelta(days=366))
        make_pan_record(created_at=clock.now - timedelta(days=360))

        archival_service.run()

        db_session.expire_all()
        config = db_session.query(RetentionConfig).one()
        assert config.stats["panKyc"]["totalRecordsProcessed"] == 2
        assert config.stats["panKyc"]["totalRecordsDeleted"] == 1
        assert config.stats["panKyc"]["totalEmailsSent"] == 2
        assert config.stats["panKyc"]["lastProcessedDate"] == clock.now.isoformat()
        assert config.last_archival_run == clock.now
        assert config.next_archival_run == clock.now + timedelta(days=1)

    def test_stats_accumulate(self, db_session, archival_service, make_pan_record, clock):
        make_pan_record(created_at=clock.now - timedelta(days=366))
        archival_service.run()
        make_pan_record(created_at=clock.now - timedelta(days=366))
        archival_service.run()

        db_session.expire_all()
        config = db_session.query(RetentionConfig).one()
        assert config.stats["panKyc"]["totalRecordsDeleted"] == 2

    def test_last_report_kept(self, archival_service):
        report = archival_service.run(trigger="scheduled")

        assert archival_service.last_report is report
        assert report.trigger == "scheduled"
        assert archival_service.is_running is False


class TestReentrancy:
    """Test that only one run is active at a time."""

    def test_nested_run_skipped(self, engine, dispatcher, make_pan_record, clock):
        """A run started while another is active returns None immediately."""
        nested = []
        service = ArchivalService(dispatcher=dispatcher, clock=clock)
        service.sleep = lambda seconds: nested.append((service.is_running, service.run()))
        service.notification_delay = 0.01
        make_pan_record(created_at=clock.now - timedelta(days=360))

        report = service.run()

        assert nested == [(True, None)]
        assert report.modules["panKyc"].records_processed == 1

    def test_concurrent_run_skipped(self, db_session, engine, dispatcher, make_pan_record, clock):
        entered = threading.Event()
        release = threading.Event()
        results = {}

        def block(seconds):
            entered.set()
            release.wait(timeout=10)

        service = ArchivalService(dispatcher=dispatcher, clock=clock, sleep=block)
        service.notification_delay = 0.01
        make_pan_record(created_at=clock.now - timedelta(days=360))

        worker = threading.Thread(target=lambda: results.setdefault("first", service.run()))
        worker.start()
        try:
            assert entered.wait(timeout=10)
            sent_before = len(dispatcher.sent)

            assert service.run() is None
            assert len(dispatcher.sent) == sent_before
        finally:
            release.set()
            worker.join(timeout=10)

        assert results["first"].modules["panKyc"].records_processed == 1
        assert audit_actions(db_session) == ["record_marked_for_deletion"]

    def test_run_state_reset_after_failure(self, engine, dispatcher, clock):
        def broken_sink(db):
            raise RuntimeError("cannot open audit sink")

        service = ArchivalService(dispatcher=dispatcher, audit_sink_factory=broken_sink, clock=clock)

        with pytest.raises(RuntimeError):
            service.run()
        assert service.is_running is False


class TestLease:
    """Test the durable cross-process run lease."""

    def test_run_skipped_while_lease_held(self, engine, dispatcher, make_pan_record, clock):
        other = DatabaseLease(SessionLocal, ttl_seconds=3600, holder="other-host", clock=clock)
        assert other.acquire() is True
        make_pan_record(created_at=clock.now - timedelta(days=366))

        service = ArchivalService(
            dispatcher=dispatcher,
            clock=clock,
            sleep=lambda s: None,
            lease=DatabaseLease(SessionLocal, ttl_seconds=3600, holder="this-host", clock=clock),
        )
        assert service.run() is None

        other.release()
        report = service.run()
        assert report.modules["panKyc"].records_deleted == 1

    def test_expired_lease_taken_over(self, engine, clock):
        stale = DatabaseLease(SessionLocal, ttl_seconds=60, holder="crashed-host", clock=clock)
        fresh = DatabaseLease(SessionLocal, ttl_seconds=60, holder="this-host", clock=clock)
        assert stale.acquire() is True
        assert fresh.acquire() is False

        clock.advance(seconds=61)

        assert fresh.acquire() is True
        assert stale.acquire() is False

    def test_lease_reacquired_by_holder(self, engine, clock):
        lease = DatabaseLease(SessionLocal, ttl_seconds=60, holder="this-host", clock=clock)
        assert lease.acquire() is True
        assert lease.acquire() is True

    def test_lease_released_after_run(self, engine, dispatcher, clock):
        lease = DatabaseLease(SessionLocal, ttl_seconds=3600, holder="this-host", clock=clock)
        service = ArchivalService(dispatcher=dispatcher, clock=clock, lease=lease)

        service.run()

        other = DatabaseLease(SessionLocal, ttl_seconds=3600, holder="other-host", clock=clock)
        assert other.acquire() is True


class TestOutbox:
    """Test notification delivery through the outbox."""

    @pytest.fixture
    def outbox_settings(self):
        return Settings(ARCHIVAL_NOTIFICATION_MODE="outbox", OUTBOX_MAX_ATTEMPTS=2)

    def test_events_queued_not_sent(self, db_session, engine, dispatcher, outbox_settings, make_pan_record, clock):
        make_pan_record(created_at=clock.now - timedelta(days=366))
        service = ArchivalService(dispatcher=dispatcher, clock=clock, settings=outbox_settings)

        report = service.run()

        assert dispatcher.sent == []
        assert report.modules["panKyc"].warnings_sent == 1
        db_session.expire_all()
        events = db_session.query(OutboxEvent).order_by(OutboxEvent.event_type).all()
        assert [e.event_type for e in events] == ["record_deleted", "record_marked_for_deletion"]
        assert all(e.status == OutboxStatus.PENDING for e in events)

    def test_drain_delivers(self, db_session, engine, dispatcher, outbox_settings, make_pan_record, clock):
        make_pan_record(created_at=clock.now - timedelta(days=360))
        service = ArchivalService(dispatcher=dispatcher, clock=clock, settings=outbox_settings)
        service.run()

        counts = service.drain_outbox()

        assert counts == {"sent": 1, "retry": 0, "failed": 0}
        assert len(dispatcher.sent) == 1
        db_session.expire_all()
        event = db_session.query(OutboxEvent).one()
        assert event.status == OutboxStatus.SENT
        assert event.attempts == 1
        assert service.drain_outbox() == {"sent": 0, "retry": 0, "failed": 0}

    def test_drain_retries_then_fails(self, db_session, engine, outbox_settings, make_user, make_pan_record, clock):
        user = make_user(email="unreachable@example.com")
        make_pan_record(user=user, created_at=clock.now - timedelta(days=360))
        failing = InMemoryNotificationDispatcher(fail_for={"unreachable@example.com"})
        service = ArchivalService(dispatcher=failing, clock=clock, settings=outbox_settings)
        service.run()

        assert service.drain_outbox() == {"sent": 0, "retry": 1, "failed": 0}
        assert service.drain_outbox() == {"sent": 0, "retry": 0, "failed": 1}

        db_session.expire_all()
        event = db_session.query(OutboxEvent).one()
        assert event.status == OutboxStatus.FAILED
        assert event.attempts == 2
        assert "unreachable@example.com" in event.last_error


class TestAdminOperations:
    """Test stats, manual deletion and the marked-records listing."""

    def test_get_stats(self, archival_service, make_pan_record, make_aadhaar_pan_record, clock):
        make_pan_record(created_at=clock.now - timedelta(days=366))
        make_pan_record(created_at=clock.now - timedelta(days=360))
        make_pan_record(created_at=clock.now - timedelta(days=10))
        make_aadhaar_pan_record(created_at=clock.now - timedelta(days=10))
        archival_service.run()

        stats = archival_service.get_stats()

        assert stats["stats"]["panKyc"] == {
            "totalRecords": 2,
            "markedForDeletion": 1,
            "warningSent": 1,
            "deleted": 1,
        }
        assert stats["stats"]["aadhaarPan"]["totalRecords"] == 1
        assert stats["config"]["lastArchivalRun"] == clock.now.isoformat()
        assert stats["isRunning"] is False

    def test_manual_delete(self, db_session, archival_service, make_user, make_pan_record, dispatcher):
        admin = make_user(email="admin@example.com")
        owner = make_user(email="owner@example.com")
        record = make_pan_record(user=owner)
        RetentionPolicy(db_session).update_global_settings({"sendEmailNotifications": False})

        result = archival_service.manual_delete_record(record.id, "panKyc", admin.id, reason="user request")

        assert result["success"] is True
        assert result["notificationsSent"] == 1
        db_session.expire_all()
        assert db_session.get(PanKyc, record.id) is None
        entry = db_session.query(AuditLog).one()
        assert entry.action == "record_manually_deleted"
        assert entry.user_id == admin.id
        assert entry.details["deletionReason"] == "user request"
        notice = dispatcher.sent_to("owner@example.com")[0]
        assert "deleted by an administrator" in notice.html_body

    def test_manual_delete_missing(self, archival_service):
        with pytest.raises(RecordNotFoundError):
            archival_service.manual_delete_record(uuid4(), "panKyc", uuid4())

    def test_manual_delete_unknown_module(self, archival_service):
        with pytest.raises(UnknownModuleError):
            archival_service.manual_delete_record(uuid4(), "aadhaarVerification", uuid4())

    def test_marked_records_paginated(self, archival_service, make_user, make_pan_record, clock):
        user = make_user()
        for offset in range(5):
            make_pan_record(
                user=user,
                pan_number=f"ABCDE{offset:04d}F",
                created_at=clock.now - timedelta(days=364 - offset),
            )
        make_pan_record(created_at=clock.now - timedelta(days=360))
        archival_service.run()

        page = archival_service.get_user_records_marked_for_deletion(user.id, "panKyc", page=2, limit=2)

        assert page["pagination"] == {"page": 2, "limit": 2, "total": 5, "pages": 3}
        # Soonest deletion first; the oldest record is scheduled earliest
        assert [r["pan_number"] for r in page["records"]] == ["ABCDE0002F", "ABCDE0003F"]
        assert all(r["is_marked_for_deletion"] for r in page["records"])

    def test_marked_records_limit_capped(self, archival_service, make_user):
        page = archival_service.get_user_records_marked_for_deletion(make_user().id, "panKyc", limit=1000)
        assert page["pagination"]["limit"] == 100
        assert page["records"] == []


class TestMasking:
    def test_mask_identifier(self):
        assert mask_identifier("ABCDE1234F") == "XXXXXX234F"
        assert mask_identifier("123412341234") == "XXXXXXXX1234"
        assert mask_identifier("[ENCRYPTED]") is None
        assert mask_identifier(None) is None
