"""Pytest fixtures for the KYC vault.

Provides reusable test fixtures for:
- A fresh SQLite database per test (file-backed, so worker threads share it)
- Database session
- A controllable clock
- An in-memory notification dispatcher
- Factories for users and PII records
- An ArchivalService wired to all of the above

Usage:
    def test_run(archival_service, make_pan_record, clock):
        make_pan_record(created_at=clock.now - timedelta(days=366))
        report = archival_service.run()
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator
from uuid import uuid4

# Set environment variables BEFORE any imports to ensure they take effect
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-passphrase-for-kyc-vault")
os.environ.setdefault("DATABASE_URL", "sqlite:///./kycvault-test.db")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("ARCHIVAL_NOTIFICATION_DELAY_SECONDS", "0")

# Add backend to path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from sqlalchemy.orm import Session

from kycvault.archival.service import ArchivalService
from kycvault.config import get_settings
from kycvault.database import SessionLocal, configure_database, create_all
from kycvault.infrastructure.encryption import reset_codec
from kycvault.models import AadhaarPan, PanKyc, User
from kycvault.notifications import InMemoryNotificationDispatcher


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def fresh_settings():
    """Re-read settings and the codec key for every test."""
    get_settings.cache_clear()
    reset_codec()
    yield
    get_settings.cache_clear()
    reset_codec()


@pytest.fixture(scope="function")
def engine(tmp_path):
    """Point the process-wide engine at a new SQLite file with all tables."""
    db_engine = configure_database(f"sqlite:///{tmp_path / 'kycvault.db'}")
    create_all(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Session, None, None]:
    """Database session bound to the per-test engine."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def dispatcher() -> InMemoryNotificationDispatcher:
    return InMemoryNotificationDispatcher()


@pytest.fixture
def make_user(db_session):
    """Factory creating committed users."""
    def _make(email=None, first_name="Asha", last_name="Verma"):
        user = User(
            email=email or f"user-{uuid4().hex[:8]}@example.com",
            first_name=first_name,
            last_name=last_name,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture
def make_pan_record(db_session, make_user):
    """Factory creating committed PanKyc records (sensitive fields encrypted on flush)."""
    def _make(user=None, created_at=None, pan_number="ABCDE1234F", **fields):
        user = user or make_user()
        record = PanKyc(
            batch_id=fields.pop("batch_id", "batch-001"),
            user_id=user.id,
            pan_number=pan_number,
            name=fields.pop("name", "Asha Verma"),
            date_of_birth=fields.pop("date_of_birth", "1990-01-15"),
            created_at=created_at or datetime.now(timezone.utc),
            **fields,
        )
        db_session.add(record)
        db_session.commit()
        return record
    return _make


@pytest.fixture
def make_aadhaar_pan_record(db_session, make_user):
    """Factory creating committed AadhaarPan records."""
    def _make(user=None, created_at=None, **fields):
        user = user or make_user()
        record = AadhaarPan(
            batch_id=fields.pop("batch_id", "batch-002"),
            user_id=user.id,
            pan_number=fields.pop("pan_number", "ABCDE1234F"),
            aadhaar_number=fields.pop("aadhaar_number", "123412341234"),
            name=fields.pop("name", "Asha Verma"),
            created_at=created_at or datetime.now(timezone.utc),
            **fields,
        )
        db_session.add(record)
        db_session.commit()
        return record
    return _make


@pytest.fixture
def archival_service(engine, dispatcher, clock) -> ArchivalService:
    """Orchestrator with in-memory notifications, frozen clock and no pacing."""
    return ArchivalService(
        session_factory=SessionLocal,
        dispatcher=dispatcher,
        clock=clock,
        sleep=lambda seconds: None,
    )
