"""Database session factory and configuration.

Provides database connectivity and session management for the PII vault.
Every Session is covered by the record-envelope flush hook (registered in
kycvault.infrastructure.encryption.envelope), so sensitive fields are
encrypted on INSERT/UPDATE regardless of how the session was created.
"""

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from .config import get_settings
from .models.base import Base

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def build_engine(database_url: str) -> Engine:
    """Create an engine with pool settings appropriate for the backend."""
    engine_kwargs = {
        "pool_pre_ping": True,  # Verify connections before using
        "echo": False,
    }

    # Pool settings only apply to PostgreSQL (not SQLite)
    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    else:
        engine_kwargs["pool_size"] = 5
        engine_kwargs["max_overflow"] = 10

    return create_engine(database_url, **engine_kwargs)


def get_engine() -> Engine:
    """Get or create the process-wide engine from settings."""
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings().DATABASE_URL)
    return _engine


def SessionLocal() -> Session:
    """Open a new session bound to the process-wide engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=get_engine(),
        )
    return _session_factory()


def configure_database(database_url: str) -> Engine:
    """Rebind the process-wide engine and session factory.

    Used by scripts and tests that point at a database other than
    DATABASE_URL.
    """
    global _engine, _session_factory
    _engine = build_engine(database_url)
    _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _engine


def create_all(engine: Optional[Engine] = None) -> None:
    """Create every table known to the model metadata."""
    # Importing models registers them on Base.metadata
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=engine or get_engine())


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.query(PanKyc).all()

    Automatically commits on success, rolls back on exception.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

