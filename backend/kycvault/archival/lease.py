"""Durable run lease for multi-instance deployments.

The in-process run flag only protects one process. With
ARCHIVAL_USE_LEASE enabled, a run must also hold the named row in
archival_lease, taken with a compare-and-swap UPDATE (or the first INSERT)
and bounded by a TTL so a crashed holder cannot block runs forever.
"""

import logging
import os
import socket
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.lease import ArchivalLease

logger = logging.getLogger(__name__)

ARCHIVAL_LEASE_NAME = "archival"


def default_holder_id() -> str:
    """hostname:pid:random, unique per orchestrator instance."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class DatabaseLease:
    """TTL'd named lock stored in archival_lease.

    Args:
        session_factory: Callable returning a new Session
        ttl_seconds: Lease lifetime; must exceed the longest expected run
        name: Lease row name
        holder: Identity written into the row
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        ttl_seconds: int,
        name: str = ARCHIVAL_LEASE_NAME,
        holder: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.ttl = timedelta(seconds=ttl_seconds)
        self.name = name
        self.holder = holder or default_holder_id()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def acquire(self) -> bool:
        """Take the lease if it is free, expired, or already ours."""
        now = self.clock()
        db = self.session_factory()
        try:
            updated = (
                db.query(ArchivalLease)
                .filter(
                    ArchivalLease.name == self.name,
                    or_(ArchivalLease.expires_at <= now, ArchivalLease.holder == self.holder),
                )
                .update(
                    {
                        ArchivalLease.holder: self.holder,
                        ArchivalLease.acquired_at: now,
                        ArchivalLease.expires_at: now + self.ttl,
                    },
                    synchronize_session=False,
                )
            )
            if updated:
                db.commit()
                return True

            db.add(ArchivalLease(
                name=self.name,
                holder=self.holder,
                acquired_at=now,
                expires_at=now + self.ttl,
            ))
            try:
                db.commit()
                return True
            except IntegrityError:
                # Row exists and is held by someone else
                db.rollback()
                logger.info(f"Lease {self.name!r} is held by another instance")
                return False
        finally:
            db.close()

    def release(self) -> None:
        """Drop the lease if we still hold it."""
        db = self.session_factory()
        try:
            (
                db.query(ArchivalLease)
                .filter(ArchivalLease.name == self.name, ArchivalLease.holder == self.holder)
                .delete(synchronize_session=False)
            )
            db.commit()
        finally:
            db.close()
