"""Archival domain events and their publishers.

The orchestrator never sends notifications itself. Each state transition
produces an ArchivalEvent that is handed to an EventPublisher:

- InlinePublisher delivers to the notification consumer right after the
  transition commits.
- OutboxPublisher writes the event into archival_outbox in the same
  transaction as the transition; OutboxRelay delivers it later with retry
  accounting.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..audit.service import RECORD_DELETED, RECORD_MANUALLY_DELETED, RECORD_MARKED_FOR_DELETION
from ..config import get_settings
from ..models.outbox import OutboxEvent, OutboxStatus
from ..observability.metrics import outbox_events_total

logger = logging.getLogger(__name__)

# Event types share the audit action names where both exist
RECORD_RESCUED = "record_rescued"


@dataclass
class ArchivalEvent:
    """One record lifecycle transition.

    The payload is self-contained (owner address, record summary, admin
    addresses) because the record may no longer exist when it is consumed.
    """

    event_type: str
    module: str
    record_id: str
    payload: Dict[str, Any]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def recipients(self) -> List[str]:
        """Addresses this event notifies, owner first."""
        addresses = []
        owner = self.payload.get("owner") or {}
        if self.payload.get("notifyOwner") and owner.get("email"):
            addresses.append(owner["email"])
        if self.event_type == RECORD_MARKED_FOR_DELETION:
            addresses.extend(self.payload.get("adminEmails") or [])
        return addresses

    @classmethod
    def from_outbox(cls, row: OutboxEvent) -> "ArchivalEvent":
        return cls(
            event_type=row.event_type,
            module=row.module,
            record_id=row.record_id,
            payload=dict(row.payload or {}),
            occurred_at=row.created_at,
        )


@dataclass
class DeliveryResult:
    """Notification outcome for one or more events."""

    attempted: int = 0
    sent: int = 0
    failed: int = 0
    queued: int = 0
    errors: List[str] = field(default_factory=list)

    def merge(self, other: "DeliveryResult") -> "DeliveryResult":
        self.attempted += other.attempted
        self.sent += other.sent
        self.failed += other.failed
        self.queued += other.queued
        self.errors.extend(other.errors)
        return self


class EventConsumer(ABC):
    """Turns an event into notifications."""

    @abstractmethod
    def handle(self, event: ArchivalEvent) -> DeliveryResult:
        ...


class EventPublisher(ABC):
    """Receives events during a transition and delivers them after commit.

    ``publish`` is called before the transition's commit, ``dispatch`` after
    it, ``discard`` if the transition rolled back.
    """

    @abstractmethod
    def publish(self, event: ArchivalEvent) -> None:
        ...

    @abstractmethod
    def dispatch(self) -> DeliveryResult:
        ...

    @abstractmethod
    def discard(self) -> None:
        ...


class InlinePublisher(EventPublisher):
    """Delivers events synchronously to a consumer once committed."""

    def __init__(self, consumer: EventConsumer):
        self.consumer = consumer
        self._pending: List[ArchivalEvent] = []

    def publish(self, event: ArchivalEvent) -> None:
        self._pending.append(event)

    def dispatch(self) -> DeliveryResult:
        result = DeliveryResult()
        pending, self._pending = self._pending, []
        for event in pending:
            result.merge(self.consumer.handle(event))
        return result

    def discard(self) -> None:
        self._pending = []


class OutboxPublisher(EventPublisher):
    """Persists events into archival_outbox within the caller's transaction."""

    def __init__(self, db: Session):
        self.db = db
        self._queued = 0

    def publish(self, event: ArchivalEvent) -> None:
        self.db.add(OutboxEvent(
            event_type=event.event_type,
            module=event.module,
            record_id=event.record_id,
            payload=event.payload,
            status=OutboxStatus.PENDING,
            created_at=event.occurred_at,
        ))
        self._queued += len(event.recipients())

    def dispatch(self) -> DeliveryResult:
        result = DeliveryResult(queued=self._queued)
        self._queued = 0
        return result

    def discard(self) -> None:
        self._queued = 0


class OutboxRelay:
    """Delivers pending outbox events with bounded retries.

    Each event is committed on its own; an event whose delivery fails is
    retried on the next drain until max_attempts, then marked FAILED.
    """

    def __init__(
        self,
        db: Session,
        consumer: EventConsumer,
        max_attempts: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.consumer = consumer
        self.max_attempts = max_attempts or get_settings().OUTBOX_MAX_ATTEMPTS
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def drain(self, limit: int = 100) -> Dict[str, int]:
        """Deliver up to ``limit`` pending events, oldest first.

        Returns:
            Counts of events sent, scheduled for retry and failed for good
        """
        counts = {"sent": 0, "retry": 0, "failed": 0}
        rows = (
            self.db.query(OutboxEvent)
            .filter(OutboxEvent.status == OutboxStatus.PENDING)
            .order_by(OutboxEvent.created_at)
            .limit(limit)
            .all()
        )

        for row in rows:
            result = self.consumer.handle(ArchivalEvent.from_outbox(row))
            row.attempts = (row.attempts or 0) + 1

            if result.failed == 0:
                row.status = OutboxStatus.SENT
                row.processed_at = self.clock()
                row.last_error = None
                outcome = "sent"
            elif row.attempts >= self.max_attempts:
                row.status = OutboxStatus.FAILED
                row.processed_at = self.clock()
                row.last_error = "; ".join(result.errors)[:2000]
                outcome = "failed"
                logger.error(
                    f"Outbox event gave up after {row.attempts} attempts",
                    extra={"event_type": row.event_type, "record_id": row.record_id},
                )
            else:
                row.last_error = "; ".join(result.errors)[:2000]
                outcome = "retry"

            self.db.commit()
            counts[outcome] += 1
            outbox_events_total.labels(status=outcome).inc()

        if rows:
            logger.info(f"Outbox drained: {counts}")
        return counts
