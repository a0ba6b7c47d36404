"""OutboxEvent SQLAlchemy model

Durable queue of archival domain events awaiting delivery to the
notification consumer.
"""

import enum
import uuid

from sqlalchemy import Column, Text, Integer, Enum as SQLEnum, Index, Uuid

from .base import Base, PortableJSONB, UTCDateTime, utcnow


class OutboxStatus(str, enum.Enum):
    """Delivery state of an outbox event

    State flow: PENDING -> SENT, or PENDING -> FAILED after max attempts
    """
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class OutboxEvent(Base):
    """One archival domain event (record marked, deleted or rescued)."""
    __tablename__ = "archival_outbox"
    __table_args__ = (
        Index("ix_archival_outbox_status_created_at", "status", "created_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type = Column(Text, nullable=False)
    module = Column(Text, nullable=False)
    record_id = Column(Text, nullable=False)
    payload = Column(PortableJSONB, nullable=False)
    status = Column(
        SQLEnum(
            OutboxStatus,
            name="outboxstatus",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=OutboxStatus.PENDING,
    )
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    processed_at = Column(UTCDateTime, nullable=True)
