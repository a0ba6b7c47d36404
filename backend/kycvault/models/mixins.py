"""Columns shared by every PII record kind."""

import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text, Uuid, false
from sqlalchemy.orm import declared_attr

from .base import UTCDateTime, utcnow


class ArchivableRecordMixin:
    """Ownership, timestamps and the archival sub-state of a PII record.

    Archival state flow: ACTIVE -> MARKED_FOR_DELETION -> DELETED (row removed).
    ``scheduled_deletion_date`` is set iff ``is_marked_for_deletion``.

    Subclasses declare ``__envelope__`` (a RecordEnvelope) naming their
    sensitive columns.
    """

    __envelope__ = None

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    batch_id = Column(Text, nullable=False)

    @declared_attr
    def user_id(cls):
        return Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Archival sub-state
    is_marked_for_deletion = Column(Boolean, nullable=False, default=False, server_default=false())
    scheduled_deletion_date = Column(UTCDateTime, nullable=True)
    deletion_warning_sent = Column(Boolean, nullable=False, default=False, server_default=false())
    warning_sent_at = Column(UTCDateTime, nullable=True)
    actual_deletion_date = Column(UTCDateTime, nullable=True)

    def decrypt_data(self) -> dict:
        """Plaintext projection of this record (the instance is not modified)."""
        return self.__envelope__.decrypt_data(self)

    def archival_state(self) -> dict:
        return {
            "is_marked_for_deletion": self.is_marked_for_deletion,
            "scheduled_deletion_date": self.scheduled_deletion_date,
            "deletion_warning_sent": self.deletion_warning_sent,
            "warning_sent_at": self.warning_sent_at,
            "actual_deletion_date": self.actual_deletion_date,
        }
