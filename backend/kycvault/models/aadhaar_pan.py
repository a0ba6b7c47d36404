"""AadhaarPan SQLAlchemy model

Result of an Aadhaar-PAN linking check. Both identity numbers are stored
encrypted.
"""

from sqlalchemy import Column, Text, Enum as SQLEnum, Index
import enum

from ..infrastructure.encryption.envelope import RecordEnvelope
from .base import Base
from .mixins import ArchivableRecordMixin


class AadhaarPanStatus(str, enum.Enum):
    """Linking outcome for an Aadhaar-PAN record"""
    PENDING = "pending"
    LINKED = "linked"
    NOT_LINKED = "not-linked"
    INVALID = "invalid"
    ERROR = "error"


class AadhaarPan(ArchivableRecordMixin, Base):
    """Aadhaar-PAN linking record (archival module ``aadhaarPan``)."""
    __tablename__ = "aadhaar_pan"
    __table_args__ = (
        Index("ix_aadhaar_pan_user_id_created_at", "user_id", "created_at"),
        Index("ix_aadhaar_pan_batch_id", "batch_id"),
        Index("ix_aadhaar_pan_archival", "is_marked_for_deletion", "deletion_warning_sent"),
    )
    __envelope__ = RecordEnvelope(
        fields=("pan_number", "aadhaar_number", "name", "date_of_birth", "gender"),
        structured_fields=("linking_details",),
    )

    pan_number = Column(Text, nullable=True)
    aadhaar_number = Column(Text, nullable=True)
    name = Column(Text, nullable=True)
    date_of_birth = Column(Text, nullable=True)
    gender = Column(Text, nullable=True)
    linking_details = Column(Text, nullable=True)
    status = Column(
        SQLEnum(
            AadhaarPanStatus,
            name="aadhaarpanstatus",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=AadhaarPanStatus.PENDING,
    )
    error_message = Column(Text, nullable=True)
