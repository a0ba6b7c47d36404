"""PanKyc SQLAlchemy model

A PAN KYC verification row. Identity fields are stored encrypted.
"""

from sqlalchemy import Column, Text, Enum as SQLEnum, Index
import enum

from ..infrastructure.encryption.envelope import RecordEnvelope
from .base import Base
from .mixins import ArchivableRecordMixin


class PanKycStatus(str, enum.Enum):
    """Verification outcome for a PAN KYC record"""
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    ERROR = "error"


class PanKyc(ArchivableRecordMixin, Base):
    """PAN KYC record (archival module ``panKyc``)."""
    __tablename__ = "pan_kyc"
    __table_args__ = (
        Index("ix_pan_kyc_user_id_created_at", "user_id", "created_at"),
        Index("ix_pan_kyc_batch_id", "batch_id"),
        Index("ix_pan_kyc_archival", "is_marked_for_deletion", "deletion_warning_sent"),
    )
    __envelope__ = RecordEnvelope(
        fields=("pan_number", "name", "date_of_birth", "father_name"),
        structured_fields=("verification_details",),
    )

    pan_number = Column(Text, nullable=True)
    name = Column(Text, nullable=True)
    date_of_birth = Column(Text, nullable=True)
    father_name = Column(Text, nullable=True)
    verification_details = Column(Text, nullable=True)
    status = Column(
        SQLEnum(
            PanKycStatus,
            name="pankycstatus",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=PanKycStatus.PENDING,
    )
    error_message = Column(Text, nullable=True)
