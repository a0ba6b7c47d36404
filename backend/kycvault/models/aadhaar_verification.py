"""AadhaarVerification SQLAlchemy model

Full Aadhaar verification result including address and photo. Not enrolled
in the archival sweep; rows are kept until removed explicitly.
"""

from sqlalchemy import Column, Text, Enum as SQLEnum, Index
import enum

from ..infrastructure.encryption.envelope import RecordEnvelope
from .base import Base
from .mixins import ArchivableRecordMixin


class AadhaarVerificationStatus(str, enum.Enum):
    """Verification outcome for an Aadhaar record"""
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    INVALID = "invalid"
    ERROR = "error"


class AadhaarVerification(ArchivableRecordMixin, Base):
    """Aadhaar verification record (module ``aadhaarVerification``)."""
    __tablename__ = "aadhaar_verification"
    __table_args__ = (
        Index("ix_aadhaar_verification_user_id_created_at", "user_id", "created_at"),
        Index("ix_aadhaar_verification_batch_id", "batch_id"),
    )
    __envelope__ = RecordEnvelope(
        fields=(
            "aadhaar_number",
            "name",
            "date_of_birth",
            "gender",
            "address",
            "pin_code",
            "state",
            "district",
            "care_of",
            "photo",
        ),
        structured_fields=("dynamic_fields", "verification_details"),
    )

    aadhaar_number = Column(Text, nullable=True)
    name = Column(Text, nullable=True)
    date_of_birth = Column(Text, nullable=True)
    gender = Column(Text, nullable=True)
    address = Column(Text, nullable=True)
    pin_code = Column(Text, nullable=True)
    state = Column(Text, nullable=True)
    district = Column(Text, nullable=True)
    care_of = Column(Text, nullable=True)
    photo = Column(Text, nullable=True)  # base64 image
    dynamic_fields = Column(Text, nullable=True)
    verification_details = Column(Text, nullable=True)
    status = Column(
        SQLEnum(
            AadhaarVerificationStatus,
            name="aadhaarverificationstatus",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=AadhaarVerificationStatus.PENDING,
    )
    error_message = Column(Text, nullable=True)
