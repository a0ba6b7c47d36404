"""SQLAlchemy models for the KYC vault"""

from .base import Base, PortableJSONB, UTCDateTime
from .user import User
from .pan_kyc import PanKyc, PanKycStatus
from .aadhaar_pan import AadhaarPan, AadhaarPanStatus
from .aadhaar_verification import AadhaarVerification, AadhaarVerificationStatus
from .audit_log import AuditLog
from .retention_config import RetentionConfig, ARCHIVAL_MODULES
from .outbox import OutboxEvent, OutboxStatus
from .lease import ArchivalLease

__all__ = [
    "Base",
    "PortableJSONB",
    "UTCDateTime",
    "User",
    "PanKyc",
    "PanKycStatus",
    "AadhaarPan",
    "AadhaarPanStatus",
    "AadhaarVerification",
    "AadhaarVerificationStatus",
    "AuditLog",
    "RetentionConfig",
    "ARCHIVAL_MODULES",
    "OutboxEvent",
    "OutboxStatus",
    "ArchivalLease",
]
