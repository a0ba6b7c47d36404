"""User SQLAlchemy model"""

import uuid

from sqlalchemy import Column, Text, Boolean, Index, Uuid, true

from .base import Base, UTCDateTime, utcnow


class User(Base):
    """Owner of PII records and recipient of retention notices.

    Authentication data lives with the external auth service; only what is
    needed to address a notification is kept here.
    """
    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_email", "email", unique=True),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(Text, nullable=False)
    first_name = Column(Text, nullable=True)
    last_name = Column(Text, nullable=True)
    role = Column(Text, nullable=False, default="user")
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    @property
    def display_name(self) -> str:
        full = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full or self.email

    def to_dict(self):
        """Convert user to dictionary representation"""
        return {
            "id": str(self.id),
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
