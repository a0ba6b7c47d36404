"""ArchivalLease SQLAlchemy model"""

from sqlalchemy import Column, Text

from .base import Base, UTCDateTime


class ArchivalLease(Base):
    """Named, TTL-bounded lock row shared by every service instance.

    A holder owns the lease while ``expires_at`` is in the future; an
    expired lease may be taken over by anyone.
    """
    __tablename__ = "archival_lease"

    name = Column(Text, primary_key=True)
    holder = Column(Text, nullable=False)
    acquired_at = Column(UTCDateTime, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)
