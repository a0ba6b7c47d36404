"""RetentionConfig SQLAlchemy model

Singleton row holding the layered retention policy (global, per-module,
per-user overrides) and the running archival statistics. JSON columns are
only ever replaced wholesale; callers must assign a new dict/list rather
than mutate in place so the change is flushed.
"""

import copy

from sqlalchemy import Column, Integer, Uuid

from .base import Base, PortableJSONB, UTCDateTime, utcnow

SINGLETON_ID = 1

# Modules enrolled in the archival sweep
ARCHIVAL_MODULES = ("panKyc", "aadhaarPan")

DEFAULT_RETENTION_PERIOD_DAYS = 365
DEFAULT_WARNING_PERIOD_DAYS = 7

DEFAULT_GLOBAL_SETTINGS = {
    "isEnabled": True,
    "sendEmailNotifications": True,
    "notificationEmails": [],
}

DEFAULT_MODULE_SETTINGS = {
    "retentionPeriodDays": DEFAULT_RETENTION_PERIOD_DAYS,
    "warningPeriodDays": DEFAULT_WARNING_PERIOD_DAYS,
    "isEnabled": True,
    "sendEmailNotifications": True,
    "notificationEmails": [],
}

DEFAULT_MODULE_STATS = {
    "totalRecordsProcessed": 0,
    "totalRecordsDeleted": 0,
    "totalEmailsSent": 0,
    "totalErrors": 0,
    "totalRecordsRescued": 0,
    "lastProcessedDate": None,
}


def default_module_settings() -> dict:
    return {module: copy.deepcopy(DEFAULT_MODULE_SETTINGS) for module in ARCHIVAL_MODULES}


def default_stats() -> dict:
    return {module: copy.deepcopy(DEFAULT_MODULE_STATS) for module in ARCHIVAL_MODULES}


class RetentionConfig(Base):
    """Retention policy singleton (always ``id == 1``).

    Shapes:
        global_settings: {isEnabled, sendEmailNotifications, notificationEmails}
        module_settings: {<module>: {retentionPeriodDays, warningPeriodDays,
                          isEnabled, sendEmailNotifications, notificationEmails}}
        user_overrides: [{userId, moduleSettings: {<module>: partial},
                          createdBy, createdAt, updatedAt}]
        stats: {<module>: {totalRecordsProcessed, totalRecordsDeleted,
                totalEmailsSent, totalErrors, totalRecordsRescued,
                lastProcessedDate}}
    """
    __tablename__ = "retention_config"

    id = Column(Integer, primary_key=True, default=SINGLETON_ID)
    global_settings = Column(PortableJSONB, nullable=False, default=lambda: copy.deepcopy(DEFAULT_GLOBAL_SETTINGS))
    module_settings = Column(PortableJSONB, nullable=False, default=default_module_settings)
    user_overrides = Column(PortableJSONB, nullable=False, default=list)
    stats = Column(PortableJSONB, nullable=False, default=default_stats)
    last_archival_run = Column(UTCDateTime, nullable=True)
    next_archival_run = Column(UTCDateTime, nullable=True)
    created_by = Column(Uuid, nullable=True)
    updated_by = Column(Uuid, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @classmethod
    def with_defaults(cls) -> "RetentionConfig":
        """Build an unsaved singleton populated with the default policy."""
        return cls(
            id=SINGLETON_ID,
            global_settings=copy.deepcopy(DEFAULT_GLOBAL_SETTINGS),
            module_settings=default_module_settings(),
            user_overrides=[],
            stats=default_stats(),
        )

    def to_dict(self):
        """Convert configuration to dictionary representation"""
        return {
            "global_settings": self.global_settings,
            "module_settings": self.module_settings,
            "user_overrides": self.user_overrides,
            "stats": self.stats,
            "last_archival_run": self.last_archival_run.isoformat() if self.last_archival_run else None,
            "next_archival_run": self.next_archival_run.isoformat() if self.next_archival_run else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
