"""Cron scheduling for archival and health-check jobs."""

from .service import (
    ARCHIVAL_JOB,
    HEALTH_CHECK_JOB,
    JOB_NAMES,
    ArchivalScheduler,
    JobNotFoundError,
)

__all__ = [
    "ARCHIVAL_JOB",
    "HEALTH_CHECK_JOB",
    "JOB_NAMES",
    "ArchivalScheduler",
    "JobNotFoundError",
]
