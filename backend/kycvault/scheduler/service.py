"""In-process scheduler for the archival jobs.

Wraps an APScheduler BackgroundScheduler with two cron jobs:

- ``archival``: daily run of the archival orchestrator (02:00 by default)
- ``healthCheck``: hourly check that the orchestrator's stats are reachable

Both run in SCHEDULER_TIMEZONE. Jobs are registered with max_instances=1 and
manual triggers go through the orchestrator's own run guard, so a manual run
and a scheduled run never overlap.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ..archival.service import ArchivalService
from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

ARCHIVAL_JOB = "archival"
HEALTH_CHECK_JOB = "healthCheck"
JOB_NAMES = (ARCHIVAL_JOB, HEALTH_CHECK_JOB)


class JobNotFoundError(LookupError):
    """Raised when a job name is not registered with the scheduler."""

    def __init__(self, name: str):
        super().__init__(f"Job '{name}' not found")
        self.name = name


@dataclass
class JobState:
    running: bool = False
    last_execution: Optional[datetime] = None


class ArchivalScheduler:
    """Cron scheduling for archival and health checks.

    Args:
        service: Archival orchestrator (default: a new ArchivalService)
        scheduler: APScheduler instance (default: BackgroundScheduler in
            SCHEDULER_TIMEZONE)
        settings: Application settings
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        service: Optional[ArchivalService] = None,
        scheduler: Optional[BackgroundScheduler] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or get_settings()
        self.service = service or ArchivalService(settings=self.settings)
        self.timezone = self.settings.SCHEDULER_TIMEZONE
        self.scheduler = scheduler or BackgroundScheduler(timezone=self.timezone)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.is_initialized = False
        self._states: Dict[str, JobState] = {}
        self._lock = threading.Lock()

    def initialize(self) -> None:
        """Register both jobs and start the scheduler. Idempotent."""
        if self.is_initialized:
            logger.warning("Scheduler service already initialized")
            return

        self.scheduler.add_job(
            self._run_archival,
            trigger=CronTrigger(
                hour=self.settings.ARCHIVAL_CRON_HOUR,
                minute=self.settings.ARCHIVAL_CRON_MINUTE,
                timezone=self.timezone,
            ),
            id=ARCHIVAL_JOB,
            replace_existing=True,
            max_instances=1,
        )
        self._states[ARCHIVAL_JOB] = JobState()
        logger.info(
            f"Archival job scheduled daily at "
            f"{self.settings.ARCHIVAL_CRON_HOUR:02d}:{self.settings.ARCHIVAL_CRON_MINUTE:02d} ({self.timezone})",
            extra={"job_name": ARCHIVAL_JOB},
        )

        self.scheduler.add_job(
            self._run_health_check,
            trigger=CronTrigger(minute=0, timezone=self.timezone),
            id=HEALTH_CHECK_JOB,
            replace_existing=True,
            max_instances=1,
        )
        self._states[HEALTH_CHECK_JOB] = JobState()
        logger.info("Health check scheduled hourly", extra={"job_name": HEALTH_CHECK_JOB})

        if not self.scheduler.running:
            self.scheduler.start()
        self.is_initialized = True
        logger.info("Scheduler service initialized successfully")

    # ------------------------------------------------------------------
    # Job bodies
    # ------------------------------------------------------------------

    def _mark(self, name: str, running: bool) -> None:
        with self._lock:
            state = self._states.setdefault(name, JobState())
            state.running = running
            if not running:
                state.last_execution = self.clock()

    def _run_archival(self) -> None:
        self._mark(ARCHIVAL_JOB, True)
        logger.info("Starting scheduled archival process", extra={"job_name": ARCHIVAL_JOB})
        try:
            self.service.run(trigger="scheduled")
        except Exception:
            # Logged here so the scheduler thread keeps firing future runs
            logger.error("Scheduled archival process failed", exc_info=True, extra={"job_name": ARCHIVAL_JOB})
        finally:
            self._mark(ARCHIVAL_JOB, False)

    def _run_health_check(self) -> None:
        self._mark(HEALTH_CHECK_JOB, True)
        try:
            stats = self.service.get_stats()
            logger.debug(
                "Health check completed",
                extra={
                    "job_name": HEALTH_CHECK_JOB,
                    "stats": {
                        "archivalEnabled": stats["config"]["globalSettings"].get("isEnabled"),
                        "totalRecords": sum(m["totalRecords"] for m in stats["stats"].values()),
                        "lastArchivalRun": stats["config"]["lastArchivalRun"],
                    },
                },
            )
        except Exception:
            logger.error("Health check error", exc_info=True, extra={"job_name": HEALTH_CHECK_JOB})
        finally:
            self._mark(HEALTH_CHECK_JOB, False)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def trigger_archival(self) -> Dict[str, Any]:
        """Run archival now on the calling thread.

        Errors from the run propagate to the caller.

        Returns:
            Dict with success flag, message and the run report (None if
            another run was already in progress)
        """
        logger.info("Manually triggering archival process")
        report = self.service.run(trigger="manual")
        if report is None:
            return {
                "success": False,
                "message": "Archival process is already running",
                "report": None,
            }
        return {
            "success": True,
            "message": "Archival process completed successfully",
            "report": report.model_dump(mode="json"),
        }

    def _get_job(self, name: str):
        job = self.scheduler.get_job(name) if name in self._states else None
        if job is None:
            raise JobNotFoundError(name)
        return job

    def start_job(self, name: str) -> Dict[str, Any]:
        """Resume a paused job.

        Raises:
            JobNotFoundError: If no job with this name is registered
        """
        self._get_job(name).resume()
        logger.info(f"Job '{name}' started", extra={"job_name": name})
        return {"success": True, "message": f"Job '{name}' started successfully"}

    def stop_job(self, name: str) -> Dict[str, Any]:
        """Pause a job; it stays registered and can be started again.

        Raises:
            JobNotFoundError: If no job with this name is registered
        """
        self._get_job(name).pause()
        logger.info(f"Job '{name}' stopped", extra={"job_name": name})
        return {"success": True, "message": f"Job '{name}' stopped successfully"}

    def get_status(self) -> Dict[str, Any]:
        """Per-job running/scheduled flags and execution times."""
        jobs = {}
        for name, state in self._states.items():
            job = self.scheduler.get_job(name)
            next_run = getattr(job, "next_run_time", None) if job is not None else None
            jobs[name] = {
                "running": state.running,
                "scheduled": next_run is not None,
                "lastExecution": state.last_execution.isoformat() if state.last_execution else None,
                "nextExecution": next_run.isoformat() if next_run else None,
            }
        return {
            "isInitialized": self.is_initialized,
            "isArchivalRunning": self.service.is_running,
            "timezone": str(self.timezone),
            "jobs": jobs,
        }

    def shutdown(self, wait: bool = True) -> None:
        """Remove every job and stop the scheduler."""
        logger.info("Shutting down scheduler service")
        for name in list(self._states):
            if self.scheduler.get_job(name) is not None:
                self.scheduler.remove_job(name)
            logger.info(f"Job '{name}' removed", extra={"job_name": name})
        self._states.clear()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
        self.is_initialized = False
        logger.info("Scheduler service shut down")
