"""Celery tasks for record archival.

Tasks:
- archival.run: one archival run (warn+mark, then delete) over all modules
- archival.drain_outbox: deliver queued notifications (outbox mode)
- archival.health_check: database and archival health snapshot
- records.reseal_legacy: upgrade legacy ciphertext to versioned envelopes

Example Celery Beat schedule configuration:
    from celery.schedules import crontab

    celery_app.conf.beat_schedule = {
        'archival-daily': {
            'task': 'archival.run',
            'schedule': crontab(hour=2, minute=0),
            'options': {'expires': 3600},
        },
        'archival-outbox': {
            'task': 'archival.drain_outbox',
            'schedule': 60.0,
        },
    }
"""

import logging
from typing import Any, Dict

from celery import shared_task

from ..database import SessionLocal
from ..maintenance import reseal_legacy_records
from ..observability.health import (
    check_archival_health,
    check_database_health,
    get_overall_health,
)
from .service import ArchivalService

logger = logging.getLogger(__name__)


@shared_task(name="archival.run", bind=True)
def archival_run_task(self) -> Dict[str, Any]:
    """Execute one archival run.

    Safe to run repeatedly: a second run right after the first finds no new
    records to warn or delete. Returns status "skipped" when another run
    holds the orchestrator or the durable lease.

    Returns:
        Dict with the run report (per-module counters, duration, run_id)
    """
    logger.info("Archival task started", extra={"job_name": "archival"})

    try:
        report = ArchivalService().run(trigger="task")
        if report is None:
            return {'status': 'skipped'}

        result = report.model_dump(mode="json")
        logger.info(
            "Archival task completed",
            extra={"job_name": "archival", "stats": result["modules"]},
        )
        return result

    except Exception as e:
        logger.error(
            f"Archival task failed: {str(e)}",
            exc_info=True,
            extra={"job_name": "archival", "error_type": type(e).__name__},
        )
        return {
            'status': 'failed',
            'error': str(e),
        }


@shared_task(name="archival.drain_outbox", bind=True)
def drain_outbox_task(self, limit: int = 100) -> Dict[str, Any]:
    """Deliver up to ``limit`` pending outbox notifications."""
    try:
        counts = ArchivalService().drain_outbox(limit=limit)
        return {'status': 'completed', **counts}
    except Exception as e:
        logger.error(
            f"Outbox drain failed: {str(e)}",
            exc_info=True,
            extra={"job_name": "outbox", "error_type": type(e).__name__},
        )
        return {
            'status': 'failed',
            'error': str(e),
        }


@shared_task(name="archival.health_check", bind=True)
def archival_health_check_task(self) -> Dict[str, Any]:
    """Report database and archival health."""
    db = SessionLocal()
    try:
        components = {
            "database": check_database_health(db),
            "archival": check_archival_health(ArchivalService()),
        }
        overall = get_overall_health(components)
        log = logger.info if overall == "healthy" else logger.warning
        log(f"Health check: {overall.value}", extra={"job_name": "healthCheck"})
        return {
            'status': overall.value,
            'components': {
                name: {'status': c.status.value, 'message': c.message, 'latency_ms': c.latency_ms}
                for name, c in components.items()
            },
        }
    finally:
        db.close()


@shared_task(name="records.reseal_legacy", bind=True)
def reseal_legacy_task(self, batch_size: int = 500, dry_run: bool = False) -> Dict[str, Any]:
    """Rewrite legacy-format sensitive fields as versioned envelopes."""
    logger.info("Legacy reseal task started", extra={"job_name": "reseal"})

    db = SessionLocal()
    try:
        stats = reseal_legacy_records(db, batch_size=batch_size, dry_run=dry_run)
        return {
            'status': 'completed',
            'dry_run': dry_run,
            'records_scanned': stats.records_scanned,
            'records_updated': stats.records_updated,
            'fields_updated': stats.fields_updated,
            'per_table': stats.per_table,
        }
    except Exception as e:
        db.rollback()
        logger.error(
            f"Legacy reseal task failed: {str(e)}",
            exc_info=True,
            extra={"job_name": "reseal", "error_type": type(e).__name__},
        )
        return {
            'status': 'failed',
            'error': str(e),
        }
    finally:
        db.close()
