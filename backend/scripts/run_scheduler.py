#!/usr/bin/env python
"""Run the archival scheduler as a standalone process.

Registers the daily archival job and the hourly health check, then blocks
until interrupted.

Usage:
    python backend/scripts/run_scheduler.py
    python backend/scripts/run_scheduler.py --run-now

Environment Variables:
    DATABASE_URL: Database connection string
    ENCRYPTION_KEY: Passphrase for the PII field codec (required)
    SMTP_HOST / SMTP_PORT / SMTP_USER / SMTP_PASSWORD: Outbound mail relay
    SCHEDULER_TIMEZONE: Timezone for the cron jobs (default: Asia/Kolkata)
"""

import argparse
import sys
import threading
from pathlib import Path

# Add backend to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from kycvault.config import get_settings
from kycvault.observability import configure_logging, get_logger
from kycvault.scheduler import ArchivalScheduler


def main():
    """Start the scheduler and wait."""
    parser = argparse.ArgumentParser(description="KYC vault archival scheduler")
    parser.add_argument("--run-now", action="store_true", help="Run archival once before scheduling")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    logger = get_logger("kycvault.scheduler")

    scheduler = ArchivalScheduler(settings=settings)
    scheduler.initialize()

    if args.run_now:
        result = scheduler.trigger_archival()
        logger.info(result["message"])

    stop = threading.Event()
    try:
        stop.wait()
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.shutdown()


if __name__ == "__main__":
    main()
