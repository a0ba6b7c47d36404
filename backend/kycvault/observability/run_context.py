"""Run ID management for archival run correlation.

Every archival run (scheduled, manual or Celery-driven) gets a run ID that is
attached to each log line emitted while the run is in progress.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

# Context variable for run_id (thread- and async-safe)
run_id_var: ContextVar[Optional[str]] = ContextVar("run_id", default=None)


def generate_run_id() -> str:
    """Generate a new unique run ID.

    Returns:
        str: UUID v4 run ID
    """
    return str(uuid.uuid4())


def get_run_id() -> str:
    """Get current run ID from context.

    Returns:
        str: Current run ID or "no-run-id" if not set
    """
    return run_id_var.get() or "no-run-id"


def set_run_id(run_id: Optional[str]) -> None:
    """Set run ID in current context.

    Args:
        run_id: Run ID to set
    """
    run_id_var.set(run_id)


@contextmanager
def run_scope(run_id: Optional[str] = None) -> Iterator[str]:
    """Bind a run ID for the duration of a block and restore the previous one."""
    token = run_id_var.set(run_id or generate_run_id())
    try:
        yield run_id_var.get()
    finally:
        run_id_var.reset(token)
