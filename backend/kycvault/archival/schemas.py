"""Pydantic schemas for archival run statistics.

- ModuleRunStats: counters for one module within one run
- ArchivalRunReport: summary of a complete run across all modules
"""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field


class ModuleRunStats(BaseModel):
    """Counters collected while sweeping one module."""

    records_processed: int = Field(default=0, ge=0, description="Records warned and marked")
    warnings_sent: int = Field(default=0, ge=0, description="Warning notifications sent or queued")
    records_deleted: int = Field(default=0, ge=0, description="Records hard-deleted")
    records_rescued: int = Field(default=0, ge=0, description="Marked records reverted to active")
    errors: int = Field(default=0, ge=0, description="Per-record failures")


class ArchivalRunReport(BaseModel):
    """Outcome of one archival run.

    status is "completed", "disabled" (global switch off, nothing touched)
    or "failed" (run aborted before stats were recorded).
    """

    run_id: str
    trigger: str = Field(description="scheduled, manual or task")
    status: str = "completed"
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: float = Field(default=0.0, ge=0.0)
    modules: Dict[str, ModuleRunStats] = Field(default_factory=dict)

    @property
    def total_errors(self) -> int:
        return sum(stats.errors for stats in self.modules.values())
