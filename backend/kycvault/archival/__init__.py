"""Record archival: warn, mark, and delete PII records past retention.

This module provides:
- ArchivalService, the run orchestrator and admin operations
- Archival events with inline and outbox publishers
- Retention notice templates
- A durable run lease for multi-instance deployments
"""

from .schemas import ArchivalRunReport, ModuleRunStats

# Service and tasks are imported lazily to avoid circular dependencies
# Use: from kycvault.archival.service import ArchivalService
# Use: from kycvault.archival.tasks import archival_run_task

__all__ = [
    "ArchivalRunReport",
    "ModuleRunStats",
]
