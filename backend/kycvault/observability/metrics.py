"""Prometheus metrics for the KYC vault.

Defines operational metrics for the archival lifecycle and the field codec.
"""

from prometheus_client import Counter, Histogram

# Archival run metrics
archival_runs_total = Counter(
    "kycvault_archival_runs_total",
    "Total archival runs",
    ["trigger", "outcome"]  # trigger: scheduled|manual|task, outcome: completed|skipped|failed
)

archival_run_duration_seconds = Histogram(
    "kycvault_archival_run_duration_seconds",
    "Wall-clock duration of a full archival run in seconds",
    buckets=[0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 900.0, 3600.0]
)

# Per-record lifecycle transitions
archival_warnings_total = Counter(
    "kycvault_archival_warnings_total",
    "Records warned and marked for deletion",
    ["module"]
)

archival_deletions_total = Counter(
    "kycvault_archival_deletions_total",
    "Records hard-deleted by the retention policy",
    ["module"]
)

archival_rescues_total = Counter(
    "kycvault_archival_rescues_total",
    "Marked records reverted to active after a policy relaxation",
    ["module"]
)

archival_errors_total = Counter(
    "kycvault_archival_errors_total",
    "Per-record failures during an archival sweep",
    ["module", "phase"]  # phase: warn|delete|notify
)

# Notification delivery
notifications_sent_total = Counter(
    "kycvault_notifications_sent_total",
    "Notification send attempts",
    ["kind", "status"]  # kind: warning|deletion|rescue, status: success|error
)

# Field codec
field_decode_failures_total = Counter(
    "kycvault_field_decode_failures_total",
    "Sensitive field values that could not be decoded and were replaced by the sentinel",
)

outbox_events_total = Counter(
    "kycvault_outbox_events_total",
    "Outbox events processed by the relay",
    ["status"]  # status: sent|retry|failed
)
