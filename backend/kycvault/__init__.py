"""KYC vault: encrypted PII record storage with retention-driven archival."""

__version__ = "0.1.0"
