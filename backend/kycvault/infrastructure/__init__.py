"""Shared infrastructure (encryption)."""
