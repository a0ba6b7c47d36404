"""Pydantic schemas for retention policy settings.

This module defines the validated shapes stored in the RetentionConfig
singleton:
- GlobalSettings: switches that apply to every module
- ModuleSettings: complete per-module retention policy
- ModuleSettingsOverride: partial per-user override of ModuleSettings

Stored JSON uses camelCase keys; Python code uses the snake_case attribute
names. Bound violations raise ValueError with a message naming the bound.
"""

import re
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_RETENTION_DAYS = 30
MAX_RETENTION_DAYS = 2555  # 7 years
MIN_WARNING_DAYS = 1
MAX_WARNING_DAYS = 30

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _check_retention_days(v: Optional[int]) -> Optional[int]:
    if v is None:
        return v
    if v < MIN_RETENTION_DAYS:
        raise ValueError(f"Minimum retention period is {MIN_RETENTION_DAYS} days")
    if v > MAX_RETENTION_DAYS:
        raise ValueError(f"Maximum retention period is 7 years ({MAX_RETENTION_DAYS} days)")
    return v


def _check_warning_days(v: Optional[int]) -> Optional[int]:
    if v is None:
        return v
    if v < MIN_WARNING_DAYS:
        raise ValueError(f"Minimum warning period is {MIN_WARNING_DAYS} day")
    if v > MAX_WARNING_DAYS:
        raise ValueError(f"Maximum warning period is {MAX_WARNING_DAYS} days")
    return v


def _check_emails(v: Optional[List[str]]) -> Optional[List[str]]:
    if v is None:
        return v
    cleaned = [email.strip() for email in v]
    for email in cleaned:
        if not _EMAIL_RE.match(email):
            raise ValueError(f"Invalid email address format: {email!r}")
    return cleaned


class _SettingsModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    def to_storage(self) -> dict:
        """Dump with camelCase keys, omitting unset fields."""
        return self.model_dump(by_alias=True, exclude_unset=True)


class GlobalSettings(_SettingsModel):
    """Switches applied before any module or user setting is consulted."""

    is_enabled: bool = Field(default=True, alias="isEnabled")
    send_email_notifications: bool = Field(default=True, alias="sendEmailNotifications")
    notification_emails: List[str] = Field(default_factory=list, alias="notificationEmails")

    @field_validator("notification_emails")
    @classmethod
    def validate_emails(cls, v: List[str]) -> List[str]:
        return _check_emails(v)


class ModuleSettings(_SettingsModel):
    """Complete retention policy for one archival module.

    Retention period 30-2555 days, warning period 1-30 days.
    """

    retention_period_days: int = Field(
        default=365,
        alias="retentionPeriodDays",
        description="Days a record is kept before it becomes eligible for deletion (30-2555)"
    )
    warning_period_days: int = Field(
        default=7,
        alias="warningPeriodDays",
        description="Days before deletion that the owner is warned (1-30)"
    )
    is_enabled: bool = Field(default=True, alias="isEnabled")
    send_email_notifications: bool = Field(default=True, alias="sendEmailNotifications")
    notification_emails: List[str] = Field(default_factory=list, alias="notificationEmails")

    @field_validator("retention_period_days")
    @classmethod
    def validate_retention(cls, v: int) -> int:
        return _check_retention_days(v)

    @field_validator("warning_period_days")
    @classmethod
    def validate_warning(cls, v: int) -> int:
        return _check_warning_days(v)

    @field_validator("notification_emails")
    @classmethod
    def validate_emails(cls, v: List[str]) -> List[str]:
        return _check_emails(v)


class ModuleSettingsOverride(_SettingsModel):
    """Partial per-user override; only fields that are set take effect."""

    retention_period_days: Optional[int] = Field(default=None, alias="retentionPeriodDays")
    warning_period_days: Optional[int] = Field(default=None, alias="warningPeriodDays")
    is_enabled: Optional[bool] = Field(default=None, alias="isEnabled")
    send_email_notifications: Optional[bool] = Field(default=None, alias="sendEmailNotifications")
    notification_emails: Optional[List[str]] = Field(default=None, alias="notificationEmails")

    @field_validator("retention_period_days")
    @classmethod
    def validate_retention(cls, v: Optional[int]) -> Optional[int]:
        return _check_retention_days(v)

    @field_validator("warning_period_days")
    @classmethod
    def validate_warning(cls, v: Optional[int]) -> Optional[int]:
        return _check_warning_days(v)

    @field_validator("notification_emails")
    @classmethod
    def validate_emails(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _check_emails(v)
