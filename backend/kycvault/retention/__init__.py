"""Retention policy: layered settings and warn/delete decisions."""

from .policy import (
    RetentionPolicy,
    RetentionSettingsError,
    UnknownModuleError,
    get_or_create_config,
)
from .schemas import GlobalSettings, ModuleSettings, ModuleSettingsOverride

__all__ = [
    "RetentionPolicy",
    "RetentionSettingsError",
    "UnknownModuleError",
    "get_or_create_config",
    "GlobalSettings",
    "ModuleSettings",
    "ModuleSettingsOverride",
]
