"""Retention policy resolver.

Computes the effective retention settings for a (user, module) pair from
three layers stored on the RetentionConfig singleton:

    global_settings -> module_settings[module] -> user_overrides[user][module]

Overrides merge at property granularity: each property set on the user's
override wins, every other property falls back to the module default on its
own. Disablement short-circuits in order global, module, effective user.

All write operations validate before anything is persisted.
"""

import copy
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.retention_config import ARCHIVAL_MODULES, SINGLETON_ID, RetentionConfig
from .schemas import GlobalSettings, ModuleSettings, ModuleSettingsOverride

logger = logging.getLogger(__name__)

_MERGED_PROPERTIES = (
    "retentionPeriodDays",
    "warningPeriodDays",
    "isEnabled",
    "sendEmailNotifications",
)


class RetentionSettingsError(ValueError):
    """Raised when retention settings violate a bound or are malformed."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class UnknownModuleError(ValueError):
    """Raised for a module name that is not enrolled in archival."""

    def __init__(self, module: str):
        super().__init__(
            f"Unknown archival module {module!r}; expected one of {', '.join(ARCHIVAL_MODULES)}"
        )
        self.module = module


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate(schema, data: Dict[str, Any]):
    """Build a settings schema, turning pydantic errors into RetentionSettingsError."""
    try:
        return schema(**data)
    except ValidationError as e:
        messages = []
        for err in e.errors():
            msg = err["msg"]
            if msg.startswith("Value error, "):
                msg = msg[len("Value error, "):]
            else:
                field = ".".join(str(part) for part in err["loc"])
                msg = f"{field}: {msg}"
            messages.append(msg)
        raise RetentionSettingsError("; ".join(messages), messages) from e


def _user_key(user_id: Union[UUID, str]) -> str:
    return str(user_id)


def get_or_create_config(session: Session) -> RetentionConfig:
    """Load the retention singleton, creating it with defaults on first use."""
    config = session.query(RetentionConfig).filter(RetentionConfig.id == SINGLETON_ID).first()
    if config is not None:
        return config

    config = RetentionConfig.with_defaults()
    session.add(config)
    try:
        session.commit()
        logger.info("Created default retention configuration")
    except IntegrityError:
        # Another process created it first
        session.rollback()
        config = session.query(RetentionConfig).filter(RetentionConfig.id == SINGLETON_ID).one()
    return config


class RetentionPolicy:
    """Resolver over the retention configuration singleton.

    Args:
        db: Database session
        clock: Returns the current aware UTC datetime (injectable for tests)
    """

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clock = clock or _utcnow
        self.config = get_or_create_config(db)

    def refresh(self) -> RetentionConfig:
        """Reload the singleton from the database."""
        self.db.refresh(self.config)
        return self.config

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    @staticmethod
    def _check_module(module: str) -> None:
        if module not in ARCHIVAL_MODULES:
            raise UnknownModuleError(module)

    def _module_defaults(self, module: str) -> Dict[str, Any]:
        self._check_module(module)
        stored = (self.config.module_settings or {}).get(module) or {}
        return ModuleSettings(**stored).model_dump(by_alias=True)

    def _find_override(self, user_id: Union[UUID, str]) -> Optional[Dict[str, Any]]:
        key = _user_key(user_id)
        for entry in self.config.user_overrides or []:
            if entry.get("userId") == key:
                return entry
        return None

    def get_user_module_settings(self, user_id: Union[UUID, str], module: str) -> Dict[str, Any]:
        """Effective settings for one user and module.

        Returns:
            Dict with camelCase keys: retentionPeriodDays, warningPeriodDays,
            isEnabled, sendEmailNotifications, notificationEmails
        """
        effective = self._module_defaults(module)
        override = self._find_override(user_id)
        if not override:
            return effective

        partial = (override.get("moduleSettings") or {}).get(module)
        if not partial:
            return effective

        for prop in _MERGED_PROPERTIES:
            if partial.get(prop) is not None:
                effective[prop] = partial[prop]
        # An empty override list means "not set", not "notify nobody"
        if partial.get("notificationEmails"):
            effective["notificationEmails"] = list(partial["notificationEmails"])
        return effective

    def is_globally_enabled(self) -> bool:
        return bool((self.config.global_settings or {}).get("isEnabled", True))

    def is_module_enabled(self, module: str) -> bool:
        """Module switch only; user overrides are not consulted."""
        return bool(self._module_defaults(module)["isEnabled"])

    def notifications_enabled(self) -> bool:
        return bool((self.config.global_settings or {}).get("sendEmailNotifications", True))

    def _enabled_settings(self, user_id: Union[UUID, str], module: str) -> Optional[Dict[str, Any]]:
        """Effective settings, or None if archival is disabled anywhere in the chain."""
        if not self.is_globally_enabled():
            return None
        if not self.is_module_enabled(module):
            return None
        settings = self.get_user_module_settings(user_id, module)
        if not settings["isEnabled"]:
            return None
        return settings

    def get_deletion_date(
        self, created_at: datetime, user_id: Union[UUID, str], module: str
    ) -> Optional[datetime]:
        """created_at + retentionPeriodDays, or None when archival is disabled."""
        settings = self._enabled_settings(user_id, module)
        if settings is None:
            return None
        return created_at + timedelta(days=settings["retentionPeriodDays"])

    def get_warning_date(
        self, created_at: datetime, user_id: Union[UUID, str], module: str
    ) -> Optional[datetime]:
        """Deletion date minus warningPeriodDays, or None when disabled."""
        settings = self._enabled_settings(user_id, module)
        if settings is None:
            return None
        return created_at + timedelta(
            days=settings["retentionPeriodDays"] - settings["warningPeriodDays"]
        )

    def should_warn(
        self,
        created_at: datetime,
        user_id: Union[UUID, str],
        module: str,
        now: Optional[datetime] = None,
    ) -> bool:
        warning_date = self.get_warning_date(created_at, user_id, module)
        if warning_date is None:
            return False
        return (now or self.clock()) >= warning_date

    def should_delete(
        self,
        created_at: datetime,
        user_id: Union[UUID, str],
        module: str,
        now: Optional[datetime] = None,
    ) -> bool:
        deletion_date = self.get_deletion_date(created_at, user_id, module)
        if deletion_date is None:
            return False
        return (now or self.clock()) >= deletion_date

    def get_user_archival_settings(self, user_id: Union[UUID, str]) -> Dict[str, Any]:
        """Effective settings for every module plus the user's raw override."""
        override = self._find_override(user_id)
        return {
            "userId": _user_key(user_id),
            "globalSettings": copy.deepcopy(self.config.global_settings),
            "moduleSettings": {
                module: self.get_user_module_settings(user_id, module)
                for module in ARCHIVAL_MODULES
            },
            "userOverrides": copy.deepcopy(override.get("moduleSettings")) if override else {},
        }

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def set_user_override(
        self,
        user_id: Union[UUID, str],
        module: str,
        settings: Dict[str, Any],
        actor_id: Optional[Union[UUID, str]] = None,
    ) -> Dict[str, Any]:
        """Create or merge a user's override for one module.

        Properties already on the override and not mentioned in ``settings``
        are kept.

        Returns:
            The user's override entry after the update

        Raises:
            RetentionSettingsError: If a value is out of bounds
            UnknownModuleError: If the module is not enrolled in archival
        """
        self._check_module(module)
        partial = _validate(ModuleSettingsOverride, settings).to_storage()

        now_iso = self.clock().isoformat()
        key = _user_key(user_id)
        overrides = copy.deepcopy(self.config.user_overrides or [])
        entry = next((o for o in overrides if o.get("userId") == key), None)

        if entry is None:
            entry = {
                "userId": key,
                "moduleSettings": {module: partial},
                "createdBy": str(actor_id) if actor_id else None,
                "createdAt": now_iso,
                "updatedAt": now_iso,
            }
            overrides.append(entry)
        else:
            module_settings = entry.setdefault("moduleSettings", {})
            merged = dict(module_settings.get(module) or {})
            merged.update(partial)
            module_settings[module] = merged
            entry["updatedAt"] = now_iso

        self.config.user_overrides = overrides
        if actor_id:
            self.config.updated_by = UUID(str(actor_id))
        self.db.commit()

        logger.info(
            f"User override set for {module}",
            extra={"user_id": key, "module_name": module},
        )
        return copy.deepcopy(entry)

    def remove_user_override(self, user_id: Union[UUID, str], module: Optional[str] = None) -> bool:
        """Remove one module's override, or the user's whole entry.

        The entry is dropped once its last module block is removed.

        Returns:
            True if anything was removed
        """
        if module is not None:
            self._check_module(module)

        key = _user_key(user_id)
        overrides = copy.deepcopy(self.config.user_overrides or [])
        index = next((i for i, o in enumerate(overrides) if o.get("userId") == key), None)
        if index is None:
            return False

        if module is None:
            overrides.pop(index)
        else:
            module_settings = overrides[index].get("moduleSettings") or {}
            if module not in module_settings:
                return False
            del module_settings[module]
            if module_settings:
                overrides[index]["updatedAt"] = self.clock().isoformat()
            else:
                overrides.pop(index)

        self.config.user_overrides = overrides
        self.db.commit()

        logger.info(
            "User override removed",
            extra={"user_id": key, "module_name": module or "*"},
        )
        return True

    def update_module_settings(
        self,
        module: str,
        settings: Dict[str, Any],
        actor_id: Optional[Union[UUID, str]] = None,
    ) -> Dict[str, Any]:
        """Merge new values into a module's default settings.

        Raises:
            RetentionSettingsError: If the merged settings are invalid
        """
        self._check_module(module)
        incoming = _validate(ModuleSettingsOverride, settings).to_storage()
        merged = self._module_defaults(module)
        merged.update({k: v for k, v in incoming.items() if v is not None})
        validated = _validate(ModuleSettings, merged).model_dump(by_alias=True)

        module_settings = copy.deepcopy(self.config.module_settings or {})
        module_settings[module] = validated
        self.config.module_settings = module_settings
        if actor_id:
            self.config.updated_by = UUID(str(actor_id))
        self.db.commit()

        logger.info(f"Module settings updated for {module}", extra={"module_name": module})
        return copy.deepcopy(validated)

    def update_global_settings(
        self,
        settings: Dict[str, Any],
        actor_id: Optional[Union[UUID, str]] = None,
    ) -> Dict[str, Any]:
        """Merge new values into the global settings.

        Raises:
            RetentionSettingsError: If the merged settings are invalid
        """
        merged = copy.deepcopy(self.config.global_settings or {})
        merged.update(settings)
        validated = _validate(GlobalSettings, merged).model_dump(by_alias=True)

        self.config.global_settings = validated
        if actor_id:
            self.config.updated_by = UUID(str(actor_id))
        self.db.commit()

        logger.info("Global retention settings updated")
        return copy.deepcopy(validated)
