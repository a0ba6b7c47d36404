"""Unit tests for the retention policy resolver.

Tests settings validation, layered resolution with property-level merge,
disablement short-circuits, warn/delete windows, and override management.
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from pydantic import ValidationError

from kycvault.models import RetentionConfig
from kycvault.retention import (
    ModuleSettings,
    ModuleSettingsOverride,
    RetentionPolicy,
    RetentionSettingsError,
    UnknownModuleError,
    get_or_create_config,
)


@pytest.fixture
def policy(db_session, clock):
    return RetentionPolicy(db_session, clock=clock)


class TestSettingsSchemas:
    """Test ModuleSettings bounds."""

    def test_default_values(self):
        """Defaults are 365 days retention with a 7 day warning."""
        settings = ModuleSettings()

        assert settings.retention_period_days == 365
        assert settings.warning_period_days == 7
        assert settings.is_enabled is True
        assert settings.send_email_notifications is True
        assert settings.notification_emails == []

    def test_minimum_retention_validation(self):
        with pytest.raises(ValidationError) as exc:
            ModuleSettings(retentionPeriodDays=29)

        assert "Minimum retention period is 30 days" in str(exc.value)

    def test_maximum_retention_validation(self):
        with pytest.raises(ValidationError) as exc:
            ModuleSettings(retentionPeriodDays=2556)

        assert "Maximum retention period is 7 years (2555 days)" in str(exc.value)

    def test_warning_bounds(self):
        with pytest.raises(ValidationError) as exc:
            ModuleSettings(warningPeriodDays=0)
        assert "Minimum warning period is 1 day" in str(exc.value)

        with pytest.raises(ValidationError) as exc:
            ModuleSettings(warningPeriodDays=31)
        assert "Maximum warning period is 30 days" in str(exc.value)

    def test_boundaries_accepted(self):
        assert ModuleSettings(retentionPeriodDays=30, warningPeriodDays=1).retention_period_days == 30
        assert ModuleSettings(retentionPeriodDays=2555, warningPeriodDays=30).warning_period_days == 30

    def test_invalid_email_rejected(self):
        with pytest.raises(ValidationError) as exc:
            ModuleSettings(notificationEmails=["admin@example.com", "not-an-email"])

        assert "Invalid email address format" in str(exc.value)

    def test_unknown_key_rejected(self):
        with pytest.raises(ValidationError):
            ModuleSettingsOverride(retentionDays=100)

    def test_override_storage_omits_unset(self):
        override = ModuleSettingsOverride(retentionPeriodDays=100)
        assert override.to_storage() == {"retentionPeriodDays": 100}


class TestConfigSingleton:
    """Test lazy creation of the retention configuration."""

    def test_created_with_defaults(self, db_session):
        config = get_or_create_config(db_session)

        assert config.id == 1
        assert config.global_settings["isEnabled"] is True
        assert set(config.module_settings) == {"panKyc", "aadhaarPan"}
        assert config.module_settings["panKyc"]["retentionPeriodDays"] == 365
        assert config.user_overrides == []
        assert config.stats["panKyc"]["totalRecordsDeleted"] == 0

    def test_created_once(self, db_session):
        get_or_create_config(db_session)
        get_or_create_config(db_session)

        assert db_session.query(RetentionConfig).count() == 1


class TestResolution:
    """Test layered settings resolution."""

    def test_module_defaults_without_override(self, policy):
        settings = policy.get_user_module_settings(uuid4(), "panKyc")

        assert settings == {
            "retentionPeriodDays": 365,
            "warningPeriodDays": 7,
            "isEnabled": True,
            "sendEmailNotifications": True,
            "notificationEmails": [],
        }

    def test_property_level_merge(self, policy):
        """An override of one property leaves every other property at the module default."""
        user_id = uuid4()
        policy.update_module_settings("panKyc", {"notificationEmails": ["kyc-admin@example.com"]})
        policy.set_user_override(user_id, "panKyc", {"retentionPeriodDays": 100})

        settings = policy.get_user_module_settings(user_id, "panKyc")

        assert settings["retentionPeriodDays"] == 100
        assert settings["warningPeriodDays"] == 7
        assert settings["isEnabled"] is True
        assert settings["notificationEmails"] == ["kyc-admin@example.com"]

    def test_override_scoped_to_module(self, policy):
        user_id = uuid4()
        policy.set_user_override(user_id, "panKyc", {"retentionPeriodDays": 100})

        assert policy.get_user_module_settings(user_id, "aadhaarPan")["retentionPeriodDays"] == 365

    def test_override_scoped_to_user(self, policy):
        policy.set_user_override(uuid4(), "panKyc", {"retentionPeriodDays": 100})

        assert policy.get_user_module_settings(uuid4(), "panKyc")["retentionPeriodDays"] == 365

    def test_empty_email_override_falls_back(self, policy):
        user_id = uuid4()
        policy.update_module_settings("panKyc", {"notificationEmails": ["kyc-admin@example.com"]})
        policy.set_user_override(user_id, "panKyc", {"notificationEmails": []})

        assert policy.get_user_module_settings(user_id, "panKyc")["notificationEmails"] == [
            "kyc-admin@example.com"
        ]

    def test_unknown_module(self, policy):
        with pytest.raises(UnknownModuleError):
            policy.get_user_module_settings(uuid4(), "aadhaarVerification")

    def test_user_archival_settings(self, policy):
        user_id = uuid4()
        policy.set_user_override(user_id, "aadhaarPan", {"warningPeriodDays": 14})

        result = policy.get_user_archival_settings(user_id)

        assert result["userId"] == str(user_id)
        assert result["moduleSettings"]["aadhaarPan"]["warningPeriodDays"] == 14
        assert result["moduleSettings"]["panKyc"]["warningPeriodDays"] == 7
        assert result["userOverrides"] == {"aadhaarPan": {"warningPeriodDays": 14}}


class TestWindows:
    """Test deletion and warning date arithmetic."""

    def test_deletion_and_warning_dates(self, policy, clock):
        created = clock.now - timedelta(days=10)
        user_id = uuid4()

        assert policy.get_deletion_date(created, user_id, "panKyc") == created + timedelta(days=365)
        assert policy.get_warning_date(created, user_id, "panKyc") == created + timedelta(days=358)

    def test_warn_window(self, policy, clock):
        """A record 359 days old is in the warn window; 300 days old is not."""
        user_id = uuid4()

        assert policy.should_warn(clock.now - timedelta(days=359), user_id, "panKyc")
        assert not policy.should_warn(clock.now - timedelta(days=300), user_id, "panKyc")

    def test_warn_window_edge(self, policy, clock):
        user_id = uuid4()
        assert policy.should_warn(clock.now - timedelta(days=358), user_id, "panKyc")
        assert not policy.should_warn(clock.now - timedelta(days=358) + timedelta(seconds=1), user_id, "panKyc")

    def test_should_delete(self, policy, clock):
        user_id = uuid4()

        assert policy.should_delete(clock.now - timedelta(days=365), user_id, "panKyc")
        assert not policy.should_delete(clock.now - timedelta(days=364), user_id, "panKyc")

    def test_override_moves_window(self, policy, clock):
        user_id = uuid4()
        policy.set_user_override(user_id, "panKyc", {"retentionPeriodDays": 400})

        assert not policy.should_delete(clock.now - timedelta(days=366), user_id, "panKyc")
        assert policy.should_delete(clock.now - timedelta(days=366), uuid4(), "panKyc")


class TestDisablement:
    """Test that disabled archival short-circuits every decision."""

    def test_global_disable_beats_overrides(self, policy, clock):
        user_id = uuid4()
        policy.set_user_override(user_id, "panKyc", {"isEnabled": True, "retentionPeriodDays": 30})
        policy.update_global_settings({"isEnabled": False})
        old = clock.now - timedelta(days=3000)

        for module in ("panKyc", "aadhaarPan"):
            for uid in (user_id, uuid4()):
                assert not policy.should_warn(old, uid, module)
                assert not policy.should_delete(old, uid, module)
                assert policy.get_deletion_date(old, uid, module) is None
                assert policy.get_warning_date(old, uid, module) is None

    def test_module_disable(self, policy, clock):
        policy.update_module_settings("panKyc", {"isEnabled": False})
        old = clock.now - timedelta(days=3000)

        assert not policy.should_delete(old, uuid4(), "panKyc")
        assert policy.should_delete(old, uuid4(), "aadhaarPan")

    def test_module_disable_beats_user_enable(self, policy, clock):
        user_id = uuid4()
        policy.update_module_settings("panKyc", {"isEnabled": False})
        policy.set_user_override(user_id, "panKyc", {"isEnabled": True})

        assert not policy.should_delete(clock.now - timedelta(days=3000), user_id, "panKyc")

    def test_user_disable(self, policy, clock):
        user_id = uuid4()
        policy.set_user_override(user_id, "panKyc", {"isEnabled": False})
        old = clock.now - timedelta(days=3000)

        assert not policy.should_warn(old, user_id, "panKyc")
        assert policy.should_warn(old, uuid4(), "panKyc")


class TestOverrideManagement:
    """Test creating, merging and removing user overrides."""

    def test_set_override_persists(self, db_session, policy):
        user_id = uuid4()
        actor = uuid4()
        entry = policy.set_user_override(user_id, "panKyc", {"retentionPeriodDays": 90}, actor_id=actor)

        assert entry["userId"] == str(user_id)
        assert entry["createdBy"] == str(actor)

        db_session.expire_all()
        reloaded = RetentionPolicy(db_session)
        assert reloaded.get_user_module_settings(user_id, "panKyc")["retentionPeriodDays"] == 90

    def test_set_override_merges(self, policy):
        user_id = uuid4()
        policy.set_user_override(user_id, "panKyc", {"retentionPeriodDays": 90})
        entry = policy.set_user_override(user_id, "panKyc", {"warningPeriodDays": 3})

        assert entry["moduleSettings"]["panKyc"] == {"retentionPeriodDays": 90, "warningPeriodDays": 3}
        assert len(policy.config.user_overrides) == 1

    def test_invalid_override_not_persisted(self, db_session, policy):
        """Validation happens before anything is written."""
        user_id = uuid4()

        with pytest.raises(RetentionSettingsError) as exc:
            policy.set_user_override(user_id, "panKyc", {"retentionPeriodDays": 10})

        assert "Minimum retention period is 30 days" in str(exc.value)
        db_session.expire_all()
        assert RetentionPolicy(db_session).config.user_overrides == []

    def test_settings_error_is_value_error(self, policy):
        with pytest.raises(ValueError):
            policy.set_user_override(uuid4(), "panKyc", {"warningPeriodDays": 45})

    def test_remove_module_override(self, policy):
        user_id = uuid4()
        policy.set_user_override(user_id, "panKyc", {"retentionPeriodDays": 90})
        policy.set_user_override(user_id, "aadhaarPan", {"retentionPeriodDays": 120})

        assert policy.remove_user_override(user_id, "panKyc") is True

        assert policy.get_user_module_settings(user_id, "panKyc")["retentionPeriodDays"] == 365
        assert policy.get_user_module_settings(user_id, "aadhaarPan")["retentionPeriodDays"] == 120

    def test_remove_last_module_drops_entry(self, policy):
        user_id = uuid4()
        policy.set_user_override(user_id, "panKyc", {"retentionPeriodDays": 90})

        assert policy.remove_user_override(user_id, "panKyc") is True
        assert policy.config.user_overrides == []

    def test_remove_whole_entry(self, policy):
        user_id = uuid4()
        policy.set_user_override(user_id, "panKyc", {"retentionPeriodDays": 90})
        policy.set_user_override(user_id, "aadhaarPan", {"retentionPeriodDays": 120})

        assert policy.remove_user_override(user_id) is True
        assert policy.config.user_overrides == []

    def test_remove_missing(self, policy):
        assert policy.remove_user_override(uuid4()) is False
        user_id = uuid4()
        policy.set_user_override(user_id, "panKyc", {"retentionPeriodDays": 90})
        assert policy.remove_user_override(user_id, "aadhaarPan") is False


class TestGlobalAndModuleUpdates:
    """Test administrator updates of the shared layers."""

    def test_update_module_settings_merges(self, policy):
        result = policy.update_module_settings("aadhaarPan", {"warningPeriodDays": 14})

        assert result["warningPeriodDays"] == 14
        assert result["retentionPeriodDays"] == 365

    def test_update_module_settings_rejects_bounds(self, policy):
        with pytest.raises(RetentionSettingsError) as exc:
            policy.update_module_settings("panKyc", {"retentionPeriodDays": 3000})

        assert "Maximum retention period" in str(exc.value)
        assert policy.get_user_module_settings(uuid4(), "panKyc")["retentionPeriodDays"] == 365

    def test_update_global_settings(self, policy):
        result = policy.update_global_settings({"sendEmailNotifications": False})

        assert result["sendEmailNotifications"] is False
        assert result["isEnabled"] is True
        assert policy.notifications_enabled() is False

    def test_update_global_settings_invalid_email(self, policy):
        with pytest.raises(RetentionSettingsError):
            policy.update_global_settings({"notificationEmails": ["nope"]})
