"""
Unit tests for provisioning configuration validation and defaulting.
"""

from datetime import timedelta

import pytest

from aap_provisioner.config.settings import (
    ClientSettings,
    ProvisioningConfig,
    load_config,
    parse_duration,
)
from aap_provisioner.core.errors import ConfigurationInvalidError


# =============================================================================
# Required Fields
# =============================================================================


class TestRequiredFields:
    """Tests for static preconditions."""

    def test_minimal_config_passes(self, base_options):
        config = load_config(base_options)
        assert config.tower_host == "https://aap.example.com"
        assert config.job_template_id == 42
        assert config.inventory_id == 7

    def test_missing_tower_host(self, base_options):
        base_options["tower_host"] = ""
        with pytest.raises(ConfigurationInvalidError, match="tower_host must be set"):
            load_config(base_options)

    @pytest.mark.parametrize("host", ["aap.example.com", "ftp://aap.example.com", "//aap"])
    def test_tower_host_requires_scheme(self, base_options, host):
        base_options["tower_host"] = host
        with pytest.raises(ConfigurationInvalidError, match="http:// or https://"):
            load_config(base_options)

    def test_tower_host_trailing_slash_stripped(self, base_options):
        base_options["tower_host"] = "http://aap.example.com/"
        assert load_config(base_options).tower_host == "http://aap.example.com"

    def test_unknown_option_rejected(self, base_options):
        base_options["tower_hostname"] = "https://typo.example.com"
        with pytest.raises(ConfigurationInvalidError):
            load_config(base_options)


class TestAuthMode:
    """Bearer token, or username and password."""

    def test_username_without_password(self, base_options):
        base_options.pop("password")
        with pytest.raises(ConfigurationInvalidError, match="password must be set"):
            load_config(base_options)

    def test_password_without_username(self, base_options):
        base_options.pop("username")
        with pytest.raises(ConfigurationInvalidError, match="username must be set"):
            load_config(base_options)

    def test_token_alone_passes(self, base_options):
        base_options.pop("username")
        base_options.pop("password")
        base_options["access_token"] = "token123"
        config = load_config(base_options)
        assert config.uses_token is True

    def test_token_wins_over_basic_credentials(self, base_options):
        base_options["access_token"] = "token123"
        config = load_config(base_options)
        assert config.uses_token is True
        settings = ClientSettings.from_config(config)
        assert settings.uses_token is True
        assert settings.username == ""
        assert settings.password == ""

    def test_secrets_hidden_in_repr(self, base_options):
        config = load_config(base_options)
        assert "secret" not in repr(config)


class TestJobSelector:
    """Exactly one of job_template_id / workflow_template_id."""

    def test_neither_template_rejected(self, base_options):
        base_options.pop("job_template_id")
        with pytest.raises(ConfigurationInvalidError, match="either job_template_id or workflow_template_id"):
            load_config(base_options)

    def test_zero_templates_rejected(self, base_options):
        base_options["job_template_id"] = 0
        base_options["workflow_template_id"] = 0
        with pytest.raises(ConfigurationInvalidError):
            load_config(base_options)

    def test_workflow_only_passes(self, base_options):
        base_options.pop("job_template_id")
        base_options["workflow_template_id"] = 9
        config = load_config(base_options)
        assert config.is_workflow is True

    def test_both_templates_rejected(self, base_options):
        base_options["workflow_template_id"] = 9
        with pytest.raises(ConfigurationInvalidError, match="mutually exclusive"):
            load_config(base_options)

    def test_negative_identifier_rejected(self, base_options):
        base_options["job_template_id"] = -1
        with pytest.raises(ConfigurationInvalidError):
            load_config(base_options)


class TestInventorySelector:
    """Inventory selection."""

    def test_dynamic_without_organization_rejected(self, base_options):
        base_options.pop("inventory_id")
        base_options["dynamic_inventory"] = True
        base_options["organization_id"] = 0
        with pytest.raises(ConfigurationInvalidError, match="organization_id must be set"):
            load_config(base_options)

    def test_dynamic_with_organization_passes(self, base_options):
        base_options.pop("inventory_id")
        base_options["dynamic_inventory"] = True
        base_options["organization_id"] = 3
        config = load_config(base_options)
        assert config.dynamic_inventory is True

    def test_no_inventory_uses_template_inventory(self, base_options):
        base_options.pop("inventory_id")
        config = load_config(base_options)
        assert config.inventory_id == 0
        assert config.dynamic_inventory is False

    def test_workflow_without_inventory_passes(self, base_options):
        base_options.pop("inventory_id")
        base_options.pop("job_template_id")
        base_options["workflow_template_id"] = 9
        assert load_config(base_options).is_workflow is True

    def test_dynamic_and_static_accepted(self, base_options):
        base_options["dynamic_inventory"] = True
        base_options["organization_id"] = 3
        config = load_config(base_options)
        assert config.dynamic_inventory is True
        assert config.inventory_id == 7


# =============================================================================
# Defaulting
# =============================================================================


class TestDefaults:
    """Defaults and idempotent re-validation."""

    def test_defaults_applied(self, base_options):
        config = load_config(base_options)
        assert config.timeout == timedelta(minutes=15)
        assert config.poll_interval == timedelta(seconds=10)
        assert config.request_timeout == timedelta(seconds=30)
        assert config.extra_vars == {}
        assert config.create_credential is True
        assert config.keep_temp_inventory is False
        assert config.keep_temp_credential is False
        assert config.insecure_skip_verify is False

    def test_zero_durations_defaulted(self, base_options):
        base_options["timeout"] = 0
        base_options["poll_interval"] = "0s"
        config = load_config(base_options)
        assert config.timeout == timedelta(minutes=15)
        assert config.poll_interval == timedelta(seconds=10)

    def test_defaulting_is_idempotent(self, base_options):
        base_options["timeout"] = 0
        base_options["poll_interval"] = None
        first = load_config(base_options)
        second = load_config(first.model_dump())
        assert second.timeout == first.timeout == timedelta(minutes=15)
        assert second.poll_interval == first.poll_interval == timedelta(seconds=10)
        assert second == first

    def test_preset_values_not_overwritten(self, base_options):
        base_options["timeout"] = "2m"
        base_options["poll_interval"] = 3
        config = load_config(load_config(base_options))
        assert config.timeout == timedelta(minutes=2)
        assert config.poll_interval == timedelta(seconds=3)

    def test_null_extra_vars_becomes_empty_mapping(self, base_options):
        base_options["extra_vars"] = None
        assert load_config(base_options).extra_vars == {}

    def test_extra_vars_passed_through(self, base_options):
        base_options["extra_vars"] = {"image": "rhel9", "nested": {"a": [1, 2]}}
        assert load_config(base_options).extra_vars == {"image": "rhel9", "nested": {"a": [1, 2]}}

    def test_create_credential_false_honoured(self, base_options):
        base_options["create_credential"] = False
        assert load_config(base_options).create_credential is False

    def test_config_is_frozen(self, base_options):
        config = load_config(base_options)
        with pytest.raises(Exception):
            config.timeout = timedelta(seconds=1)


class TestParseDuration:
    """Go-style duration strings."""

    @pytest.mark.parametrize("text,seconds", [
        ("15m", 900),
        ("10s", 10),
        ("200ms", 0.2),
        ("1h30m", 5400),
        ("2.5s", 2.5),
        ("45", 45),
    ])
    def test_valid_durations(self, text, seconds):
        assert parse_duration(text) == timedelta(seconds=seconds)

    def test_number_is_seconds(self):
        assert parse_duration(90) == timedelta(seconds=90)

    def test_empty_is_none(self):
        assert parse_duration("") is None

    @pytest.mark.parametrize("text", ["15 minutes", "m15", "1x", "abc"])
    def test_invalid_durations(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)

    def test_invalid_duration_in_config(self, base_options):
        base_options["timeout"] = "soon"
        with pytest.raises(ConfigurationInvalidError, match="timeout"):
            load_config(base_options)


# =============================================================================
# Client Settings
# =============================================================================


class TestClientSettings:
    """Transport settings derived once from the config."""

    def test_basic_auth(self, base_options):
        settings = ClientSettings.from_config(load_config(base_options))
        assert settings.uses_token is False
        assert settings.username == "admin"
        assert settings.password == "secret"
        assert settings.verify_tls is True
        assert settings.request_timeout == 30

    def test_bearer_auth(self, base_options):
        base_options.pop("username")
        base_options.pop("password")
        base_options["access_token"] = "token123"
        settings = ClientSettings.from_config(load_config(base_options))
        assert settings.uses_token is True
        assert settings.username == ""

    def test_insecure_skip_verify(self, base_options):
        base_options["insecure_skip_verify"] = True
        settings = ClientSettings.from_config(load_config(base_options))
        assert settings.verify_tls is False

    def test_settings_immutable(self):
        settings = ClientSettings(base_url="https://aap.example.com")
        with pytest.raises(Exception):
            settings.base_url = "https://other.example.com"

    def test_repr_hides_secrets(self):
        settings = ClientSettings(base_url="https://aap.example.com", access_token="token123")
        assert "token123" not in repr(settings)

    def test_model_class_is_usable_directly(self, base_options):
        config = ProvisioningConfig(**base_options)
        assert config.job_template_id == 42
