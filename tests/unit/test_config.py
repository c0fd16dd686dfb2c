"""Tests for configuration loading and management."""

import pytest

from subscription_lifecycle.config import Config, ConfigurationError, apply_env_overrides
from subscription_lifecycle.models import Currency, ExtensionDuration, PlanType

VALID_CONFIG = """
plans:
  - plan_type: monthly
    duration: P1M
    prices:
      KSH: 2000
      USD: 10
extensions:
  - kind: 1-month
    duration: P1M
sweeper:
  enabled: false
  interval_seconds: 5
"""


@pytest.fixture
def config():
    """Create a Config instance from the bundled plans.yaml."""
    return Config()


@pytest.fixture
def write_config(tmp_path):
    def _write(content: str):
        path = tmp_path / "plans.yaml"
        path.write_text(content, encoding="utf-8")
        return path

    return _write


class TestConfigurationLoading:
    """Test loading the bundled configuration."""

    def test_config_loads_successfully(self, config):
        assert config.config_path.exists()
        assert str(config.config_path).endswith("plans.yaml")

    def test_bundled_plans(self, config):
        plans = {p.plan_type: p for p in config.plans.plans}
        assert plans[PlanType.MONTHLY].prices[Currency.KSH] == 2000
        assert plans[PlanType.MONTHLY].prices[Currency.USD] == 10
        assert plans[PlanType.YEARLY].prices[Currency.KSH] == 20000
        assert plans[PlanType.YEARLY].prices[Currency.USD] == 100
        assert plans[PlanType.YEARLY].duration == "P1Y"

    def test_bundled_extensions(self, config):
        kinds = {e.kind for e in config.plans.extensions}
        assert kinds == {ExtensionDuration.ONE_MONTH, ExtensionDuration.TWO_MONTHS}

    def test_settings_accessors(self, config):
        assert config.currency_settings.usd_to_ksh_rate == 130
        assert config.currency_settings.unified_currency == Currency.KSH
        assert config.sweeper_settings.interval_seconds > 0
        assert config.entitlement_settings.pubsub.enabled is False


class TestConfigurationPaths:
    def test_explicit_path(self, write_config):
        path = write_config(VALID_CONFIG)
        config = Config(str(path))
        assert config.config_path == path
        assert config.sweeper_settings.enabled is False
        # omitted sections fall back to defaults
        assert config.entitlement_settings.max_workers == 4

    def test_config_path_env_var(self, write_config, monkeypatch):
        path = write_config(VALID_CONFIG)
        monkeypatch.setenv("CONFIG_PATH", str(path))
        assert Config().config_path == path

    def test_reload_picks_up_changes(self, write_config):
        path = write_config(VALID_CONFIG)
        config = Config(str(path))
        path.write_text(VALID_CONFIG.replace("interval_seconds: 5", "interval_seconds: 9"), encoding="utf-8")
        config.reload()
        assert config.sweeper_settings.interval_seconds == 9


class TestConfigurationErrors:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            Config(str(tmp_path / "missing.yaml"))

    def test_empty_file(self, write_config):
        with pytest.raises(ConfigurationError, match="empty"):
            Config(str(write_config("")))

    def test_invalid_yaml(self, write_config):
        with pytest.raises(ConfigurationError, match="parse"):
            Config(str(write_config("plans: [unclosed")))

    def test_unknown_currency_fails_validation(self, write_config):
        with pytest.raises(ConfigurationError, match="validation"):
            Config(str(write_config(VALID_CONFIG.replace("USD: 10", "EUR: 10"))))

    def test_bad_duration_fails_validation(self, write_config):
        with pytest.raises(ConfigurationError):
            Config(str(write_config(VALID_CONFIG.replace("duration: P1M\n    prices", "duration: monthly\n    prices"))))

    def test_duplicate_plan_fails_validation(self, write_config):
        duplicated = VALID_CONFIG.replace(
            "extensions:",
            "  - plan_type: monthly\n    duration: P1M\n    prices:\n      KSH: 1\nextensions:",
        )
        with pytest.raises(ConfigurationError):
            Config(str(write_config(duplicated)))

    def test_non_positive_price_fails_validation(self, write_config):
        with pytest.raises(ConfigurationError):
            Config(str(write_config(VALID_CONFIG.replace("KSH: 2000", "KSH: 0"))))


class TestEnvironmentOverrides:
    def test_overrides_applied(self, write_config, monkeypatch):
        monkeypatch.setenv("SWEEPER_ENABLED", "true")
        monkeypatch.setenv("SWEEPER_INTERVAL_SECONDS", "15")
        monkeypatch.setenv("PUBSUB_ENABLED", "true")
        monkeypatch.setenv("PUBSUB_TOPIC", "entitlements-staging")
        monkeypatch.setenv("USD_TO_KSH_RATE", "129.5")

        config = Config(str(write_config(VALID_CONFIG)))

        assert config.sweeper_settings.enabled is True
        assert config.sweeper_settings.interval_seconds == 15
        assert config.entitlement_settings.pubsub.enabled is True
        assert config.entitlement_settings.pubsub.topic == "entitlements-staging"
        assert config.currency_settings.usd_to_ksh_rate == 129.5

    def test_stripe_secret_from_environment(self, write_config, monkeypatch):
        monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_live")
        config = Config(str(write_config(VALID_CONFIG)))
        assert config.stripe_settings.webhook_secret == "whsec_live"

    def test_stripe_defaults_to_unsigned(self, write_config, monkeypatch):
        monkeypatch.delenv("STRIPE_WEBHOOK_SECRET", raising=False)
        assert Config(str(write_config(VALID_CONFIG))).stripe_settings.webhook_secret is None

    def test_override_creates_missing_section(self):
        raw = apply_env_overrides({"sweeper": None}, {"SWEEPER_ENABLED": "false", "PUBSUB_PROJECT_ID": "p"})
        assert raw == {"sweeper": {"enabled": "false"}, "entitlements": {"pubsub": {"project_id": "p"}}}

    def test_empty_values_ignored(self):
        assert apply_env_overrides({}, {"PUBSUB_TOPIC": ""}) == {}

    def test_invalid_override_fails_validation(self, write_config, monkeypatch):
        monkeypatch.setenv("SWEEPER_INTERVAL_SECONDS", "-1")
        with pytest.raises(ConfigurationError, match="validation"):
            Config(str(write_config(VALID_CONFIG)))


class TestReload:
    def test_failed_reload_keeps_previous(self, write_config):
        path = write_config(VALID_CONFIG)
        config = Config(str(path))
        path.write_text("plans: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            config.reload()
        assert config.get_plan(PlanType.MONTHLY).prices[Currency.KSH] == 2000

    def test_get_plan_missing(self, write_config):
        config = Config(str(write_config(VALID_CONFIG)))
        assert config.get_plan(PlanType.YEARLY) is None

    def test_root_must_be_mapping(self, write_config):
        with pytest.raises(ConfigurationError, match="mapping"):
            Config(str(write_config("- just\n- a list\n")))
