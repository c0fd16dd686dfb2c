"""Configuration management - plans.yaml plus environment overrides.

Resolution order for the file: explicit argument, CONFIG_PATH, then
./config/plans.yaml. Operational settings can be overridden per
deployment without editing the file:

    SWEEPER_ENABLED, SWEEPER_INTERVAL_SECONDS,
    ENTITLEMENTS_ASYNC, PUBSUB_ENABLED, PUBSUB_PROJECT_ID, PUBSUB_TOPIC,
    USD_TO_KSH_RATE, STRIPE_WEBHOOK_SECRET
"""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from subscription_lifecycle.models import (
    CurrencyConfig,
    EntitlementConfig,
    PlanDefinition,
    PlansConfig,
    PlanType,
    StripeConfig,
    SweeperConfig,
)

DEFAULT_CONFIG_PATH = "config/plans.yaml"

# env var -> (section path inside plans.yaml, key)
ENV_OVERRIDES: dict[str, tuple[tuple[str, ...], str]] = {
    "SWEEPER_ENABLED": (("sweeper",), "enabled"),
    "SWEEPER_INTERVAL_SECONDS": (("sweeper",), "interval_seconds"),
    "ENTITLEMENTS_ASYNC": (("entitlements",), "asynchronous"),
    "PUBSUB_ENABLED": (("entitlements", "pubsub"), "enabled"),
    "PUBSUB_PROJECT_ID": (("entitlements", "pubsub"), "project_id"),
    "PUBSUB_TOPIC": (("entitlements", "pubsub"), "topic"),
    "USD_TO_KSH_RATE": (("currency",), "usd_to_ksh_rate"),
    "STRIPE_WEBHOOK_SECRET": (("stripe",), "webhook_secret"),
}


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


def apply_env_overrides(raw_config: dict[str, Any], environ: Optional[dict[str, str]] = None) -> dict[str, Any]:
    """Write set override variables into the raw YAML mapping.

    Values stay strings; pydantic coerces them ("false" → False, "30" → 30.0)
    during validation.
    """
    environ = os.environ if environ is None else environ
    for var, (sections, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value is None or value == "":
            continue
        target = raw_config
        for section in sections:
            nested = target.get(section)
            if not isinstance(nested, dict):
                nested = target[section] = {}
            target = nested
        target[key] = value
    return raw_config


class Config:
    """Validated plans and service settings.

    The file is read once on construction; reload() re-reads it and keeps
    the previous settings if the new file does not validate.
    """

    def __init__(self, config_path: Optional[str] = None):
        self._config_path = Path(config_path or os.getenv("CONFIG_PATH") or DEFAULT_CONFIG_PATH)
        self._plans_config: PlansConfig = self._load_config()

    def _load_config(self) -> PlansConfig:
        if not self._config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self._config_path}\n"
                f"Create {DEFAULT_CONFIG_PATH} or set the CONFIG_PATH environment variable"
            )

        try:
            with open(self._config_path, encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}") from e

        if not raw_config:
            raise ConfigurationError(f"Configuration file is empty: {self._config_path}")
        if not isinstance(raw_config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self._config_path}")

        try:
            return PlansConfig(**apply_env_overrides(raw_config))
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    @property
    def plans(self) -> PlansConfig:
        return self._plans_config

    @property
    def config_path(self) -> Path:
        return self._config_path

    def get_plan(self, plan_type: PlanType) -> Optional[PlanDefinition]:
        """Plan definition for a tier, None if the tier is not configured."""
        for plan in self.plans.plans:
            if plan.plan_type == plan_type:
                return plan
        return None

    @property
    def sweeper_settings(self) -> SweeperConfig:
        return self.plans.sweeper

    @property
    def entitlement_settings(self) -> EntitlementConfig:
        return self.plans.entitlements

    @property
    def stripe_settings(self) -> StripeConfig:
        return self.plans.stripe

    @property
    def currency_settings(self) -> CurrencyConfig:
        """Reporting currency and display conversion rate."""
        return self.plans.currency

    def reload(self) -> None:
        """Re-read the file. On failure the current settings stay in place.

        Raises:
            ConfigurationError: If the file is missing or invalid
        """
        self._plans_config = self._load_config()


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(config_path: Optional[str] = None) -> Config:
    """Get global configuration instance (singleton).

    Args:
        config_path: Optional path to configuration file (only used on first call)
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config(config_path)
    return _config_instance


def reload_config() -> None:
    """Reload global configuration from disk."""
    global _config_instance
    if _config_instance:
        _config_instance.reload()
    else:
        _config_instance = Config()
