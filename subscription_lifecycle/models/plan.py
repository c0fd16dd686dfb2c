"""Plan catalog and service configuration models.

Models from plans.yaml configuration.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from subscription_lifecycle.models.subscription import Currency, ExtensionDuration, PlanType
from subscription_lifecycle.utils.periods import validate_period


class PlanDefinition(BaseModel):
    """Billing plan definition from configuration."""

    plan_type: PlanType = Field(..., description="Plan identifier: 'monthly' or 'yearly'")
    title: Optional[str] = Field(None, description="Display label (derived from plan_type if omitted)")
    duration: str = Field(..., description="ISO 8601 paid period (e.g., P1M, P1Y)")
    prices: dict[Currency, int] = Field(..., description="Price per currency in whole units")

    @field_validator("duration")
    @classmethod
    def _check_duration(cls, value: str) -> str:
        if not validate_period(value):
            raise ValueError(f"invalid plan duration: {value}")
        return value

    @field_validator("prices")
    @classmethod
    def _check_prices(cls, value: dict[Currency, int]) -> dict[Currency, int]:
        if not value:
            raise ValueError("plan must define at least one price")
        for currency, amount in value.items():
            if amount <= 0:
                raise ValueError(f"price for {currency.value} must be positive, got {amount}")
        return value

    class Config:
        json_schema_extra = {
            "example": {
                "plan_type": "monthly",
                "title": "1 month Pro Plan",
                "duration": "P1M",
                "prices": {"KSH": 2000, "USD": 10},
            }
        }


class ExtensionDefinition(BaseModel):
    """Administrative extension length."""

    kind: ExtensionDuration = Field(..., description="Extension identifier: '1-month' or '2-months'")
    duration: str = Field(..., description="ISO 8601 extension period (e.g., P1M, P2M)")

    @field_validator("duration")
    @classmethod
    def _check_duration(cls, value: str) -> str:
        if not validate_period(value):
            raise ValueError(f"invalid extension duration: {value}")
        return value


class CurrencyConfig(BaseModel):
    """Reporting currency settings. Display only, never used for settlement."""

    unified_currency: Currency = Field(default=Currency.KSH, description="Currency of the unified revenue total")
    usd_to_ksh_rate: float = Field(default=130.0, gt=0, description="Fixed USD to KSH conversion for display")


class SweeperConfig(BaseModel):
    """Expiry sweeper settings."""

    enabled: bool = Field(default=True, description="Start the sweeper with the service")
    interval_seconds: float = Field(default=60.0, gt=0, description="Seconds between sweeps")


class PubSubConfig(BaseModel):
    """Pub/Sub settings for entitlement change events."""

    enabled: bool = Field(default=False, description="Publish entitlement changes to Pub/Sub")
    project_id: str = Field(default="local-project", description="GCP project ID")
    topic: str = Field(default="subscription-entitlements", description="Pub/Sub topic name")


class EntitlementConfig(BaseModel):
    """Entitlement propagation settings."""

    asynchronous: bool = Field(default=True, description="Dispatch notifications on a background pool")
    max_workers: int = Field(default=4, gt=0, description="Background notification workers")
    pubsub: PubSubConfig = Field(default_factory=PubSubConfig)


class StripeConfig(BaseModel):
    """Stripe webhook settings."""

    webhook_secret: Optional[str] = Field(
        default=None, description="Endpoint signing secret (whsec_...); unset skips signature checks"
    )
    tolerance_seconds: int = Field(default=300, gt=0, description="Maximum age of a signed webhook")


class PlansConfig(BaseModel):
    """Complete plans.yaml configuration."""

    plans: list[PlanDefinition] = Field(..., description="Billing plan definitions")
    extensions: list[ExtensionDefinition] = Field(..., description="Administrative extension lengths")
    currency: CurrencyConfig = Field(default_factory=CurrencyConfig)
    sweeper: SweeperConfig = Field(default_factory=SweeperConfig)
    entitlements: EntitlementConfig = Field(default_factory=EntitlementConfig)
    stripe: StripeConfig = Field(default_factory=StripeConfig)

    @field_validator("plans")
    @classmethod
    def _unique_plans(cls, value: list[PlanDefinition]) -> list[PlanDefinition]:
        plan_types = [p.plan_type for p in value]
        if len(plan_types) != len(set(plan_types)):
            raise ValueError("duplicate plan_type in plans")
        return value

    @field_validator("extensions")
    @classmethod
    def _unique_extensions(cls, value: list[ExtensionDefinition]) -> list[ExtensionDefinition]:
        kinds = [e.kind for e in value]
        if len(kinds) != len(set(kinds)):
            raise ValueError("duplicate kind in extensions")
        return value
