"""Plan catalog - static price and duration lookup.

Loads from config/plans.yaml and provides pure lookups; holds no mutable state.
"""

from datetime import timedelta
from typing import Dict, List, Optional, Union

from subscription_lifecycle.config import Config, get_config
from subscription_lifecycle.models import (
    Currency,
    ExtensionDuration,
    PlanDefinition,
    PlansConfig,
    PlanType,
    get_plan_name,
)
from subscription_lifecycle.utils.periods import parse_period


class PlanValidationError(ValueError):
    """Raised when a plan, currency, extension or amount is not in the catalog."""

    pass


class PlanCatalog:
    """Catalog of billing plans and administrative extensions.

    Prices are whole currency units per (plan type, currency); durations
    are timedeltas parsed from the configured ISO 8601 periods.
    """

    def __init__(self, plans_config: Optional[PlansConfig] = None, config: Optional[Config] = None):
        """Initialize plan catalog.

        Args:
            plans_config: Validated plans configuration. If not provided, loaded from config.
            config: Configuration instance. If not provided, uses global config.
        """
        if plans_config is None:
            plans_config = (config if config is not None else get_config()).plans

        self._plans: Dict[PlanType, PlanDefinition] = {p.plan_type: p for p in plans_config.plans}
        self._durations: Dict[PlanType, timedelta] = {
            p.plan_type: parse_period(p.duration) for p in plans_config.plans
        }
        self._extensions: Dict[ExtensionDuration, timedelta] = {
            e.kind: parse_period(e.duration) for e in plans_config.extensions
        }

    def _plan(self, plan_type: Union[PlanType, str]) -> PlanDefinition:
        try:
            key = PlanType(plan_type)
        except ValueError:
            raise PlanValidationError(
                f"Unknown plan type: {plan_type}. "
                f"Available plans: {[p.value for p in self._plans]}"
            )
        plan = self._plans.get(key)
        if plan is None:
            raise PlanValidationError(
                f"Plan not configured: {key.value}. "
                f"Available plans: {[p.value for p in self._plans]}"
            )
        return plan

    def price(self, plan_type: Union[PlanType, str], currency: Union[Currency, str]) -> int:
        """Get the price of a plan in a currency.

        Raises:
            PlanValidationError: If plan type or currency is unknown
        """
        plan = self._plan(plan_type)
        try:
            key = Currency(currency)
        except ValueError:
            raise PlanValidationError(f"Unknown currency: {currency}")
        amount = plan.prices.get(key)
        if amount is None:
            raise PlanValidationError(
                f"Plan {plan.plan_type.value} has no price in {key.value}"
            )
        return amount

    def duration(self, plan_type: Union[PlanType, str]) -> timedelta:
        """Get the paid period length of a plan.

        Raises:
            PlanValidationError: If plan type is unknown
        """
        plan = self._plan(plan_type)
        return self._durations[plan.plan_type]

    def extension_duration(self, kind: Union[ExtensionDuration, str]) -> timedelta:
        """Get the length of an administrative extension.

        Raises:
            PlanValidationError: If the extension kind is unknown
        """
        try:
            key = ExtensionDuration(kind)
        except ValueError:
            raise PlanValidationError(
                f"Unknown extension duration: {kind}. "
                f"Available: {[k.value for k in self._extensions]}"
            )
        duration = self._extensions.get(key)
        if duration is None:
            raise PlanValidationError(f"Extension not configured: {key.value}")
        return duration

    def plan_name(self, plan_type: Union[PlanType, str]) -> str:
        """Display label for a plan."""
        plan = self._plan(plan_type)
        return plan.title or get_plan_name(plan.plan_type)

    def validate(
        self,
        plan_type: Union[PlanType, str],
        currency: Union[Currency, str],
        amount: Optional[int] = None,
    ) -> int:
        """Validate a plan/currency/amount combination.

        Returns:
            The catalog price

        Raises:
            PlanValidationError: If the combination is unknown or the amount differs
        """
        price = self.price(plan_type, currency)
        if amount is not None and amount != price:
            raise PlanValidationError(
                f"Amount {amount} does not match catalog price {price} "
                f"for {PlanType(plan_type).value} in {Currency(currency).value}"
            )
        return price

    def get_all_plans(self) -> List[PlanDefinition]:
        """Get all plan definitions."""
        return list(self._plans.values())

    def __len__(self) -> int:
        return len(self._plans)

    def __contains__(self, plan_type: object) -> bool:
        try:
            return PlanType(plan_type) in self._plans
        except ValueError:
            return False

    def __repr__(self) -> str:
        return f"PlanCatalog(plans={len(self._plans)}, extensions={len(self._extensions)})"


# Global catalog instance
_catalog_instance: Optional[PlanCatalog] = None


def get_plan_catalog(config: Optional[Config] = None) -> PlanCatalog:
    """Get global plan catalog instance (singleton).

    Args:
        config: Optional configuration instance (only used on first call)
    """
    global _catalog_instance
    if _catalog_instance is None:
        _catalog_instance = PlanCatalog(config=config)
    return _catalog_instance


def reset_plan_catalog() -> None:
    """Drop the global catalog so the next access reloads configuration."""
    global _catalog_instance
    _catalog_instance = None
