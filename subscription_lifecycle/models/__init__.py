"""Pydantic models for domain objects, configuration and the HTTP API."""

# Subscription models
from .subscription import (
    Currency,
    ExtensionDuration,
    PlanType,
    SubscriptionFilter,
    SubscriptionRecord,
    SubscriptionStatus,
    get_plan_name,
    is_active,
)

# Audit models
from .audit import SubscriptionAction, SubscriptionLogEntry

# Configuration models
from .plan import (
    CurrencyConfig,
    EntitlementConfig,
    ExtensionDefinition,
    PlanDefinition,
    PlansConfig,
    PubSubConfig,
    StripeConfig,
    SweeperConfig,
)

# Events and reporting
from .events import EntitlementChange
from .stats import SubscriptionStats

# Payment callbacks
from .payment import (
    CallbackOutcome,
    CallbackResult,
    MpesaCallbackBody,
    PaymentCallback,
    StripeEvent,
    SubscriptionPaymentResult,
)

__all__ = [
    # Subscription
    "Currency",
    "ExtensionDuration",
    "PlanType",
    "SubscriptionFilter",
    "SubscriptionRecord",
    "SubscriptionStatus",
    "get_plan_name",
    "is_active",
    # Audit
    "SubscriptionAction",
    "SubscriptionLogEntry",
    # Configuration
    "CurrencyConfig",
    "EntitlementConfig",
    "ExtensionDefinition",
    "PlanDefinition",
    "PlansConfig",
    "PubSubConfig",
    "StripeConfig",
    "SweeperConfig",
    # Events and reporting
    "EntitlementChange",
    "SubscriptionStats",
    # Payment callbacks
    "CallbackOutcome",
    "CallbackResult",
    "MpesaCallbackBody",
    "PaymentCallback",
    "StripeEvent",
    "SubscriptionPaymentResult",
]
