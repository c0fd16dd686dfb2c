"""Reporting models."""

from pydantic import BaseModel, Field

from subscription_lifecycle.models.subscription import Currency


class SubscriptionStats(BaseModel):
    """Revenue and status summary across all subscriptions."""

    total_revenue_by_currency: dict[Currency, int] = Field(..., description="Paid revenue per currency")
    unified_total: float = Field(..., description="All revenue converted to the unified currency (display only)")
    unified_currency: Currency = Field(default=Currency.KSH, description="Currency of unified_total")
    active_count: int = Field(default=0)
    expired_count: int = Field(default=0)
    pending_count: int = Field(default=0)
    cancelled_count: int = Field(default=0)
    failed_count: int = Field(default=0)
    total_subscriptions: int = Field(default=0)
