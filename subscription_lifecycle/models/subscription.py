"""Subscription state and lifecycle models.

Includes subscription statuses, plan/currency enums and the persisted
subscription record.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status."""

    PENDING = "pending"  # Created, waiting for payment confirmation
    ACTIVE = "active"  # Paid period in progress
    EXPIRED = "expired"  # Paid period elapsed
    FAILED = "failed"  # Payment declined (terminal)
    CANCELLED = "cancelled"  # Revoked by an administrator


class PlanType(str, Enum):
    """Billing tier."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class Currency(str, Enum):
    """Supported billing currencies."""

    KSH = "KSH"
    USD = "USD"


class ExtensionDuration(str, Enum):
    """Administrative extension lengths."""

    ONE_MONTH = "1-month"
    TWO_MONTHS = "2-months"


def get_plan_name(plan_type: PlanType) -> str:
    """Display label for a plan type."""
    return "1 year Pro Plan" if plan_type == PlanType.YEARLY else "1 month Pro Plan"


class SubscriptionRecord(BaseModel):
    """Persisted subscription record.

    Every transition is a mutation of the same record; records are never deleted.
    """

    id: str = Field(..., description="Opaque unique subscription identifier")

    # Owner identity
    user_id: str = Field(..., description="Owning user identifier")
    email: str = Field(..., description="Owner email address")
    phone_number: str = Field(default="", description="Owner phone number (payer for M-Pesa)")

    # Plan
    plan_type: PlanType = Field(..., description="Billing tier")
    plan_name: str = Field(..., description="Display label derived from plan_type")
    amount: int = Field(..., gt=0, description="Price paid, in whole currency units")
    currency: Currency = Field(..., description="Billing currency")

    # State
    status: SubscriptionStatus = Field(default=SubscriptionStatus.PENDING, description="Lifecycle status")
    start_date: Optional[datetime] = Field(None, description="Start of the current paid period")
    end_date: Optional[datetime] = Field(None, description="End of the current paid period")

    # Payment correlation
    transaction_id: Optional[str] = Field(None, description="Gateway transaction id set on activation")
    checkout_request_id: Optional[str] = Field(None, description="Correlation id echoed by the gateway callback")

    # Bookkeeping
    created_at: datetime = Field(..., description="Creation time")
    updated_at: datetime = Field(..., description="Last modification time")
    revision: int = Field(default=0, ge=0, description="Store write sequence of the last persisted change")

    def set_status(self, new_status: SubscriptionStatus, reason: Optional[str] = None) -> None:
        """Change status and log the transition.

        Args:
            new_status: Status to transition to
            reason: Reason for the change
        """
        from subscription_lifecycle.state_logger import log_subscription_status_change

        old_status = self.status
        if old_status != new_status:
            self.status = new_status
            log_subscription_status_change(
                subscription_id=self.id,
                old_status=old_status.value,
                new_status=new_status.value,
                reason=reason,
                user_id=self.user_id,
            )

    def set_end_date(self, new_end_date: datetime, reason: str) -> None:
        """Move the end of the paid period and log the change.

        Args:
            new_end_date: New end date
            reason: Reason for the change (activation, extension, revocation)
        """
        from subscription_lifecycle.state_logger import log_end_date_change

        old_end_date = self.end_date
        self.end_date = new_end_date
        log_end_date_change(
            subscription_id=self.id,
            old_end_date=old_end_date,
            new_end_date=new_end_date,
            reason=reason,
            user_id=self.user_id,
        )

    def check_invariants(self) -> list[str]:
        """Return the list of violated status/date invariants (empty when consistent)."""
        violations = []
        dates_unset = (
            self.start_date is None and self.end_date is None and self.transaction_id is None
        )

        if self.status == SubscriptionStatus.PENDING and not dates_unset:
            violations.append("pending subscription carries dates or a transaction id")
        # failed records never received dates: the payment was declined while pending
        if self.status not in (SubscriptionStatus.PENDING, SubscriptionStatus.FAILED) and dates_unset:
            violations.append(f"{self.status.value} subscription has no dates and no transaction id")
        if self.status == SubscriptionStatus.ACTIVE:
            if self.start_date is None or self.end_date is None:
                violations.append("active subscription is missing start or end date")
            elif self.end_date <= self.start_date:
                violations.append("active subscription ends before it starts")
        return violations

    class Config:
        json_schema_extra = {
            "example": {
                "id": "sub_a1b2c3d4e5f6a7b8_1700000000000",
                "user_id": "user-123",
                "email": "owner@example.com",
                "phone_number": "254700000000",
                "plan_type": "monthly",
                "plan_name": "1 month Pro Plan",
                "amount": 2000,
                "currency": "KSH",
                "status": "active",
                "start_date": "2025-01-01T00:00:00Z",
                "end_date": "2025-01-31T00:00:00Z",
                "transaction_id": "QKL1234XYZ",
                "checkout_request_id": "ws_CO_01012025120000000000",
                "created_at": "2025-01-01T00:00:00Z",
                "updated_at": "2025-01-01T00:00:00Z",
            }
        }


def is_active(subscription: SubscriptionRecord, now: datetime) -> bool:
    """Entitlement predicate: active status and the paid period has not elapsed."""
    return (
        subscription.status == SubscriptionStatus.ACTIVE
        and subscription.end_date is not None
        and now < subscription.end_date
    )


class SubscriptionFilter(BaseModel):
    """Filter for administrative listing and the expiry sweep."""

    status: Optional[SubscriptionStatus] = Field(None, description="Exact status match")
    currency: Optional[Currency] = Field(None, description="Exact currency match")
    email: Optional[str] = Field(None, description="Case-insensitive email substring")
    user_id: Optional[str] = Field(None, description="Exact owner match")
    end_before: Optional[datetime] = Field(None, description="end_date strictly before this instant")
    start_date_from: Optional[datetime] = Field(None, description="start_date at or after this instant")
    start_date_to: Optional[datetime] = Field(None, description="start_date at or before this instant")

    def matches(self, subscription: SubscriptionRecord) -> bool:
        """Check whether a subscription satisfies every set predicate."""
        if self.status is not None and subscription.status != self.status:
            return False
        if self.currency is not None and subscription.currency != self.currency:
            return False
        if self.user_id is not None and subscription.user_id != self.user_id:
            return False
        if self.email and self.email.lower() not in subscription.email.lower():
            return False
        if self.end_before is not None:
            if subscription.end_date is None or not subscription.end_date < self.end_before:
                return False
        if self.start_date_from is not None or self.start_date_to is not None:
            if subscription.start_date is None:
                return False
            if self.start_date_from is not None and subscription.start_date < self.start_date_from:
                return False
            if self.start_date_to is not None and subscription.start_date > self.start_date_to:
                return False
        return True
