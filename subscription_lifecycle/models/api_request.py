"""API request and response models for the HTTP surface."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from subscription_lifecycle.models.payment import CallbackOutcome
from subscription_lifecycle.models.stats import SubscriptionStats
from subscription_lifecycle.models.subscription import (
    Currency,
    ExtensionDuration,
    PlanType,
    SubscriptionRecord,
    SubscriptionStatus,
)


class CreateSubscriptionRequest(BaseModel):
    """Request to create a pending subscription before payment."""

    user_id: str = Field(..., min_length=1, description="Owning user identifier")
    email: str = Field(..., min_length=1, description="Owner email address")
    phone_number: str = Field(default="", description="Payer phone number")
    plan_type: PlanType = Field(..., description="Billing tier")
    currency: Currency = Field(..., description="Billing currency")
    checkout_request_id: Optional[str] = Field(None, description="Gateway correlation id issued at checkout")
    amount: Optional[int] = Field(None, description="Expected amount; must match the catalog price if given")

    class Config:
        json_schema_extra = {
            "example": {
                "user_id": "user-123",
                "email": "owner@example.com",
                "phone_number": "254700000000",
                "plan_type": "monthly",
                "currency": "KSH",
                "checkout_request_id": "ws_CO_01012025120000000000",
            }
        }


class SubscriptionStatusResponse(BaseModel):
    """Status poll response used by checkout pages after payment initiation."""

    id: str
    status: SubscriptionStatus
    transaction_id: Optional[str]
    plan_type: PlanType
    plan_name: str


class ActiveSubscriptionResponse(BaseModel):
    """Entitlement query result."""

    user_id: str
    is_subscribed: bool
    subscription: Optional[SubscriptionRecord] = None


class ExtendSubscriptionRequest(BaseModel):
    """Administrative extension."""

    duration: ExtensionDuration = Field(..., description="'1-month' or '2-months'")
    admin_id: str = Field(..., min_length=1, description="Acting administrator")
    reason: Optional[str] = Field(None, description="Free-text reason for the audit log")

    class Config:
        json_schema_extra = {
            "example": {
                "duration": "1-month",
                "admin_id": "admin-1",
                "reason": "Goodwill credit after outage",
            }
        }


class RevokeSubscriptionRequest(BaseModel):
    """Administrative revocation."""

    admin_id: str = Field(..., min_length=1, description="Acting administrator")
    reason: Optional[str] = Field(None, description="Free-text reason for the audit log")


class ActivateSubscriptionRequest(BaseModel):
    """Manual activation of a pending subscription (payment confirmed out of band)."""

    transaction_id: Optional[str] = Field(None, description="Receipt reference; generated when omitted")
    admin_id: Optional[str] = Field(None, description="Acting administrator")
    reason: Optional[str] = Field(None, description="Free-text reason for the audit log")


class SubscriptionActionResponse(BaseModel):
    """Response after an administrative action."""

    subscription: SubscriptionRecord
    message: str


class SubscriptionListResponse(BaseModel):
    """Administrative listing."""

    subscriptions: list[SubscriptionRecord]
    total: int
    stats: Optional[SubscriptionStats] = None


class SweepResponse(BaseModel):
    """Result of an on-demand expiry sweep."""

    expired_count: int
    swept_at: datetime


class MpesaAcknowledgement(BaseModel):
    """Acknowledgement body the M-Pesa gateway expects."""

    ResultCode: int = 0
    ResultDesc: str


class StripeWebhookAcknowledgement(BaseModel):
    """Acknowledgement returned to Stripe. Any 2xx stops redelivery."""

    received: bool = True
    outcome: Optional[CallbackOutcome] = None


class AdvanceTimeRequest(BaseModel):
    """Request to advance virtual time."""

    days: Optional[int] = Field(None, ge=0, description="Days to advance")
    hours: Optional[int] = Field(None, ge=0, description="Hours to advance")
    minutes: Optional[int] = Field(None, ge=0, description="Minutes to advance")


class AdvanceTimeResponse(BaseModel):
    """Response after advancing time."""

    previous_time: datetime
    current_time: datetime
    expired_count: int
    message: str


class CurrentTimeResponse(BaseModel):
    current_time: datetime
    offset_seconds: float


class ErrorResponse(BaseModel):
    """Error body used in HTTPException details."""

    error: str
    message: str
