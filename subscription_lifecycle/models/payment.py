"""Payment gateway callback models.

Only the fields the lifecycle engine consumes are modelled; the gateway
wire formats themselves are adapted in services/payment_callback.py.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from subscription_lifecycle.models.subscription import SubscriptionStatus


class PaymentCallback(BaseModel):
    """Gateway-neutral inbound payment result."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "correlationId": "ws_CO_01012025120000000000",
                "succeeded": True,
                "transactionId": "QKL1234XYZ",
                "amount": 2000,
                "payerPhone": "254700000000",
            }
        },
    )

    correlation_id: str = Field(..., alias="correlationId", min_length=1, description="checkout_request_id echoed by the gateway")
    succeeded: bool = Field(..., description="Whether the payment went through")
    transaction_id: Optional[str] = Field(None, alias="transactionId", description="Gateway receipt / transaction id")
    amount: Optional[float] = Field(None, description="Amount reported by the gateway")
    payer_phone: Optional[str] = Field(None, alias="payerPhone", description="Payer phone number")
    result_reason: Optional[str] = Field(None, alias="resultReason", description="Gateway result description")


class MpesaCallbackItem(BaseModel):
    Name: str
    Value: Any = None


class MpesaCallbackMetadata(BaseModel):
    Item: list[MpesaCallbackItem] = Field(default_factory=list)


class MpesaStkCallback(BaseModel):
    MerchantRequestID: Optional[str] = None
    CheckoutRequestID: str
    ResultCode: int
    ResultDesc: str = ""
    CallbackMetadata: Optional[MpesaCallbackMetadata] = None


class MpesaCallbackBodyContent(BaseModel):
    stkCallback: MpesaStkCallback


class MpesaCallbackBody(BaseModel):
    """M-Pesa STK push result callback, as posted by Safaricom."""

    Body: MpesaCallbackBodyContent


class StripeCheckoutSession(BaseModel):
    """The checkout session object carried by checkout.session.* events."""

    id: str
    payment_intent: Optional[str] = None
    amount_total: Optional[int] = Field(None, description="Total in the smallest currency unit (cents)")
    currency: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class StripeEventData(BaseModel):
    object: dict[str, Any]


class StripeEvent(BaseModel):
    """Stripe webhook event envelope. Only the fields used here are modelled."""

    id: str
    type: str
    data: StripeEventData

    def checkout_session(self) -> StripeCheckoutSession:
        return StripeCheckoutSession.model_validate(self.data.object)


class SubscriptionPaymentResult(BaseModel):
    """Payment result addressed to a subscription id rather than a correlation id.

    Produced by gateways that carry the subscription id in their own
    metadata, such as Stripe checkout sessions.
    """

    subscription_id: str = Field(..., min_length=1)
    succeeded: bool
    transaction_id: Optional[str] = None
    amount: Optional[float] = None
    result_reason: Optional[str] = None


class CallbackOutcome(str, Enum):
    """What a payment callback did to its subscription."""

    ACTIVATED = "activated"  # Pending subscription activated
    DUPLICATE = "duplicate"  # Repeat of an already applied success
    FAILED = "failed"  # Pending subscription marked failed
    IGNORED = "ignored"  # Late callback against a terminal subscription


class CallbackResult(BaseModel):
    """Result of matching and applying a payment callback."""

    outcome: CallbackOutcome
    subscription_id: str
    status: SubscriptionStatus
    message: str
