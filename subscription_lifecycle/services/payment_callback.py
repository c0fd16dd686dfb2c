"""Payment gateway callback handling.

Responsibilities:
- Match an inbound callback to its subscription by correlation id
- Activate on success, mark failed on failure
- Tolerate duplicate and late callbacks
- Adapt the M-Pesa STK push callback to the gateway-neutral shape
- Verify and adapt Stripe checkout webhooks, which address the
  subscription by id instead of a correlation id
"""

from typing import Any, Optional, Union

import stripe
from pydantic import ValidationError

from subscription_lifecycle.logging_config import get_logger
from subscription_lifecycle.models import (
    CallbackOutcome,
    CallbackResult,
    MpesaCallbackBody,
    PaymentCallback,
    StripeConfig,
    StripeEvent,
    SubscriptionPaymentResult,
    SubscriptionRecord,
)
from subscription_lifecycle.repositories.subscription_store import SubscriptionStore
from subscription_lifecycle.services.lifecycle_engine import (
    InvalidSubscriptionStateError,
    LifecycleEngine,
    get_lifecycle_engine,
)

logger = get_logger(__name__)

MPESA_SUCCESS_RESULT_CODE = 0

STRIPE_CHECKOUT_COMPLETED = "checkout.session.completed"
STRIPE_CHECKOUT_EXPIRED = "checkout.session.expired"


class UnmatchedCallbackError(Exception):
    """Raised when a callback's correlation id matches no subscription."""

    pass


class WebhookVerificationError(ValueError):
    """Raised when a gateway webhook is unsigned, wrongly signed or malformed."""

    pass


class PaymentCallbackMatcher:
    """Applies gateway payment results to pending subscriptions."""

    def __init__(
        self,
        engine: Optional[LifecycleEngine] = None,
        subscription_store: Optional[SubscriptionStore] = None,
    ):
        self.engine = engine if engine is not None else get_lifecycle_engine()
        self.store = subscription_store if subscription_store is not None else self.engine.store

    def find_pending_by_correlation_id(self, checkout_request_id: str) -> Optional[SubscriptionRecord]:
        """Subscription created for this correlation id, whatever its current status."""
        return self.store.get_by_correlation_id(checkout_request_id)

    def handle(self, callback: PaymentCallback) -> CallbackResult:
        """Apply a gateway-neutral callback."""
        return self.handle_callback(
            callback.correlation_id,
            callback.succeeded,
            transaction_id=callback.transaction_id,
            reason=callback.result_reason,
            amount=callback.amount,
            payer_phone=callback.payer_phone,
        )

    def handle_callback(
        self,
        checkout_request_id: str,
        succeeded: bool,
        transaction_id: Optional[str] = None,
        reason: Optional[str] = None,
        amount: Optional[float] = None,
        payer_phone: Optional[str] = None,
    ) -> CallbackResult:
        """Match a callback to its subscription and apply the result.

        Args:
            checkout_request_id: Correlation id echoed by the gateway
            succeeded: Whether the payment went through
            transaction_id: Gateway receipt (falls back to CB-<checkout_request_id>)
            reason: Gateway result description
            amount: Amount reported by the gateway
            payer_phone: Payer phone reported by the gateway

        Returns:
            CallbackResult describing what happened

        Raises:
            UnmatchedCallbackError: If no subscription carries the correlation id
        """
        subscription = self.find_pending_by_correlation_id(checkout_request_id)
        if subscription is None:
            logger.error(
                "payment_callback_unmatched",
                checkout_request_id=checkout_request_id,
                succeeded=succeeded,
                transaction_id=transaction_id,
            )
            raise UnmatchedCallbackError(
                f"No subscription found for checkout_request_id: {checkout_request_id}"
            )

        logger.info(
            "payment_callback_received",
            subscription_id=subscription.id,
            checkout_request_id=checkout_request_id,
            succeeded=succeeded,
            status=subscription.status.value,
            payer_phone=payer_phone,
        )

        if amount is not None and amount != subscription.amount:
            logger.warning(
                "payment_amount_mismatch",
                subscription_id=subscription.id,
                expected_amount=subscription.amount,
                reported_amount=amount,
                currency=subscription.currency.value,
            )

        if succeeded:
            return self._apply_success(subscription, transaction_id or f"CB-{checkout_request_id}")
        return self._apply_failure(subscription, reason)

    def handle_subscription_result(self, result: SubscriptionPaymentResult) -> CallbackResult:
        """Apply a payment result addressed by subscription id.

        Same outcomes as handle_callback: activated, duplicate, failed or
        ignored.

        Raises:
            UnmatchedCallbackError: If the subscription does not exist
        """
        subscription = self.store.find_by_id(result.subscription_id)
        if subscription is None:
            logger.error(
                "payment_result_unmatched",
                subscription_id=result.subscription_id,
                succeeded=result.succeeded,
                transaction_id=result.transaction_id,
            )
            raise UnmatchedCallbackError(f"No subscription found with id: {result.subscription_id}")

        logger.info(
            "payment_result_received",
            subscription_id=subscription.id,
            succeeded=result.succeeded,
            status=subscription.status.value,
        )
        if result.amount is not None and result.amount != subscription.amount:
            logger.warning(
                "payment_amount_mismatch",
                subscription_id=subscription.id,
                expected_amount=subscription.amount,
                reported_amount=result.amount,
                currency=subscription.currency.value,
            )

        if result.succeeded:
            return self._apply_success(subscription, result.transaction_id or f"CB-{subscription.id}")
        return self._apply_failure(subscription, result.result_reason)

    def handle_stripe_event(self, event: StripeEvent) -> Optional[CallbackResult]:
        """Apply a Stripe checkout event. Returns None for events that change nothing."""
        result = parse_stripe_event(event)
        if result is None:
            return None
        return self.handle_subscription_result(result)

    def _apply_success(self, subscription: SubscriptionRecord, transaction_id: str) -> CallbackResult:
        try:
            activated, applied = self.engine.try_activate(subscription.id, transaction_id)
        except InvalidSubscriptionStateError as e:
            return self._ignored(subscription, str(e))

        if not applied:
            return CallbackResult(
                outcome=CallbackOutcome.DUPLICATE,
                subscription_id=activated.id,
                status=activated.status,
                message="Payment already applied",
            )
        return CallbackResult(
            outcome=CallbackOutcome.ACTIVATED,
            subscription_id=activated.id,
            status=activated.status,
            message="Subscription activated",
        )

    def _apply_failure(self, subscription: SubscriptionRecord, reason: Optional[str]) -> CallbackResult:
        try:
            failed = self.engine.mark_failed(subscription.id, reason=reason)
        except InvalidSubscriptionStateError as e:
            return self._ignored(subscription, str(e))

        return CallbackResult(
            outcome=CallbackOutcome.FAILED,
            subscription_id=failed.id,
            status=failed.status,
            message=reason or "Payment failed",
        )

    def _ignored(self, subscription: SubscriptionRecord, detail: str) -> CallbackResult:
        current = self.store.get_by_id(subscription.id)
        logger.warning(
            "payment_callback_ignored",
            subscription_id=subscription.id,
            status=current.status.value,
            detail=detail,
        )
        return CallbackResult(
            outcome=CallbackOutcome.IGNORED,
            subscription_id=current.id,
            status=current.status,
            message=f"Late callback ignored: {detail}",
        )


def _metadata_value(body: MpesaCallbackBody, name: str) -> Any:
    metadata = body.Body.stkCallback.CallbackMetadata
    if metadata is None:
        return None
    for item in metadata.Item:
        if item.Name == name:
            return item.Value
    return None


def parse_mpesa_callback(body: MpesaCallbackBody) -> PaymentCallback:
    """Convert an M-Pesa STK push result into a gateway-neutral callback.

    ResultCode 0 is success. The receipt number becomes the transaction id,
    falling back to MPESA-<CheckoutRequestID> when Safaricom omits it.
    """
    stk = body.Body.stkCallback
    succeeded = stk.ResultCode == MPESA_SUCCESS_RESULT_CODE

    receipt = _metadata_value(body, "MpesaReceiptNumber")
    amount = _metadata_value(body, "Amount")
    phone = _metadata_value(body, "PhoneNumber")

    return PaymentCallback(
        correlation_id=stk.CheckoutRequestID,
        succeeded=succeeded,
        transaction_id=(str(receipt) if receipt else f"MPESA-{stk.CheckoutRequestID}") if succeeded else None,
        amount=float(amount) if amount is not None else None,
        payer_phone=str(phone) if phone is not None else None,
        result_reason=stk.ResultDesc or None,
    )


def construct_stripe_event(
    payload: Union[bytes, str],
    signature: Optional[str],
    settings: StripeConfig,
) -> StripeEvent:
    """Verify a Stripe webhook signature and parse the event.

    Signature checks are skipped when no webhook secret is configured,
    which is only meant for local runs against the Stripe CLI.

    Raises:
        WebhookVerificationError: Missing or bad signature, or a malformed body
    """
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")

    if settings.webhook_secret:
        if not signature:
            raise WebhookVerificationError("Missing stripe-signature header")
        try:
            stripe.WebhookSignature.verify_header(
                payload, signature, settings.webhook_secret, tolerance=settings.tolerance_seconds
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(f"Webhook signature verification failed: {e}") from e
    else:
        logger.warning("stripe_signature_check_skipped", reason="no webhook secret configured")

    try:
        return StripeEvent.model_validate_json(payload)
    except ValidationError as e:
        raise WebhookVerificationError(f"Malformed Stripe event: {e}") from e


def parse_stripe_event(event: StripeEvent) -> Optional[SubscriptionPaymentResult]:
    """Map a Stripe checkout event to a payment result.

    checkout.session.completed activates the subscription named in the
    session metadata (transaction id STRIPE-<payment_intent or session id>);
    checkout.session.expired marks it failed. Every other event type, and a
    session without a subscriptionId, yields None.
    """
    if event.type not in (STRIPE_CHECKOUT_COMPLETED, STRIPE_CHECKOUT_EXPIRED):
        logger.info("stripe_event_unhandled", event_id=event.id, event_type=event.type)
        return None

    session = event.checkout_session()
    subscription_id = session.metadata.get("subscriptionId")
    if not subscription_id:
        logger.error("stripe_session_missing_subscription_id", event_id=event.id, session_id=session.id)
        return None

    if event.type == STRIPE_CHECKOUT_EXPIRED:
        return SubscriptionPaymentResult(
            subscription_id=subscription_id,
            succeeded=False,
            result_reason="Checkout session expired",
        )

    return SubscriptionPaymentResult(
        subscription_id=subscription_id,
        succeeded=True,
        transaction_id=f"STRIPE-{session.payment_intent or session.id}",
        # Stripe totals are in cents
        amount=session.amount_total / 100 if session.amount_total is not None else None,
    )


_matcher_instance: Optional[PaymentCallbackMatcher] = None


def get_payment_callback_matcher() -> PaymentCallbackMatcher:
    """Get global callback matcher instance (singleton)."""
    global _matcher_instance
    if _matcher_instance is None:
        _matcher_instance = PaymentCallbackMatcher()
    return _matcher_instance


def reset_payment_callback_matcher() -> None:
    global _matcher_instance
    _matcher_instance = None
