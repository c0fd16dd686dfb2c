"""Payment gateway callback API.

Implements:
- POST /payments/callback - Gateway-neutral payment result
- POST /payments/mpesa/callback - M-Pesa STK push result
- GET /payments/mpesa/callback - Reachability check for gateway setup
- POST /payments/stripe/webhook - Stripe checkout session events
"""

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request
from pydantic import ValidationError

from subscription_lifecycle.api.dependencies import (
    clock_dependency,
    matcher_dependency,
    raise_http_error,
    stripe_settings_dependency,
)
from subscription_lifecycle.logging_config import get_logger
from subscription_lifecycle.models import CallbackResult, MpesaCallbackBody, PaymentCallback, StripeConfig
from subscription_lifecycle.models.api_request import MpesaAcknowledgement, StripeWebhookAcknowledgement
from subscription_lifecycle.services.payment_callback import (
    PaymentCallbackMatcher,
    UnmatchedCallbackError,
    WebhookVerificationError,
    construct_stripe_event,
    parse_mpesa_callback,
)
from subscription_lifecycle.services.time_controller import TimeController

logger = get_logger(__name__)
router = APIRouter(tags=["Payments"], prefix="/payments")


@router.post(
    "/callback",
    response_model=CallbackResult,
    summary="Apply payment result",
)
async def payment_callback(
    callback: PaymentCallback,
    matcher: PaymentCallbackMatcher = Depends(matcher_dependency),
) -> CallbackResult:
    """Apply a payment result to the subscription created for its correlation id.

    Raises:
        404: No subscription carries the correlation id
    """
    try:
        return matcher.handle(callback)
    except UnmatchedCallbackError as e:
        raise_http_error(e, checkout_request_id=callback.correlation_id)


@router.post(
    "/mpesa/callback",
    response_model=MpesaAcknowledgement,
    summary="M-Pesa STK push callback",
)
async def mpesa_callback(
    payload: dict[str, Any] = Body(...),
    matcher: PaymentCallbackMatcher = Depends(matcher_dependency),
) -> MpesaAcknowledgement:
    """Receive an M-Pesa STK push result.

    Always acknowledges with ResultCode 0: Safaricom retries anything else,
    so processing failures are logged instead of returned.
    """
    try:
        body = MpesaCallbackBody.model_validate(payload)
    except ValidationError as e:
        logger.error("mpesa_callback_malformed", error=str(e))
        return MpesaAcknowledgement(ResultCode=0, ResultDesc="Accepted")

    callback = parse_mpesa_callback(body)
    logger.info(
        "mpesa_callback_received",
        checkout_request_id=callback.correlation_id,
        result_code=body.Body.stkCallback.ResultCode,
        result_desc=body.Body.stkCallback.ResultDesc,
    )

    try:
        result = matcher.handle(callback)
        logger.info(
            "mpesa_callback_processed",
            subscription_id=result.subscription_id,
            outcome=result.outcome.value,
        )
    except UnmatchedCallbackError:
        # already logged by the matcher
        pass
    except Exception as e:
        logger.error(
            "mpesa_callback_processing_failed",
            checkout_request_id=callback.correlation_id,
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )

    return MpesaAcknowledgement(ResultCode=0, ResultDesc="Accepted")


@router.get("/mpesa/callback", summary="M-Pesa callback reachability")
async def mpesa_callback_status(clock: TimeController = Depends(clock_dependency)) -> dict[str, str]:
    return {
        "status": "M-Pesa callback endpoint is active",
        "timestamp": clock.get_current_time().isoformat(),
    }


@router.post(
    "/stripe/webhook",
    response_model=StripeWebhookAcknowledgement,
    summary="Stripe checkout webhook",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    settings: StripeConfig = Depends(stripe_settings_dependency),
    matcher: PaymentCallbackMatcher = Depends(matcher_dependency),
) -> StripeWebhookAcknowledgement:
    """Receive a Stripe event for a checkout session.

    The signature is checked against the raw body. Processing failures
    after a valid event are logged and acknowledged, since Stripe keeps
    redelivering anything that is not 2xx.

    Raises:
        400: Missing or invalid signature, or malformed event
    """
    payload = await request.body()
    try:
        event = construct_stripe_event(payload, stripe_signature, settings)
    except WebhookVerificationError as e:
        logger.warning("stripe_webhook_rejected", error=str(e))
        raise HTTPException(status_code=400, detail={"error": "Invalid webhook", "message": str(e)})

    logger.info("stripe_webhook_received", event_id=event.id, event_type=event.type)

    try:
        result = matcher.handle_stripe_event(event)
    except UnmatchedCallbackError:
        return StripeWebhookAcknowledgement()
    except Exception as e:
        logger.error(
            "stripe_webhook_processing_failed",
            event_id=event.id,
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return StripeWebhookAcknowledgement()

    if result is None:
        return StripeWebhookAcknowledgement()
    logger.info(
        "stripe_webhook_processed",
        subscription_id=result.subscription_id,
        outcome=result.outcome.value,
    )
    return StripeWebhookAcknowledgement(outcome=result.outcome)
