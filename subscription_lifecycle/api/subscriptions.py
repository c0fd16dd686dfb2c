"""User-facing subscription API.

Implements:
- POST /subscriptions - Create a pending subscription at checkout
- GET /subscriptions/{subscription_id}/status - Poll payment status
- GET /subscriptions/users/{user_id} - List a user's subscriptions
- GET /subscriptions/users/{user_id}/active - Entitlement check
"""

from fastapi import APIRouter, Depends

from subscription_lifecycle.api.dependencies import engine_dependency, raise_http_error
from subscription_lifecycle.logging_config import get_logger
from subscription_lifecycle.models import SubscriptionRecord
from subscription_lifecycle.models.api_request import (
    ActiveSubscriptionResponse,
    CreateSubscriptionRequest,
    SubscriptionStatusResponse,
)
from subscription_lifecycle.repositories.plan_catalog import PlanValidationError
from subscription_lifecycle.repositories.subscription_store import SubscriptionNotFoundError
from subscription_lifecycle.services.lifecycle_engine import LifecycleEngine

logger = get_logger(__name__)
router = APIRouter(tags=["Subscriptions"], prefix="/subscriptions")


@router.post(
    "",
    response_model=SubscriptionRecord,
    status_code=201,
    summary="Create pending subscription",
)
async def create_subscription(
    request: CreateSubscriptionRequest,
    engine: LifecycleEngine = Depends(engine_dependency),
) -> SubscriptionRecord:
    """Create a pending subscription when a payment is initiated.

    The amount is taken from the plan catalog; a supplied amount must match it.

    Raises:
        400: Unknown plan/currency, amount mismatch or duplicate checkout id
    """
    logger.info(
        "create_subscription_request",
        user_id=request.user_id,
        plan_type=request.plan_type.value,
        currency=request.currency.value,
    )
    try:
        return engine.create_pending(
            user_id=request.user_id,
            email=request.email,
            phone_number=request.phone_number,
            plan_type=request.plan_type,
            currency=request.currency,
            checkout_request_id=request.checkout_request_id,
            amount=request.amount,
        )
    except (PlanValidationError, ValueError) as e:
        raise_http_error(e, user_id=request.user_id)


@router.get(
    "/{subscription_id}/status",
    response_model=SubscriptionStatusResponse,
    summary="Get payment status",
)
async def get_subscription_status(
    subscription_id: str,
    engine: LifecycleEngine = Depends(engine_dependency),
) -> SubscriptionStatusResponse:
    try:
        subscription = engine.get_subscription(subscription_id)
    except SubscriptionNotFoundError as e:
        raise_http_error(e, subscription_id=subscription_id)

    return SubscriptionStatusResponse(
        id=subscription.id,
        status=subscription.status,
        transaction_id=subscription.transaction_id,
        plan_type=subscription.plan_type,
        plan_name=subscription.plan_name,
    )


@router.get(
    "/users/{user_id}",
    response_model=list[SubscriptionRecord],
    summary="List user subscriptions",
)
async def list_user_subscriptions(
    user_id: str,
    engine: LifecycleEngine = Depends(engine_dependency),
) -> list[SubscriptionRecord]:
    """All subscriptions of a user, newest first."""
    return engine.list_user_subscriptions(user_id)


@router.get(
    "/users/{user_id}/active",
    response_model=ActiveSubscriptionResponse,
    summary="Get active subscription",
)
async def get_active_subscription(
    user_id: str,
    engine: LifecycleEngine = Depends(engine_dependency),
) -> ActiveSubscriptionResponse:
    subscription = engine.get_active_subscription(user_id)
    return ActiveSubscriptionResponse(
        user_id=user_id,
        is_subscribed=subscription is not None,
        subscription=subscription,
    )
