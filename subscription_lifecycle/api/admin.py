"""Administrative subscription API.

Implements:
- GET /admin/subscriptions - Filtered listing, optionally with stats
- GET /admin/subscriptions/stats - Revenue and status summary
- GET /admin/subscriptions/logs - Recent audit entries
- POST /admin/subscriptions/sweep - Run an expiry sweep now
- GET /admin/subscriptions/{subscription_id} - Single subscription
- GET /admin/subscriptions/{subscription_id}/logs - Audit trail of one subscription
- POST /admin/subscriptions/{subscription_id}/extend - Extend paid period
- POST /admin/subscriptions/{subscription_id}/revoke - Cancel immediately
- POST /admin/subscriptions/{subscription_id}/activate - Manual activation
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from subscription_lifecycle.api.dependencies import (
    audit_log_dependency,
    engine_dependency,
    raise_http_error,
    stats_dependency,
)
from subscription_lifecycle.logging_config import get_logger
from subscription_lifecycle.models import (
    Currency,
    SubscriptionFilter,
    SubscriptionLogEntry,
    SubscriptionRecord,
    SubscriptionStats,
    SubscriptionStatus,
)
from subscription_lifecycle.models.api_request import (
    ActivateSubscriptionRequest,
    ExtendSubscriptionRequest,
    RevokeSubscriptionRequest,
    SubscriptionActionResponse,
    SubscriptionListResponse,
    SweepResponse,
)
from subscription_lifecycle.repositories.audit_log import AuditLog
from subscription_lifecycle.repositories.plan_catalog import PlanValidationError
from subscription_lifecycle.repositories.subscription_store import StorageError, SubscriptionNotFoundError
from subscription_lifecycle.services.lifecycle_engine import InvalidSubscriptionStateError, LifecycleEngine
from subscription_lifecycle.services.stats_aggregator import StatsAggregator

logger = get_logger(__name__)
router = APIRouter(tags=["Admin API"], prefix="/admin/subscriptions")

_ACTION_ERRORS = (
    SubscriptionNotFoundError,
    InvalidSubscriptionStateError,
    PlanValidationError,
    StorageError,
)


@router.get("", response_model=SubscriptionListResponse, summary="List subscriptions")
async def list_subscriptions(
    status: Optional[SubscriptionStatus] = Query(None, description="Exact status"),
    currency: Optional[Currency] = Query(None, description="Exact currency"),
    email: Optional[str] = Query(None, description="Case-insensitive email substring"),
    start_date_from: Optional[datetime] = Query(None, description="Paid period started at or after"),
    start_date_to: Optional[datetime] = Query(None, description="Paid period started at or before"),
    include_stats: bool = Query(False, description="Attach revenue and status summary"),
    engine: LifecycleEngine = Depends(engine_dependency),
    stats: StatsAggregator = Depends(stats_dependency),
) -> SubscriptionListResponse:
    subscription_filter = SubscriptionFilter(
        status=status,
        currency=currency,
        email=email,
        start_date_from=start_date_from,
        start_date_to=start_date_to,
    )
    subscriptions = engine.list_subscriptions(subscription_filter)

    logger.info(
        "admin_list_subscriptions",
        status=status.value if status else None,
        currency=currency.value if currency else None,
        total=len(subscriptions),
    )
    return SubscriptionListResponse(
        subscriptions=subscriptions,
        total=len(subscriptions),
        stats=stats.compute_stats() if include_stats else None,
    )


@router.get("/stats", response_model=SubscriptionStats, summary="Subscription statistics")
async def get_stats(stats: StatsAggregator = Depends(stats_dependency)) -> SubscriptionStats:
    return stats.compute_stats()


@router.get("/logs", response_model=list[SubscriptionLogEntry], summary="Recent audit entries")
async def list_logs(
    limit: int = Query(100, ge=1, le=1000),
    audit_log: AuditLog = Depends(audit_log_dependency),
) -> list[SubscriptionLogEntry]:
    return audit_log.list_all(limit=limit)


@router.post("/sweep", response_model=SweepResponse, summary="Run expiry sweep")
async def sweep(engine: LifecycleEngine = Depends(engine_dependency)) -> SweepResponse:
    """Expire every active subscription whose paid period has elapsed."""
    now = engine.clock.get_current_time()
    expired_count = engine.sweep_expired(now)
    return SweepResponse(expired_count=expired_count, swept_at=now)


@router.get("/{subscription_id}", response_model=SubscriptionRecord, summary="Get subscription")
async def get_subscription(
    subscription_id: str,
    engine: LifecycleEngine = Depends(engine_dependency),
) -> SubscriptionRecord:
    try:
        return engine.get_subscription(subscription_id)
    except SubscriptionNotFoundError as e:
        raise_http_error(e, subscription_id=subscription_id)


@router.get(
    "/{subscription_id}/logs",
    response_model=list[SubscriptionLogEntry],
    summary="Subscription audit trail",
)
async def get_subscription_logs(
    subscription_id: str,
    engine: LifecycleEngine = Depends(engine_dependency),
    audit_log: AuditLog = Depends(audit_log_dependency),
) -> list[SubscriptionLogEntry]:
    try:
        engine.get_subscription(subscription_id)
    except SubscriptionNotFoundError as e:
        raise_http_error(e, subscription_id=subscription_id)
    return audit_log.list_by_subscription(subscription_id)


@router.post(
    "/{subscription_id}/extend",
    response_model=SubscriptionActionResponse,
    summary="Extend subscription",
)
async def extend_subscription(
    subscription_id: str,
    request: ExtendSubscriptionRequest,
    engine: LifecycleEngine = Depends(engine_dependency),
) -> SubscriptionActionResponse:
    """Extend a subscription by one or two months.

    Raises:
        404: Subscription not found
        409: Subscription was never paid (pending or failed)
    """
    logger.info(
        "admin_extend_request",
        subscription_id=subscription_id,
        admin_id=request.admin_id,
        duration=request.duration.value,
    )
    try:
        subscription = engine.extend(
            subscription_id,
            request.duration,
            admin_id=request.admin_id,
            reason=request.reason,
        )
    except _ACTION_ERRORS as e:
        raise_http_error(e, subscription_id=subscription_id, admin_id=request.admin_id)

    return SubscriptionActionResponse(
        subscription=subscription,
        message=f"Subscription extended by {request.duration.value}",
    )


@router.post(
    "/{subscription_id}/revoke",
    response_model=SubscriptionActionResponse,
    summary="Revoke subscription",
)
async def revoke_subscription(
    subscription_id: str,
    request: RevokeSubscriptionRequest,
    engine: LifecycleEngine = Depends(engine_dependency),
) -> SubscriptionActionResponse:
    """Cancel a subscription with immediate effect.

    Raises:
        404: Subscription not found
        409: Subscription already cancelled, or never paid
    """
    logger.info("admin_revoke_request", subscription_id=subscription_id, admin_id=request.admin_id)
    try:
        subscription = engine.revoke(subscription_id, admin_id=request.admin_id, reason=request.reason)
    except _ACTION_ERRORS as e:
        raise_http_error(e, subscription_id=subscription_id, admin_id=request.admin_id)

    return SubscriptionActionResponse(subscription=subscription, message="Subscription revoked")


@router.post(
    "/{subscription_id}/activate",
    response_model=SubscriptionActionResponse,
    summary="Activate pending subscription",
)
async def activate_subscription(
    subscription_id: str,
    request: ActivateSubscriptionRequest,
    engine: LifecycleEngine = Depends(engine_dependency),
) -> SubscriptionActionResponse:
    """Activate a pending subscription whose payment was confirmed out of band.

    A MANUAL-<millis> transaction id is generated when none is given.

    Raises:
        404: Subscription not found
        409: Subscription is not pending
    """
    now = engine.clock.get_current_time()
    transaction_id = request.transaction_id or f"MANUAL-{int(now.timestamp() * 1000)}"

    logger.info(
        "admin_activate_request",
        subscription_id=subscription_id,
        admin_id=request.admin_id,
        transaction_id=transaction_id,
    )
    try:
        subscription = engine.activate(
            subscription_id,
            transaction_id,
            admin_id=request.admin_id,
            reason=request.reason or "manual activation",
        )
    except _ACTION_ERRORS as e:
        raise_http_error(e, subscription_id=subscription_id, admin_id=request.admin_id)

    return SubscriptionActionResponse(subscription=subscription, message="Subscription activated")
