"""Shared route dependencies and domain error mapping."""

from typing import NoReturn

from fastapi import HTTPException

from subscription_lifecycle.config import get_config
from subscription_lifecycle.logging_config import get_logger
from subscription_lifecycle.models import StripeConfig
from subscription_lifecycle.repositories.audit_log import AuditLog
from subscription_lifecycle.repositories.plan_catalog import PlanValidationError
from subscription_lifecycle.repositories.subscription_store import StorageError, SubscriptionNotFoundError
from subscription_lifecycle.services.lifecycle_engine import (
    InvalidSubscriptionStateError,
    LifecycleEngine,
    get_lifecycle_engine,
)
from subscription_lifecycle.services.payment_callback import (
    PaymentCallbackMatcher,
    UnmatchedCallbackError,
    get_payment_callback_matcher,
)
from subscription_lifecycle.services.stats_aggregator import StatsAggregator
from subscription_lifecycle.services.time_controller import TimeController

logger = get_logger(__name__)


def engine_dependency() -> LifecycleEngine:
    return get_lifecycle_engine()


def matcher_dependency() -> PaymentCallbackMatcher:
    return get_payment_callback_matcher()


def audit_log_dependency() -> AuditLog:
    return get_lifecycle_engine().audit_log


def clock_dependency() -> TimeController:
    return get_lifecycle_engine().clock


def stats_dependency() -> StatsAggregator:
    return StatsAggregator(subscription_store=get_lifecycle_engine().store)


def stripe_settings_dependency() -> StripeConfig:
    return get_config().stripe_settings


def raise_http_error(exc: Exception, **context) -> NoReturn:
    """Translate a domain exception into an HTTPException.

    PlanValidationError and other ValueErrors -> 400, not found -> 404,
    invalid state -> 409, storage -> 503. Anything else is re-raised for
    the global handler.
    """
    if isinstance(exc, (SubscriptionNotFoundError, UnmatchedCallbackError)):
        logger.warning("resource_not_found", error=str(exc), **context)
        raise HTTPException(status_code=404, detail={"error": "Not found", "message": str(exc)})
    if isinstance(exc, InvalidSubscriptionStateError):
        logger.warning("invalid_subscription_state", error=str(exc), **context)
        raise HTTPException(status_code=409, detail={"error": "Invalid state", "message": str(exc)})
    if isinstance(exc, (PlanValidationError, ValueError)):
        logger.warning("invalid_request", error=str(exc), **context)
        raise HTTPException(status_code=400, detail={"error": "Invalid request", "message": str(exc)})
    if isinstance(exc, StorageError):
        logger.error("storage_unavailable", error=str(exc), **context)
        raise HTTPException(status_code=503, detail={"error": "Storage unavailable", "message": str(exc)})
    raise exc
