"""State change logging for subscriptions.

Tracks transitions with before/after values for debugging and auditing.
"""

from datetime import datetime
from typing import Any, Optional

from subscription_lifecycle.logging_config import get_logger

logger = get_logger(__name__)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def log_subscription_status_change(
    subscription_id: str,
    old_status: Any,
    new_status: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log subscription status change.

    Args:
        subscription_id: Subscription id
        old_status: Previous status value
        new_status: New status value
        reason: Reason for the change
        **extra_context: Additional context (user_id, admin_id, etc.)
    """
    logger.info(
        "subscription_status_changed",
        subscription_id=subscription_id,
        old_status=str(old_status),
        new_status=str(new_status),
        reason=reason,
        **extra_context,
    )


def log_end_date_change(
    subscription_id: str,
    old_end_date: Optional[datetime],
    new_end_date: Optional[datetime],
    reason: str,
    **extra_context: Any,
) -> None:
    """Log a change to the end of the paid period.

    Args:
        subscription_id: Subscription id
        old_end_date: Previous end date (None before activation)
        new_end_date: New end date
        reason: Reason for change (activation, extension, revocation)
        **extra_context: Additional context
    """
    shift_days = None
    if old_end_date is not None and new_end_date is not None:
        shift_days = (new_end_date - old_end_date).total_seconds() / 86400

    logger.info(
        "end_date_changed",
        subscription_id=subscription_id,
        old_end_date=_isoformat(old_end_date),
        new_end_date=_isoformat(new_end_date),
        shift_days=shift_days,
        reason=reason,
        **extra_context,
    )


def log_entitlement_change(
    user_id: str,
    is_subscribed: bool,
    subscription_id: Optional[str],
    subscription_end_date: Optional[datetime],
    **extra_context: Any,
) -> None:
    """Log an entitlement flag update handed to the propagator."""
    logger.info(
        "entitlement_changed",
        user_id=user_id,
        is_subscribed=is_subscribed,
        subscription_id=subscription_id,
        subscription_end_date=_isoformat(subscription_end_date),
        **extra_context,
    )
