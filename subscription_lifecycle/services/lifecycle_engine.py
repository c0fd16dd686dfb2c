"""Subscription lifecycle state machine.

Responsibilities:
- Create pending subscriptions at payment initiation
- Activate on payment success, mark failed on payment failure
- Administrative extend and revoke
- Expire subscriptions whose paid period has elapsed
- Record every action in the audit log and propagate entitlement changes

Transitions out of pending and active that can race (activation, failure
marking, expiry) are conditional writes guarded by the prior status. Extend
and revoke are last-write-wins.
"""

from datetime import datetime
from typing import List, Optional, Tuple, Union

from subscription_lifecycle.logging_config import get_logger
from subscription_lifecycle.models import (
    Currency,
    ExtensionDuration,
    PlanType,
    SubscriptionAction,
    SubscriptionFilter,
    SubscriptionLogEntry,
    SubscriptionRecord,
    SubscriptionStatus,
    is_active,
)
from subscription_lifecycle.repositories.audit_log import AuditLog, get_audit_log
from subscription_lifecycle.repositories.plan_catalog import PlanCatalog, get_plan_catalog
from subscription_lifecycle.repositories.subscription_store import (
    SubscriptionStore,
    get_subscription_store,
)
from subscription_lifecycle.services.entitlement import EntitlementNotifier, get_entitlement_notifier
from subscription_lifecycle.services.time_controller import TimeController, get_time_controller
from subscription_lifecycle.state_logger import log_end_date_change, log_subscription_status_change
from subscription_lifecycle.utils.ids import generate_log_entry_id, generate_subscription_id

logger = get_logger(__name__)


class SubscriptionError(Exception):
    """Base exception for subscription errors."""

    pass


class InvalidSubscriptionStateError(SubscriptionError):
    """Raised when an operation is invalid for the current subscription state."""

    pass


class LifecycleEngine:
    """Subscription lifecycle management engine.

    Owns every status and date change of a subscription record. Integrates
    with SubscriptionStore for persistence, PlanCatalog for prices and
    durations, AuditLog for the action trail and EntitlementNotifier for
    user profile flags.
    """

    def __init__(
        self,
        subscription_store: Optional[SubscriptionStore] = None,
        plan_catalog: Optional[PlanCatalog] = None,
        audit_log: Optional[AuditLog] = None,
        entitlements: Optional[EntitlementNotifier] = None,
        clock: Optional[TimeController] = None,
    ):
        """Initialize lifecycle engine.

        Args:
            subscription_store: Subscription storage (defaults to global instance)
            plan_catalog: Plan catalog (defaults to global instance)
            audit_log: Audit log (defaults to global instance)
            entitlements: Entitlement notifier (defaults to global instance)
            clock: Time source (defaults to global time controller)
        """
        self.store = subscription_store if subscription_store is not None else get_subscription_store()
        self.catalog = plan_catalog if plan_catalog is not None else get_plan_catalog()
        self.audit_log = audit_log if audit_log is not None else get_audit_log()
        self.entitlements = entitlements if entitlements is not None else get_entitlement_notifier()
        self.clock = clock if clock is not None else get_time_controller()

        logger.info("lifecycle_engine_initialized")

    def _now(self) -> datetime:
        return self.clock.get_current_time()

    def _audit(
        self,
        subscription: SubscriptionRecord,
        action: SubscriptionAction,
        admin_id: Optional[str] = None,
        reason: Optional[str] = None,
        **details,
    ) -> None:
        """Append an audit entry. A failed write is logged, never raised."""
        try:
            self.audit_log.append(
                SubscriptionLogEntry(
                    id=generate_log_entry_id(),
                    subscription_id=subscription.id,
                    action=action,
                    admin_id=admin_id,
                    reason=reason,
                    details=details,
                    created_at=self._now(),
                )
            )
        except Exception as e:
            logger.error(
                "audit_append_failed",
                subscription_id=subscription.id,
                action=action.value,
                error=str(e),
                exc_info=True,
            )

    def _grant(self, subscription: SubscriptionRecord) -> None:
        self.entitlements.notify(
            subscription.user_id,
            True,
            subscription_id=subscription.id,
            subscription_end_date=subscription.end_date,
            revision=subscription.revision,
        )

    def _withdraw(self, subscription: SubscriptionRecord) -> None:
        self.entitlements.notify(subscription.user_id, False, revision=subscription.revision)

    def create_pending(
        self,
        user_id: str,
        email: str,
        phone_number: str,
        plan_type: Union[PlanType, str],
        currency: Union[Currency, str],
        checkout_request_id: Optional[str] = None,
        amount: Optional[int] = None,
    ) -> SubscriptionRecord:
        """Create a pending subscription when a payment is initiated.

        Args:
            user_id: Owning user
            email: Owner email
            phone_number: Payer phone number
            plan_type: Billing tier
            currency: Billing currency
            checkout_request_id: Gateway correlation id, if already issued
            amount: Amount the caller expects to charge; must match the catalog

        Returns:
            Created SubscriptionRecord in pending status

        Raises:
            PlanValidationError: If plan, currency or amount is not in the catalog
            ValueError: If the checkout_request_id is already in use
        """
        price = self.catalog.validate(plan_type, currency, amount)
        plan_type = PlanType(plan_type)
        now = self._now()

        subscription = SubscriptionRecord(
            id=generate_subscription_id(),
            user_id=user_id,
            email=email,
            phone_number=phone_number or "",
            plan_type=plan_type,
            plan_name=self.catalog.plan_name(plan_type),
            amount=price,
            currency=Currency(currency),
            status=SubscriptionStatus.PENDING,
            checkout_request_id=checkout_request_id,
            created_at=now,
            updated_at=now,
        )
        self.store.add(subscription)

        logger.info(
            "subscription_created",
            subscription_id=subscription.id,
            user_id=user_id,
            plan_type=plan_type.value,
            currency=subscription.currency.value,
            amount=price,
            checkout_request_id=checkout_request_id,
        )
        self._audit(
            subscription,
            SubscriptionAction.CREATE,
            plan_type=plan_type.value,
            amount=price,
            currency=subscription.currency.value,
        )
        return subscription

    def activate(
        self,
        subscription_id: str,
        transaction_id: str,
        admin_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> SubscriptionRecord:
        """Activate a pending subscription after a successful payment.

        Idempotent for a repeated transaction id: an already active record
        carrying the same transaction id is returned unchanged.

        Args:
            subscription_id: Subscription to activate
            transaction_id: Gateway transaction id
            admin_id: Set when an administrator activates manually
            reason: Reason for manual activation

        Returns:
            Active SubscriptionRecord

        Raises:
            SubscriptionNotFoundError: If id not found
            InvalidSubscriptionStateError: If not pending, or active under another transaction
        """
        subscription, _ = self.try_activate(subscription_id, transaction_id, admin_id=admin_id, reason=reason)
        return subscription

    def try_activate(
        self,
        subscription_id: str,
        transaction_id: str,
        admin_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Tuple[SubscriptionRecord, bool]:
        """Same as activate, also reporting whether this call made the transition.

        Returns:
            (active record, True) if this call activated it, (record, False)
            if the same transaction had already been applied

        Raises:
            SubscriptionNotFoundError: If id not found
            InvalidSubscriptionStateError: If not pending, or active under another transaction
        """
        subscription = self.store.get_by_id(subscription_id)

        if subscription.status == SubscriptionStatus.ACTIVE and subscription.transaction_id == transaction_id:
            logger.info(
                "subscription_activation_duplicate",
                subscription_id=subscription_id,
                transaction_id=transaction_id,
            )
            return subscription, False

        if subscription.status != SubscriptionStatus.PENDING:
            raise InvalidSubscriptionStateError(
                f"Cannot activate subscription in {subscription.status.value} state"
            )

        now = self._now()
        subscription.start_date = now
        subscription.end_date = now + self.catalog.duration(subscription.plan_type)
        subscription.transaction_id = transaction_id
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.updated_at = now

        if not self.store.update_if_status(subscription, SubscriptionStatus.PENDING):
            # another writer moved it out of pending first
            winner = self.store.get_by_id(subscription_id)
            if winner.status == SubscriptionStatus.ACTIVE and winner.transaction_id == transaction_id:
                logger.info(
                    "subscription_activation_race_lost",
                    subscription_id=subscription_id,
                    transaction_id=transaction_id,
                )
                return winner, False
            raise InvalidSubscriptionStateError(
                f"Cannot activate subscription in {winner.status.value} state"
            )

        log_subscription_status_change(
            subscription_id, SubscriptionStatus.PENDING.value, SubscriptionStatus.ACTIVE.value,
            reason="payment confirmed", user_id=subscription.user_id,
        )
        log_end_date_change(subscription_id, None, subscription.end_date, reason="activation")
        logger.info(
            "subscription_activated",
            subscription_id=subscription_id,
            user_id=subscription.user_id,
            transaction_id=transaction_id,
            end_date=subscription.end_date.isoformat(),
            admin_id=admin_id,
        )
        self._audit(
            subscription,
            SubscriptionAction.ACTIVATE,
            admin_id=admin_id,
            reason=reason,
            transaction_id=transaction_id,
            end_date=subscription.end_date.isoformat(),
        )
        self._grant(subscription)
        return subscription, True

    def mark_failed(self, subscription_id: str, reason: Optional[str] = None) -> SubscriptionRecord:
        """Mark a pending subscription failed after a declined payment.

        Raises:
            SubscriptionNotFoundError: If id not found
            InvalidSubscriptionStateError: If the subscription already left pending
        """
        subscription = self.store.get_by_id(subscription_id)

        if subscription.status == SubscriptionStatus.FAILED:
            return subscription
        if subscription.status != SubscriptionStatus.PENDING:
            raise InvalidSubscriptionStateError(
                f"Cannot mark subscription failed in {subscription.status.value} state"
            )

        subscription.status = SubscriptionStatus.FAILED
        subscription.updated_at = self._now()

        if not self.store.update_if_status(subscription, SubscriptionStatus.PENDING):
            winner = self.store.get_by_id(subscription_id)
            if winner.status == SubscriptionStatus.FAILED:
                return winner
            raise InvalidSubscriptionStateError(
                f"Cannot mark subscription failed in {winner.status.value} state"
            )

        log_subscription_status_change(
            subscription_id, SubscriptionStatus.PENDING.value, SubscriptionStatus.FAILED.value,
            reason=reason or "payment failed", user_id=subscription.user_id,
        )
        logger.info(
            "subscription_payment_failed",
            subscription_id=subscription_id,
            user_id=subscription.user_id,
            reason=reason,
        )
        return subscription

    def extend(
        self,
        subscription_id: str,
        duration: Union[ExtensionDuration, str],
        admin_id: str,
        reason: Optional[str] = None,
    ) -> SubscriptionRecord:
        """Administratively extend a subscription's paid period.

        The extension is added to the later of the current end date and now,
        so a lapsed subscription restarts from now. Reactivates expired and
        cancelled subscriptions.

        Raises:
            SubscriptionNotFoundError: If id not found
            PlanValidationError: If duration is not a configured extension
            InvalidSubscriptionStateError: If the subscription was never paid
        """
        extension = self.catalog.extension_duration(duration)
        subscription = self.store.get_by_id(subscription_id)

        if subscription.status not in (
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.EXPIRED,
            SubscriptionStatus.CANCELLED,
        ):
            raise InvalidSubscriptionStateError(
                f"Cannot extend subscription in {subscription.status.value} state"
            )
        if subscription.start_date is None:
            # cancelled before payment
            raise InvalidSubscriptionStateError(
                f"Cannot extend subscription {subscription_id}, it was never paid"
            )

        now = self._now()
        previous_status = subscription.status
        previous_end_date = subscription.end_date
        base = max(previous_end_date or now, now)

        if previous_status != SubscriptionStatus.ACTIVE:
            subscription.start_date = now
        subscription.set_end_date(base + extension, reason="extension")
        subscription.set_status(SubscriptionStatus.ACTIVE, reason=f"extended by {admin_id}")
        subscription.updated_at = now
        self.store.update(subscription)

        logger.info(
            "subscription_extended",
            subscription_id=subscription_id,
            user_id=subscription.user_id,
            admin_id=admin_id,
            duration=str(ExtensionDuration(duration).value),
            previous_status=previous_status.value,
            end_date=subscription.end_date.isoformat(),
        )
        self._audit(
            subscription,
            SubscriptionAction.EXTEND,
            admin_id=admin_id,
            reason=reason,
            duration=ExtensionDuration(duration).value,
            previous_status=previous_status.value,
            previous_end_date=previous_end_date.isoformat() if previous_end_date else None,
            new_end_date=subscription.end_date.isoformat(),
        )
        self._grant(subscription)
        return subscription

    def revoke(self, subscription_id: str, admin_id: str, reason: Optional[str] = None) -> SubscriptionRecord:
        """Administratively cancel a subscription, effective immediately.

        Any status but cancelled can be revoked. A pending or failed record
        keeps an unset start_date and gets end_date = now; a later payment
        callback for it is ignored and extend refuses it.

        Raises:
            SubscriptionNotFoundError: If id not found
            InvalidSubscriptionStateError: If the subscription is already cancelled
        """
        subscription = self.store.get_by_id(subscription_id)

        if subscription.status == SubscriptionStatus.CANCELLED:
            raise InvalidSubscriptionStateError(
                f"Cannot revoke subscription in {subscription.status.value} state"
            )

        now = self._now()
        previous_status = subscription.status
        was_paid = subscription.start_date is not None
        seen_revision = subscription.revision
        if subscription.end_date is None or subscription.end_date > now:
            subscription.set_end_date(now, reason="revocation")
        subscription.set_status(SubscriptionStatus.CANCELLED, reason=reason or f"revoked by {admin_id}")
        subscription.updated_at = now
        if was_paid:
            self.store.update(subscription)
        elif not self.store.update_if_status(subscription, previous_status, expected_revision=seen_revision):
            # a payment callback moved it first, revoke the new state
            return self.revoke(subscription_id, admin_id, reason)

        logger.info(
            "subscription_revoked",
            subscription_id=subscription_id,
            user_id=subscription.user_id,
            admin_id=admin_id,
            previous_status=previous_status.value,
        )
        self._audit(
            subscription,
            SubscriptionAction.REVOKE,
            admin_id=admin_id,
            reason=reason,
            previous_status=previous_status.value,
        )
        if was_paid:
            self._withdraw(subscription)
        return subscription

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Expire every active subscription whose end date has passed.

        Safe to run from several sweepers at once: each transition is
        guarded by the active status, and a record lost to another writer
        is skipped. One record's failure never stops the batch.

        Args:
            now: Sweep instant (defaults to the clock)

        Returns:
            Number of subscriptions this call expired
        """
        now = now or self._now()
        candidates = self.store.scan(
            SubscriptionFilter(status=SubscriptionStatus.ACTIVE, end_before=now)
        )
        expired_count = 0

        for subscription in candidates:
            try:
                seen_revision = subscription.revision
                subscription.status = SubscriptionStatus.EXPIRED
                subscription.updated_at = now
                # an extension landing after the scan bumps the revision
                if not self.store.update_if_status(
                    subscription, SubscriptionStatus.ACTIVE, expected_revision=seen_revision
                ):
                    logger.debug("subscription_expiry_skipped", subscription_id=subscription.id)
                    continue
            except Exception as e:
                logger.error(
                    "subscription_expiry_failed",
                    subscription_id=subscription.id,
                    error=str(e),
                    exc_info=True,
                )
                continue

            expired_count += 1
            log_subscription_status_change(
                subscription.id, SubscriptionStatus.ACTIVE.value, SubscriptionStatus.EXPIRED.value,
                reason="paid period elapsed", user_id=subscription.user_id,
            )
            self._audit(
                subscription,
                SubscriptionAction.EXPIRE,
                end_date=subscription.end_date.isoformat() if subscription.end_date else None,
            )
            self._withdraw(subscription)

        logger.info(
            "expiry_sweep_completed",
            candidates=len(candidates),
            expired_count=expired_count,
            now=now.isoformat(),
        )
        return expired_count

    def get_subscription(self, subscription_id: str) -> SubscriptionRecord:
        """Get subscription by id.

        Raises:
            SubscriptionNotFoundError: If id not found
        """
        return self.store.get_by_id(subscription_id)

    def list_user_subscriptions(self, user_id: str) -> List[SubscriptionRecord]:
        """All subscriptions of a user, newest first."""
        return self.store.list_by_owner(user_id)

    def list_subscriptions(self, subscription_filter: Optional[SubscriptionFilter] = None) -> List[SubscriptionRecord]:
        """All subscriptions matching a filter, newest first."""
        return self.store.scan(subscription_filter)

    def get_active_subscription(self, user_id: str, now: Optional[datetime] = None) -> Optional[SubscriptionRecord]:
        """The user's newest subscription that currently grants access, if any."""
        now = now or self._now()
        for subscription in self.store.list_by_owner(user_id):
            if is_active(subscription, now):
                return subscription
        return None


# Global engine instance
_engine_instance: Optional[LifecycleEngine] = None


def get_lifecycle_engine() -> LifecycleEngine:
    """Get global lifecycle engine instance (singleton)."""
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = LifecycleEngine()
    return _engine_instance


def reset_lifecycle_engine() -> None:
    """Drop the global engine so the next access rebuilds it from the globals."""
    global _engine_instance
    _engine_instance = None
