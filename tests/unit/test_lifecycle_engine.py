"""Unit tests for LifecycleEngine service."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from subscription_lifecycle.models import (
    Currency,
    ExtensionDefinition,
    ExtensionDuration,
    PlanDefinition,
    PlansConfig,
    PlanType,
    SubscriptionAction,
    SubscriptionStatus,
)
from subscription_lifecycle.repositories.audit_log import AuditLog
from subscription_lifecycle.repositories.plan_catalog import PlanCatalog, PlanValidationError
from subscription_lifecycle.repositories.subscription_store import (
    SubscriptionNotFoundError,
    SubscriptionStore,
)
from subscription_lifecycle.services.entitlement import (
    EntitlementNotifier,
    InMemoryEntitlementPropagator,
)
from subscription_lifecycle.services.lifecycle_engine import (
    InvalidSubscriptionStateError,
    LifecycleEngine,
    SubscriptionError,
)
from subscription_lifecycle.services.time_controller import TimeController

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def plan_catalog():
    """Create a plan catalog with the standard plans."""
    return PlanCatalog(
        plans_config=PlansConfig(
            plans=[
                PlanDefinition(plan_type="monthly", duration="P1M", prices={"KSH": 2000, "USD": 10}),
                PlanDefinition(plan_type="yearly", duration="P1Y", prices={"KSH": 20000, "USD": 100}),
            ],
            extensions=[
                ExtensionDefinition(kind="1-month", duration="P1M"),
                ExtensionDefinition(kind="2-months", duration="P2M"),
            ],
        )
    )


@pytest.fixture
def clock():
    return TimeController(start_time=T0)


@pytest.fixture
def propagator(clock):
    return InMemoryEntitlementPropagator(clock=clock)


@pytest.fixture
def audit_log():
    return AuditLog()


@pytest.fixture
def subscription_store():
    """Create a fresh subscription store for each test."""
    store = SubscriptionStore()
    yield store
    store.clear()


@pytest.fixture
def engine(subscription_store, plan_catalog, audit_log, propagator, clock):
    """Create a lifecycle engine with inline entitlement delivery."""
    return LifecycleEngine(
        subscription_store=subscription_store,
        plan_catalog=plan_catalog,
        audit_log=audit_log,
        entitlements=EntitlementNotifier(propagator=propagator, asynchronous=False),
        clock=clock,
    )


def create(engine, user_id="user-123", plan_type=PlanType.MONTHLY, currency=Currency.KSH, **kwargs):
    return engine.create_pending(
        user_id=user_id,
        email=f"{user_id}@example.com",
        phone_number="254700000000",
        plan_type=plan_type,
        currency=currency,
        **kwargs,
    )


def active_subscription(engine, **kwargs):
    subscription = create(engine, **kwargs)
    return engine.activate(subscription.id, "TX-1")


class TestCollaborators:
    def test_injected_empty_collaborators_are_used(self, engine, subscription_store, plan_catalog, audit_log, clock):
        assert len(subscription_store) == 0
        assert len(audit_log) == 0

        assert engine.store is subscription_store
        assert engine.catalog is plan_catalog
        assert engine.audit_log is audit_log
        assert engine.clock is clock

    def test_writes_land_in_injected_store(self, engine, subscription_store, audit_log):
        subscription = create(engine)

        assert subscription_store.count() == 1
        assert subscription.id in subscription_store
        assert len(audit_log) == 1


class TestCreatePending:
    def test_creates_pending_record(self, engine, subscription_store, audit_log):
        subscription = create(engine, checkout_request_id="ws_CO_1")

        assert subscription.status == SubscriptionStatus.PENDING
        assert subscription.amount == 2000
        assert subscription.plan_name == "1 month Pro Plan"
        assert subscription.start_date is None
        assert subscription.end_date is None
        assert subscription.transaction_id is None
        assert subscription.created_at == T0
        assert subscription.check_invariants() == []
        assert subscription_store.get_by_id(subscription.id) == subscription

        entries = audit_log.list_by_subscription(subscription.id)
        assert [e.action for e in entries] == [SubscriptionAction.CREATE]
        assert entries[0].details["amount"] == 2000

    def test_yearly_usd_price(self, engine):
        subscription = create(engine, plan_type="yearly", currency="USD")
        assert subscription.amount == 100
        assert subscription.plan_name == "1 year Pro Plan"

    def test_amount_must_match_catalog(self, engine, subscription_store):
        with pytest.raises(PlanValidationError):
            create(engine, amount=1500)
        assert subscription_store.count() == 0

    def test_unknown_plan_rejected(self, engine):
        with pytest.raises(PlanValidationError):
            create(engine, plan_type="weekly")

    def test_duplicate_checkout_request_id_rejected(self, engine):
        create(engine, checkout_request_id="ws_CO_1")
        with pytest.raises(ValueError):
            create(engine, user_id="user-456", checkout_request_id="ws_CO_1")

    def test_pending_does_not_touch_entitlements(self, engine, propagator):
        create(engine)
        assert propagator.changes == []


class TestActivate:
    def test_activation_sets_period(self, engine, clock, propagator, audit_log):
        clock.advance_time(hours=2)
        subscription = create(engine)

        active = engine.activate(subscription.id, "TX-1")

        now = T0 + timedelta(hours=2)
        assert active.status == SubscriptionStatus.ACTIVE
        assert active.start_date == now
        assert active.end_date == now + timedelta(days=30)
        assert active.transaction_id == "TX-1"
        assert active.check_invariants() == []

        assert propagator.is_subscribed("user-123")
        assert propagator.get_profile("user-123")["subscription_end_date"] == active.end_date
        actions = [e.action for e in audit_log.list_by_subscription(subscription.id)]
        assert actions == [SubscriptionAction.ACTIVATE, SubscriptionAction.CREATE]

    def test_yearly_period(self, engine):
        subscription = create(engine, plan_type=PlanType.YEARLY)
        active = engine.activate(subscription.id, "TX-1")
        assert active.end_date - active.start_date == timedelta(days=365)

    def test_same_transaction_is_idempotent(self, engine, propagator, audit_log):
        subscription = create(engine)
        first = engine.activate(subscription.id, "TX-1")

        again, applied = engine.try_activate(subscription.id, "TX-1")

        assert applied is False
        assert again == first
        assert len(propagator.changes) == 1
        assert len(audit_log.list_by_subscription(subscription.id)) == 2

    def test_other_transaction_rejected(self, engine):
        subscription = create(engine)
        engine.activate(subscription.id, "TX-1")
        with pytest.raises(InvalidSubscriptionStateError):
            engine.activate(subscription.id, "TX-2")

    def test_failed_cannot_activate(self, engine):
        subscription = create(engine)
        engine.mark_failed(subscription.id, reason="insufficient funds")
        with pytest.raises(InvalidSubscriptionStateError):
            engine.activate(subscription.id, "TX-1")

    def test_manual_activation_records_admin(self, engine, audit_log):
        subscription = create(engine)
        engine.activate(subscription.id, "MANUAL-1", admin_id="admin-1", reason="paid in cash")

        entry = audit_log.list_by_subscription(subscription.id)[0]
        assert entry.action == SubscriptionAction.ACTIVATE
        assert entry.admin_id == "admin-1"
        assert entry.reason == "paid in cash"

    def test_unknown_subscription(self, engine):
        with pytest.raises(SubscriptionNotFoundError):
            engine.activate("sub_missing", "TX-1")

    def test_lost_race_to_same_transaction(self, engine, subscription_store, propagator):
        subscription = create(engine)
        real_update = subscription_store.update_if_status

        def concurrent_winner(record, expected_status, expected_revision=None):
            # another worker applies the same callback between read and write
            winner = subscription_store.get_by_id(record.id)
            winner.status = SubscriptionStatus.ACTIVE
            winner.transaction_id = "TX-1"
            winner.start_date = T0
            winner.end_date = T0 + timedelta(days=30)
            subscription_store.update(winner)
            return real_update(record, expected_status, expected_revision)

        subscription_store.update_if_status = concurrent_winner
        result, applied = engine.try_activate(subscription.id, "TX-1")

        assert applied is False
        assert result.status == SubscriptionStatus.ACTIVE
        assert propagator.changes == []

    def test_lost_race_to_failure(self, engine, subscription_store):
        subscription = create(engine)
        real_update = subscription_store.update_if_status

        def concurrent_failure(record, expected_status, expected_revision=None):
            loser = subscription_store.get_by_id(record.id)
            loser.status = SubscriptionStatus.FAILED
            subscription_store.update(loser)
            return real_update(record, expected_status, expected_revision)

        subscription_store.update_if_status = concurrent_failure
        with pytest.raises(InvalidSubscriptionStateError):
            engine.activate(subscription.id, "TX-1")
        assert subscription_store.get_by_id(subscription.id).status == SubscriptionStatus.FAILED


class TestMarkFailed:
    def test_pending_to_failed(self, engine, propagator, audit_log):
        subscription = create(engine)
        failed = engine.mark_failed(subscription.id, reason="cancelled by user")

        assert failed.status == SubscriptionStatus.FAILED
        assert failed.start_date is None
        assert failed.check_invariants() == []
        assert propagator.changes == []
        # payment failures are not administrative actions
        assert len(audit_log.list_by_subscription(subscription.id)) == 1

    def test_repeated_failure_is_noop(self, engine):
        subscription = create(engine)
        engine.mark_failed(subscription.id)
        assert engine.mark_failed(subscription.id).status == SubscriptionStatus.FAILED

    def test_active_cannot_fail(self, engine):
        subscription = active_subscription(engine)
        with pytest.raises(InvalidSubscriptionStateError):
            engine.mark_failed(subscription.id)


class TestExtend:
    def test_extends_from_end_date(self, engine, clock, audit_log):
        subscription = active_subscription(engine)
        clock.advance_time(days=10)

        extended = engine.extend(subscription.id, ExtensionDuration.ONE_MONTH, admin_id="admin-1", reason="goodwill")

        assert extended.status == SubscriptionStatus.ACTIVE
        assert extended.start_date == T0
        assert extended.end_date == T0 + timedelta(days=60)
        entry = audit_log.list_by_subscription(subscription.id)[0]
        assert entry.action == SubscriptionAction.EXTEND
        assert entry.admin_id == "admin-1"
        assert entry.details["previous_status"] == "active"

    def test_expired_restarts_from_now(self, engine, clock, propagator):
        subscription = active_subscription(engine)
        clock.advance_time(days=45)
        assert engine.sweep_expired() == 1
        assert not propagator.is_subscribed("user-123")

        extended = engine.extend(subscription.id, "2-months", admin_id="admin-1")

        now = T0 + timedelta(days=45)
        assert extended.status == SubscriptionStatus.ACTIVE
        assert extended.start_date == now
        assert extended.end_date == now + timedelta(days=60)
        assert propagator.is_subscribed("user-123")

    def test_cancelled_can_be_reactivated(self, engine, clock):
        subscription = active_subscription(engine)
        clock.advance_time(days=5)
        engine.revoke(subscription.id, admin_id="admin-1")

        extended = engine.extend(subscription.id, ExtensionDuration.ONE_MONTH, admin_id="admin-2")

        assert extended.status == SubscriptionStatus.ACTIVE
        assert extended.end_date == T0 + timedelta(days=35)

    @pytest.mark.parametrize("status", ["pending", "failed"])
    def test_unpaid_cannot_extend(self, engine, status):
        subscription = create(engine)
        if status == "failed":
            engine.mark_failed(subscription.id)
        with pytest.raises(InvalidSubscriptionStateError):
            engine.extend(subscription.id, ExtensionDuration.ONE_MONTH, admin_id="admin-1")

    def test_unknown_duration(self, engine):
        subscription = active_subscription(engine)
        with pytest.raises(PlanValidationError):
            engine.extend(subscription.id, "3-months", admin_id="admin-1")


class TestRevoke:
    def test_revoke_active(self, engine, clock, propagator, audit_log):
        subscription = active_subscription(engine)
        clock.advance_time(days=3)

        revoked = engine.revoke(subscription.id, admin_id="admin-1", reason="chargeback")

        assert revoked.status == SubscriptionStatus.CANCELLED
        assert revoked.end_date == T0 + timedelta(days=3)
        assert not propagator.is_subscribed("user-123")
        assert engine.get_active_subscription("user-123") is None
        entry = audit_log.list_by_subscription(subscription.id)[0]
        assert entry.action == SubscriptionAction.REVOKE
        assert entry.reason == "chargeback"

    def test_revoke_expired_keeps_end_date(self, engine, clock):
        subscription = active_subscription(engine)
        clock.advance_time(days=40)
        engine.sweep_expired()

        revoked = engine.revoke(subscription.id, admin_id="admin-1")
        assert revoked.status == SubscriptionStatus.CANCELLED
        assert revoked.end_date == T0 + timedelta(days=30)

    @pytest.mark.parametrize("status", ["pending", "failed"])
    def test_revoke_unpaid(self, engine, clock, propagator, status):
        subscription = create(engine)
        if status == "failed":
            engine.mark_failed(subscription.id)
        clock.advance_time(hours=1)

        revoked = engine.revoke(subscription.id, admin_id="admin-1", reason="abandoned checkout")

        assert revoked.status == SubscriptionStatus.CANCELLED
        assert revoked.start_date is None
        assert revoked.end_date == T0 + timedelta(hours=1)
        assert revoked.check_invariants() == []
        assert propagator.changes == []

    def test_revoked_unpaid_cannot_be_extended(self, engine):
        subscription = create(engine)
        engine.revoke(subscription.id, admin_id="admin-1")

        with pytest.raises(InvalidSubscriptionStateError, match="never paid"):
            engine.extend(subscription.id, ExtensionDuration.ONE_MONTH, admin_id="admin-1")

    def test_revoke_pending_after_concurrent_payment(self, engine, subscription_store, propagator):
        subscription = create(engine)
        real_update = subscription_store.update_if_status
        calls = []

        def payment_lands_first(record, expected_status, expected_revision=None):
            if not calls:
                calls.append(record.id)
                subscription_store.update_if_status = real_update
                engine.activate(record.id, "TX-1")
            return real_update(record, expected_status, expected_revision)

        subscription_store.update_if_status = payment_lands_first
        revoked = engine.revoke(subscription.id, admin_id="admin-1")

        assert revoked.status == SubscriptionStatus.CANCELLED
        assert revoked.transaction_id == "TX-1"
        assert revoked.start_date == T0
        assert not propagator.is_subscribed("user-123")

    def test_revoke_twice_rejected(self, engine):
        subscription = active_subscription(engine)
        engine.revoke(subscription.id, admin_id="admin-1")
        with pytest.raises(InvalidSubscriptionStateError):
            engine.revoke(subscription.id, admin_id="admin-1")


class TestSweepExpired:
    def test_expires_only_lapsed(self, engine, clock, subscription_store, audit_log):
        monthly = active_subscription(engine, user_id="user-1")
        yearly = active_subscription(engine, user_id="user-2", plan_type=PlanType.YEARLY)
        pending = create(engine, user_id="user-3")

        clock.advance_time(days=31)
        assert engine.sweep_expired() == 1

        assert subscription_store.get_by_id(monthly.id).status == SubscriptionStatus.EXPIRED
        assert subscription_store.get_by_id(yearly.id).status == SubscriptionStatus.ACTIVE
        assert subscription_store.get_by_id(pending.id).status == SubscriptionStatus.PENDING
        entry = audit_log.list_by_subscription(monthly.id)[0]
        assert entry.action == SubscriptionAction.EXPIRE
        assert entry.admin_id is None

    def test_end_date_boundary(self, engine, clock):
        subscription = active_subscription(engine)
        clock.advance_time(days=30)

        # no longer entitled, but not strictly past the end yet
        assert engine.get_active_subscription("user-123") is None
        assert engine.sweep_expired() == 0
        assert engine.sweep_expired(now=subscription.end_date + timedelta(microseconds=1)) == 1

    def test_second_sweep_is_noop(self, engine, clock):
        active_subscription(engine)
        clock.advance_time(days=31)
        assert engine.sweep_expired() == 1
        assert engine.sweep_expired() == 0

    def test_one_failure_does_not_stop_batch(self, engine, clock, subscription_store):
        first = active_subscription(engine, user_id="user-1")
        second = active_subscription(engine, user_id="user-2")
        clock.advance_time(days=31)

        real_update = subscription_store.update_if_status

        def flaky(record, expected_status, expected_revision=None):
            if record.id == first.id:
                raise RuntimeError("disk full")
            return real_update(record, expected_status, expected_revision)

        subscription_store.update_if_status = flaky
        assert engine.sweep_expired() == 1
        assert subscription_store.get_by_id(second.id).status == SubscriptionStatus.EXPIRED
        assert subscription_store.get_by_id(first.id).status == SubscriptionStatus.ACTIVE

    def test_extension_after_scan_wins(self, engine, clock, subscription_store):
        subscription = active_subscription(engine)
        assert engine.store is subscription_store
        clock.advance_time(days=31)
        real_update = subscription_store.update_if_status

        def extend_first(record, expected_status, expected_revision=None):
            clock.advance_time(minutes=1)
            engine.extend(record.id, ExtensionDuration.ONE_MONTH, admin_id="admin-1")
            return real_update(record, expected_status, expected_revision)

        subscription_store.update_if_status = extend_first
        assert engine.sweep_expired() == 0
        assert subscription_store.get_by_id(subscription.id).status == SubscriptionStatus.ACTIVE

    def test_extension_at_scan_instant_wins(self, engine, clock, subscription_store):
        subscription = active_subscription(engine)
        clock.advance_time(days=31)
        real_update = subscription_store.update_if_status

        def extend_same_instant(record, expected_status, expected_revision=None):
            engine.extend(record.id, ExtensionDuration.ONE_MONTH, admin_id="admin-1")
            return real_update(record, expected_status, expected_revision)

        subscription_store.update_if_status = extend_same_instant
        assert engine.sweep_expired() == 0
        stored = subscription_store.get_by_id(subscription.id)
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.updated_at == clock.get_current_time()


class TestSideEffectFailures:
    def test_audit_failure_does_not_fail_operation(self, engine, subscription_store):
        engine.audit_log = MagicMock()
        engine.audit_log.append.side_effect = RuntimeError("audit store down")

        subscription = create(engine)
        active = engine.activate(subscription.id, "TX-1")

        assert active.status == SubscriptionStatus.ACTIVE
        assert subscription_store.get_by_id(subscription.id).status == SubscriptionStatus.ACTIVE

    def test_entitlement_failure_does_not_fail_operation(self, engine, propagator, subscription_store):
        propagator.update_entitlement = MagicMock(side_effect=RuntimeError("profile store down"))

        subscription = create(engine)
        engine.activate(subscription.id, "TX-1")

        propagator.update_entitlement.assert_called_once()
        assert subscription_store.get_by_id(subscription.id).status == SubscriptionStatus.ACTIVE


class TestQueries:
    def test_get_active_prefers_newest(self, engine, clock):
        older = active_subscription(engine)
        clock.advance_time(days=1)
        newer = create(engine)
        engine.activate(newer.id, "TX-2")

        assert engine.get_active_subscription("user-123").id == newer.id
        assert {s.id for s in engine.list_user_subscriptions("user-123")} == {older.id, newer.id}

    def test_get_active_skips_pending(self, engine):
        create(engine)
        assert engine.get_active_subscription("user-123") is None

    def test_get_subscription_missing(self, engine):
        with pytest.raises(SubscriptionNotFoundError):
            engine.get_subscription("sub_missing")

    def test_error_hierarchy(self):
        assert issubclass(InvalidSubscriptionStateError, SubscriptionError)


class TestEntitlementOrdering:
    def test_changes_carry_store_revision(self, engine, propagator, subscription_store):
        subscription = active_subscription(engine)
        extended = engine.extend(subscription.id, ExtensionDuration.ONE_MONTH, admin_id="admin-1")
        revoked = engine.revoke(subscription.id, admin_id="admin-1")

        assert subscription.revision < extended.revision < revoked.revision
        assert subscription_store.get_by_id(subscription.id).revision == revoked.revision

    def test_stale_grant_after_withdrawal_is_dropped(self, engine, propagator):
        subscription = active_subscription(engine)
        delivered = []
        real_notify = engine.entitlements.notify

        def hold_grants(user_id, is_subscribed, **kwargs):
            if is_subscribed:
                delivered.append(kwargs)
                return
            real_notify(user_id, is_subscribed, **kwargs)

        # extend writes first but its grant is delivered after the revoke
        engine.entitlements.notify = hold_grants
        engine.extend(subscription.id, ExtensionDuration.ONE_MONTH, admin_id="admin-1")
        engine.revoke(subscription.id, admin_id="admin-2")
        engine.entitlements.notify = real_notify
        real_notify("user-123", True, **delivered[0])

        assert engine.get_subscription(subscription.id).status == SubscriptionStatus.CANCELLED
        assert not propagator.is_subscribed("user-123")
