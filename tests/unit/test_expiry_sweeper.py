"""Unit tests for the background expiry sweeper."""

import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from subscription_lifecycle.models import (
    Currency,
    ExtensionDefinition,
    PlanDefinition,
    PlansConfig,
    PlanType,
    SubscriptionStatus,
)
from subscription_lifecycle.repositories.audit_log import AuditLog
from subscription_lifecycle.repositories.plan_catalog import PlanCatalog
from subscription_lifecycle.repositories.subscription_store import SubscriptionStore
from subscription_lifecycle.services.entitlement import EntitlementNotifier, InMemoryEntitlementPropagator
from subscription_lifecycle.services.expiry_sweeper import ExpirySweeper
from subscription_lifecycle.services.lifecycle_engine import LifecycleEngine
from subscription_lifecycle.services.time_controller import TimeController

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return TimeController(start_time=T0)


@pytest.fixture
def engine(clock):
    engine = MagicMock()
    engine.clock = clock
    engine.sweep_expired.return_value = 0
    return engine


@pytest.fixture
def sweeper(engine):
    sweeper = ExpirySweeper(engine=engine, interval_seconds=0.01)
    yield sweeper
    sweeper.stop(timeout=1.0)


class TestRunOnce:
    def test_sweeps_at_clock_time(self, sweeper, engine, clock):
        engine.sweep_expired.return_value = 3
        clock.advance_time(days=2)

        assert sweeper.run_once() == 3
        engine.sweep_expired.assert_called_once_with(clock.get_current_time())

    def test_clock_defaults_to_engine_clock(self, sweeper, clock):
        assert sweeper.clock is clock


class TestLoop:
    def test_not_running_until_started(self, sweeper):
        assert not sweeper.is_running

    def test_loop_ticks_until_stopped(self, sweeper, engine):
        ticked = threading.Event()
        engine.sweep_expired.side_effect = lambda now: ticked.set() or 0

        sweeper.start()
        assert ticked.wait(timeout=2.0)
        assert sweeper.is_running

        sweeper.stop(timeout=2.0)
        assert not sweeper.is_running

    def test_start_twice_keeps_one_thread(self, sweeper):
        sweeper.start()
        thread = sweeper._thread
        sweeper.start()
        assert sweeper._thread is thread

    def test_tick_failure_does_not_kill_loop(self, sweeper, engine):
        calls = []
        recovered = threading.Event()

        def flaky(now):
            calls.append(now)
            if len(calls) == 1:
                raise RuntimeError("store unavailable")
            recovered.set()
            return 0

        engine.sweep_expired.side_effect = flaky
        sweeper.start()

        assert recovered.wait(timeout=2.0)
        assert len(calls) >= 2

    def test_restart_after_stop(self, sweeper):
        sweeper.start()
        sweeper.stop(timeout=2.0)
        sweeper.start()
        assert sweeper.is_running

    def test_stop_without_start(self, sweeper):
        sweeper.stop()
        assert not sweeper.is_running

    def test_stop_timeout_blocks_restart(self, sweeper, engine):
        entered = threading.Event()
        release = threading.Event()
        engine.sweep_expired.side_effect = lambda now: entered.set() or release.wait(5.0) or 0

        sweeper.start()
        assert entered.wait(timeout=2.0)
        old_thread = sweeper._thread

        sweeper.stop(timeout=0.05)
        assert sweeper._thread is old_thread
        assert not sweeper.is_running
        with pytest.raises(RuntimeError, match="still stopping"):
            sweeper.start()

        release.set()
        old_thread.join(timeout=2.0)
        engine.sweep_expired.side_effect = None
        sweeper.start()
        assert sweeper._thread is not old_thread
        assert sweeper.is_running


class TestWallClockExpiry:
    @pytest.fixture
    def live_engine(self):
        catalog = PlanCatalog(
            plans_config=PlansConfig(
                plans=[PlanDefinition(plan_type="monthly", duration="P1M", prices={"KSH": 2000, "USD": 10})],
                extensions=[ExtensionDefinition(kind="1-month", duration="P1M")],
            )
        )
        clock = TimeController()
        return LifecycleEngine(
            subscription_store=SubscriptionStore(),
            plan_catalog=catalog,
            audit_log=AuditLog(),
            entitlements=EntitlementNotifier(
                propagator=InMemoryEntitlementPropagator(clock=clock), asynchronous=False
            ),
            clock=clock,
        )

    def test_expires_as_wall_time_passes(self, live_engine):
        pending = live_engine.create_pending(
            user_id="user-1",
            email="user-1@example.com",
            phone_number="254700000000",
            plan_type=PlanType.MONTHLY,
            currency=Currency.KSH,
        )
        active = live_engine.activate(pending.id, "TX-1")
        # shorten the paid period so it lapses during the test
        active.end_date = live_engine.clock.get_current_time() + timedelta(milliseconds=200)
        live_engine.store.update(active)

        sweeper = ExpirySweeper(engine=live_engine, interval_seconds=0.05)
        sweeper.start()
        try:
            deadline = time.monotonic() + 3.0
            while time.monotonic() < deadline:
                if live_engine.get_subscription(pending.id).status == SubscriptionStatus.EXPIRED:
                    break
                time.sleep(0.05)
        finally:
            sweeper.stop(timeout=2.0)

        assert live_engine.get_subscription(pending.id).status == SubscriptionStatus.EXPIRED
        assert live_engine.get_active_subscription("user-1") is None
