"""Entitlement propagation to user profiles.

Responsibilities:
- Keep each user's subscription flag in step with their subscription
- Publish entitlement changes to Google Cloud Pub/Sub (optional)
- Dispatch changes off the caller's path so a failure never blocks or
  rolls back the subscription change that produced it
"""

import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Dict, List, Optional

from google.cloud import pubsub_v1

from subscription_lifecycle.logging_config import get_logger
from subscription_lifecycle.models import EntitlementChange, PubSubConfig
from subscription_lifecycle.services.time_controller import TimeController, get_time_controller
from subscription_lifecycle.state_logger import log_entitlement_change

logger = get_logger(__name__)


class EntitlementPropagator(ABC):
    """Writes a user's subscription flag to wherever profiles live."""

    @abstractmethod
    def update_entitlement(
        self,
        user_id: str,
        is_subscribed: bool,
        subscription_id: Optional[str] = None,
        subscription_end_date: Optional[datetime] = None,
    ) -> None:
        """Set the entitlement flag for a user. May raise; callers log and move on."""


class InMemoryEntitlementPropagator(EntitlementPropagator):
    """Keeps user profile flags in a dict. Default propagator and test double."""

    def __init__(self, clock: Optional[TimeController] = None):
        self._lock = threading.RLock()
        self._clock = clock if clock is not None else get_time_controller()
        self._profiles: Dict[str, dict] = {}
        self._changes: List[EntitlementChange] = []

    def update_entitlement(
        self,
        user_id: str,
        is_subscribed: bool,
        subscription_id: Optional[str] = None,
        subscription_end_date: Optional[datetime] = None,
    ) -> None:
        change = EntitlementChange(
            user_id=user_id,
            is_subscribed=is_subscribed,
            subscription_id=subscription_id,
            subscription_end_date=subscription_end_date,
            event_time=self._clock.get_current_time(),
        )
        with self._lock:
            self._profiles[user_id] = {
                "is_subscribed": is_subscribed,
                "subscription_id": subscription_id,
                "subscription_end_date": subscription_end_date,
            }
            self._changes.append(change)

    def get_profile(self, user_id: str) -> Optional[dict]:
        """Current flags for a user, None if never touched."""
        with self._lock:
            profile = self._profiles.get(user_id)
            return dict(profile) if profile is not None else None

    def is_subscribed(self, user_id: str) -> bool:
        profile = self.get_profile(user_id)
        return bool(profile and profile["is_subscribed"])

    @property
    def changes(self) -> List[EntitlementChange]:
        """Every change received, oldest first."""
        with self._lock:
            return list(self._changes)

    def clear(self) -> None:
        with self._lock:
            self._profiles.clear()
            self._changes.clear()


class PubSubEntitlementPropagator(EntitlementPropagator):
    """Publishes EntitlementChange messages to a Google Cloud Pub/Sub topic.

    Honours PUBSUB_EMULATOR_HOST like any PublisherClient, so it runs
    against the local Pub/Sub emulator without credentials.
    """

    def __init__(self, settings: PubSubConfig, clock: Optional[TimeController] = None):
        self._lock = threading.RLock()
        self._clock = clock if clock is not None else get_time_controller()
        self._publisher: Optional[pubsub_v1.PublisherClient] = None
        self._topic_path: Optional[str] = None
        self._settings = settings

        self._initialize()

    def _initialize(self) -> None:
        """Init pub/sub publisher from settings"""
        try:
            self._publisher = pubsub_v1.PublisherClient()
            self._topic_path = self._publisher.topic_path(self._settings.project_id, self._settings.topic)
            self._ensure_topic_exists()

            logger.info(
                "entitlement_publisher_initialized",
                project_id=self._settings.project_id,
                topic=self._settings.topic,
                topic_path=self._topic_path,
            )
        except Exception as e:
            logger.error(
                "entitlement_publisher_init_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            self._publisher = None
            self._topic_path = None

    def _ensure_topic_exists(self) -> None:
        try:
            self._publisher.get_topic(request={"topic": self._topic_path})
        except Exception:
            # Topic doesn't exist, create it
            topic = self._publisher.create_topic(request={"name": self._topic_path})
            logger.info("pubsub_topic_created", topic=self._settings.topic, topic_path=topic.name)

    def is_enabled(self) -> bool:
        return self._publisher is not None and self._topic_path is not None

    def update_entitlement(
        self,
        user_id: str,
        is_subscribed: bool,
        subscription_id: Optional[str] = None,
        subscription_end_date: Optional[datetime] = None,
    ) -> None:
        """Publish one entitlement change.

        Raises:
            RuntimeError: If the publisher failed to initialize
            Exception: Whatever the publish future raises (timeouts, API errors)
        """
        if not self.is_enabled():
            raise RuntimeError("Publisher is not initialized")

        change = EntitlementChange(
            user_id=user_id,
            is_subscribed=is_subscribed,
            subscription_id=subscription_id,
            subscription_end_date=subscription_end_date,
            event_time=self._clock.get_current_time(),
        )

        with self._lock:
            future = self._publisher.publish(
                self._topic_path,
                change.model_dump_json().encode("utf-8"),
                # attributes for subscriber-side filtering
                user_id=user_id,
                is_subscribed=str(is_subscribed).lower(),
            )

        message_id = future.result(timeout=5.0)
        logger.debug("pubsub_message_published", message_id=message_id, user_id=user_id)

    def shutdown(self) -> None:
        with self._lock:
            self._publisher = None
            self._topic_path = None


class EntitlementNotifier:
    """Fire-and-forget dispatcher in front of a propagator.

    Changes for the same user are applied in submission order; changes for
    different users run concurrently on the pool. A change carrying a store
    revision older than one already applied for that user is dropped, so a
    grant and a withdrawal racing through the engine land in store write
    order. Every failure is logged and swallowed.

    Args:
        propagator: where entitlement flags are written
        asynchronous: run on a thread pool (True) or inline in the caller
        max_workers: pool size when asynchronous
    """

    def __init__(
        self,
        propagator: Optional[EntitlementPropagator] = None,
        asynchronous: bool = True,
        max_workers: int = 4,
    ):
        self._propagator = propagator if propagator is not None else InMemoryEntitlementPropagator()
        self._asynchronous = asynchronous
        self._lock = threading.RLock()
        self._executor: Optional[ThreadPoolExecutor] = (
            ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="entitlement")
            if asynchronous
            else None
        )
        self._pending: set[Future] = set()
        self._last_by_user: Dict[str, Future] = {}
        self._applied_revision: Dict[str, int] = {}
        self._user_locks: Dict[str, threading.Lock] = {}

    @property
    def propagator(self) -> EntitlementPropagator:
        return self._propagator

    def notify(
        self,
        user_id: str,
        is_subscribed: bool,
        subscription_id: Optional[str] = None,
        subscription_end_date: Optional[datetime] = None,
        revision: Optional[int] = None,
    ) -> None:
        """Hand a change to the propagator without waiting for it.

        Args:
            revision: store revision of the write that produced the change
        """
        log_entitlement_change(user_id, is_subscribed, subscription_id, subscription_end_date)

        if self._executor is None:
            self._deliver(None, user_id, is_subscribed, subscription_id, subscription_end_date, revision)
            return

        with self._lock:
            previous = self._last_by_user.get(user_id)
            try:
                future = self._executor.submit(
                    self._deliver,
                    previous,
                    user_id,
                    is_subscribed,
                    subscription_id,
                    subscription_end_date,
                    revision,
                )
            except RuntimeError as e:
                # pool already shut down
                logger.error("entitlement_dispatch_failed", user_id=user_id, error=str(e))
                return
            self._last_by_user[user_id] = future
            self._pending.add(future)
            future.add_done_callback(lambda f, uid=user_id: self._forget(uid, f))

    def _forget(self, user_id: str, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
            if self._last_by_user.get(user_id) is future:
                del self._last_by_user[user_id]

    def _deliver(
        self,
        previous: Optional[Future],
        user_id: str,
        is_subscribed: bool,
        subscription_id: Optional[str],
        subscription_end_date: Optional[datetime],
        revision: Optional[int] = None,
    ) -> None:
        if previous is not None:
            # predecessor was queued first, so it is running or finished
            wait([previous])

        with self._user_lock(user_id):
            if revision is not None:
                applied = self._applied_revision.get(user_id)
                if applied is not None and revision < applied:
                    logger.info(
                        "entitlement_change_superseded",
                        user_id=user_id,
                        is_subscribed=is_subscribed,
                        revision=revision,
                        applied_revision=applied,
                    )
                    return
                self._applied_revision[user_id] = revision

            try:
                self._propagator.update_entitlement(
                    user_id,
                    is_subscribed,
                    subscription_id=subscription_id,
                    subscription_end_date=subscription_end_date,
                )
            except Exception as e:
                logger.error(
                    "entitlement_update_failed",
                    user_id=user_id,
                    is_subscribed=is_subscribed,
                    subscription_id=subscription_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._lock:
            return self._user_locks.setdefault(user_id, threading.Lock())

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight notifications. Returns False on timeout."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True) -> None:
        """Drain and stop the pool."""
        if self._executor is not None:
            logger.info("entitlement_notifier_shutting_down", pending=len(self._pending))
            self._executor.shutdown(wait=wait_for_pending)
        if isinstance(self._propagator, PubSubEntitlementPropagator):
            self._propagator.shutdown()


_notifier_instance: Optional[EntitlementNotifier] = None
_notifier_lock = threading.Lock()


def build_entitlement_notifier(config=None) -> EntitlementNotifier:
    """Build a notifier from the entitlements section of the configuration."""
    from subscription_lifecycle.config import get_config

    settings = (config if config is not None else get_config()).entitlement_settings
    if settings.pubsub.enabled:
        propagator: EntitlementPropagator = PubSubEntitlementPropagator(settings.pubsub)
    else:
        propagator = InMemoryEntitlementPropagator()
    return EntitlementNotifier(
        propagator=propagator,
        asynchronous=settings.asynchronous,
        max_workers=settings.max_workers,
    )


def get_entitlement_notifier() -> EntitlementNotifier:
    """Get or create the singleton EntitlementNotifier instance."""
    global _notifier_instance
    if _notifier_instance is None:
        with _notifier_lock:
            if _notifier_instance is None:
                _notifier_instance = build_entitlement_notifier()
    return _notifier_instance


def reset_entitlement_notifier() -> None:
    """Shut down and drop the singleton notifier (for testing)."""
    global _notifier_instance
    with _notifier_lock:
        if _notifier_instance is not None:
            _notifier_instance.shutdown()
            _notifier_instance = None
