"""Subscription store - persistence contract and in-memory adapter.

Records are keyed by id, with a unique secondary index on checkout_request_id
and an owner index ordered by created_at. Compound filtering is done in
memory after a full scan; this does not scale past a small fleet without
real secondary indexes in the backing store.
"""

import threading
from typing import Dict, List, Optional

from subscription_lifecycle.models import SubscriptionFilter, SubscriptionRecord, SubscriptionStatus


class StorageError(Exception):
    """Raised when the persistence layer fails to read or write."""

    pass


class SubscriptionNotFoundError(Exception):
    """Raised when a subscription is not found in the store."""

    pass


class SubscriptionStore:
    """In-memory storage for subscription records.

    Thread-safe. Every read returns a copy and every write stores a copy, so
    a caller's changes only land through update() or update_if_status().
    Each successful write stamps the record with a store-wide increasing
    revision, so two writes can be ordered even when they share updated_at.
    """

    def __init__(self):
        """Initialize subscription store with empty storage."""
        self._subscriptions: Dict[str, SubscriptionRecord] = {}
        self._by_checkout_request_id: Dict[str, str] = {}
        self._by_owner: Dict[str, List[str]] = {}
        self._sequence: Dict[str, int] = {}
        self._next_sequence = 0
        # store-wide write counter, never reset
        self._revision = 0
        self._lock = threading.RLock()

    def _newest_first(self, subscriptions: List[SubscriptionRecord]) -> List[SubscriptionRecord]:
        # insertion order breaks created_at ties
        return sorted(
            subscriptions,
            key=lambda s: (s.created_at, self._sequence[s.id]),
            reverse=True,
        )

    def add(self, subscription: SubscriptionRecord) -> None:
        """Add a subscription to the store.

        Args:
            subscription: SubscriptionRecord to store

        Raises:
            ValueError: If the id or checkout_request_id is already taken
        """
        with self._lock:
            if subscription.id in self._subscriptions:
                raise ValueError(f"Subscription with id '{subscription.id}' already exists")

            checkout_request_id = subscription.checkout_request_id
            if checkout_request_id and checkout_request_id in self._by_checkout_request_id:
                raise ValueError(
                    f"checkout_request_id '{checkout_request_id}' is already assigned to "
                    f"subscription '{self._by_checkout_request_id[checkout_request_id]}'"
                )

            self._stamp(subscription)
            self._subscriptions[subscription.id] = subscription.model_copy(deep=True)
            if checkout_request_id:
                self._by_checkout_request_id[checkout_request_id] = subscription.id
            self._by_owner.setdefault(subscription.user_id, []).append(subscription.id)
            self._sequence[subscription.id] = self._next_sequence
            self._next_sequence += 1

    def get_by_id(self, subscription_id: str) -> SubscriptionRecord:
        """Get subscription by id.

        Raises:
            SubscriptionNotFoundError: If id not found
        """
        subscription = self.find_by_id(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(f"Subscription not found: {subscription_id}")
        return subscription

    def find_by_id(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        """Find subscription by id (returns None if not found)."""
        with self._lock:
            subscription = self._subscriptions.get(subscription_id)
            return subscription.model_copy(deep=True) if subscription else None

    def get_by_correlation_id(self, checkout_request_id: str) -> Optional[SubscriptionRecord]:
        """Find the subscription holding a gateway correlation id, whatever its status.

        Args:
            checkout_request_id: Correlation id issued at payment initiation

        Returns:
            SubscriptionRecord if found, None otherwise
        """
        with self._lock:
            subscription_id = self._by_checkout_request_id.get(checkout_request_id)
            if subscription_id is None:
                return None
            return self._subscriptions[subscription_id].model_copy(deep=True)

    def list_by_owner(self, user_id: str) -> List[SubscriptionRecord]:
        """Get all subscriptions of a user, newest first."""
        with self._lock:
            owned = [self._subscriptions[i] for i in self._by_owner.get(user_id, [])]
            return [s.model_copy(deep=True) for s in self._newest_first(owned)]

    def scan(self, subscription_filter: Optional[SubscriptionFilter] = None) -> List[SubscriptionRecord]:
        """Full scan with in-memory filtering, newest first.

        Args:
            subscription_filter: Predicates to apply; None returns everything
        """
        with self._lock:
            candidates = list(self._subscriptions.values())
            if subscription_filter is not None:
                candidates = [s for s in candidates if subscription_filter.matches(s)]
            return [s.model_copy(deep=True) for s in self._newest_first(candidates)]

    def get_all(self) -> List[SubscriptionRecord]:
        """Get all subscriptions, newest first."""
        return self.scan()

    def update(self, subscription: SubscriptionRecord) -> None:
        """Unconditionally overwrite an existing subscription (last write wins).

        Raises:
            SubscriptionNotFoundError: If subscription id not found
        """
        with self._lock:
            if subscription.id not in self._subscriptions:
                raise SubscriptionNotFoundError(f"Subscription not found: {subscription.id}")
            self._write(subscription)

    def update_if_status(
        self,
        subscription: SubscriptionRecord,
        expected_status: SubscriptionStatus,
        expected_revision: Optional[int] = None,
    ) -> bool:
        """Overwrite a subscription only if its stored status still matches.

        Compare-and-swap on status, and on the stored revision when given: a
        writer that lost a race to another writer gets False and must re-read.

        Returns:
            True if the write was applied, False if the stored status differed

        Raises:
            SubscriptionNotFoundError: If subscription id not found
        """
        with self._lock:
            current = self._subscriptions.get(subscription.id)
            if current is None:
                raise SubscriptionNotFoundError(f"Subscription not found: {subscription.id}")
            if current.status != expected_status:
                return False
            if expected_revision is not None and current.revision != expected_revision:
                return False
            self._write(subscription)
            return True

    def _write(self, subscription: SubscriptionRecord) -> None:
        previous = self._subscriptions[subscription.id]
        if previous.checkout_request_id != subscription.checkout_request_id:
            raise StorageError(
                f"checkout_request_id of subscription '{subscription.id}' is immutable"
            )
        if previous.user_id != subscription.user_id:
            raise StorageError(f"user_id of subscription '{subscription.id}' is immutable")
        self._stamp(subscription)
        self._subscriptions[subscription.id] = subscription.model_copy(deep=True)

    def _stamp(self, subscription: SubscriptionRecord) -> None:
        # the caller's record carries the new revision too
        self._revision += 1
        subscription.revision = self._revision

    def exists(self, subscription_id: str) -> bool:
        with self._lock:
            return subscription_id in self._subscriptions

    def count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def count_by_status(self, status: SubscriptionStatus) -> int:
        with self._lock:
            return sum(1 for s in self._subscriptions.values() if s.status == status)

    def clear(self) -> None:
        """Clear all subscriptions from the store.

        Warning: This removes all data. Use with caution.
        """
        with self._lock:
            self._subscriptions.clear()
            self._by_checkout_request_id.clear()
            self._by_owner.clear()
            self._sequence.clear()
            self._next_sequence = 0

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, subscription_id: str) -> bool:
        return self.exists(subscription_id)

    def __repr__(self) -> str:
        return f"SubscriptionStore(subscriptions={self.count()})"


# Global store instance
_store_instance: Optional[SubscriptionStore] = None
_store_lock = threading.Lock()


def get_subscription_store() -> SubscriptionStore:
    """Get global subscription store instance (singleton)."""
    global _store_instance
    if _store_instance is None:
        with _store_lock:
            if _store_instance is None:
                _store_instance = SubscriptionStore()
    return _store_instance


def reset_subscription_store() -> None:
    """Reset global subscription store (clears all data).

    Warning: This removes all subscription data. Use with caution.
    """
    get_subscription_store().clear()
