"""Audit log - append-only record of subscription actions.

Entries are written once and never updated or deleted; there is no API for either.
"""

import threading
from typing import Dict, List, Optional

from subscription_lifecycle.models import SubscriptionLogEntry


class AuditLog:
    """In-memory, append-only audit log.

    Thread-safe. Listing is newest first, with append order breaking
    created_at ties.
    """

    def __init__(self):
        self._entries: List[SubscriptionLogEntry] = []
        self._ids: set[str] = set()
        self._by_subscription: Dict[str, List[int]] = {}
        self._lock = threading.RLock()

    def append(self, entry: SubscriptionLogEntry) -> None:
        """Append an entry.

        Raises:
            ValueError: If an entry with the same id was already written
        """
        with self._lock:
            if entry.id in self._ids:
                raise ValueError(f"Audit entry '{entry.id}' already written")
            self._ids.add(entry.id)
            self._by_subscription.setdefault(entry.subscription_id, []).append(len(self._entries))
            self._entries.append(entry)

    def _newest_first(self, positions: List[int]) -> List[SubscriptionLogEntry]:
        ordered = sorted(positions, key=lambda i: (self._entries[i].created_at, i), reverse=True)
        return [self._entries[i] for i in ordered]

    def list_by_subscription(self, subscription_id: str) -> List[SubscriptionLogEntry]:
        """All entries for one subscription, newest first."""
        with self._lock:
            return self._newest_first(self._by_subscription.get(subscription_id, []))

    def list_all(self, limit: Optional[int] = None) -> List[SubscriptionLogEntry]:
        """All entries, newest first, truncated to limit when given."""
        with self._lock:
            entries = self._newest_first(list(range(len(self._entries))))
        if limit is not None:
            entries = entries[: max(limit, 0)]
        return entries

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        """Drop every entry. Test and local-reset use only."""
        with self._lock:
            self._entries.clear()
            self._ids.clear()
            self._by_subscription.clear()

    def __len__(self) -> int:
        return self.count()

    def __repr__(self) -> str:
        return f"AuditLog(entries={self.count()})"


# Global audit log instance
_audit_log_instance: Optional[AuditLog] = None
_audit_log_lock = threading.Lock()


def get_audit_log() -> AuditLog:
    """Get global audit log instance (singleton)."""
    global _audit_log_instance
    if _audit_log_instance is None:
        with _audit_log_lock:
            if _audit_log_instance is None:
                _audit_log_instance = AuditLog()
    return _audit_log_instance
