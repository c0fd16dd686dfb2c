"""Identifier generation for subscriptions and audit entries.

Format: {prefix}_{uuid hex}_{timestamp millis}
Example: sub_a1b2c3d4e5f6a7b8_1700000000000
"""

import re
import time
import uuid
from typing import Optional

SUBSCRIPTION_ID_PREFIX = "sub"
LOG_ENTRY_ID_PREFIX = "log"

_ID_PATTERN = re.compile(r"^([a-z]+)_([0-9a-f]{16})_(\d{13})$")


def _generate_id(prefix: str) -> str:
    token_id = uuid.uuid4().hex[:16]
    timestamp = int(time.time() * 1000)
    return f"{prefix}_{token_id}_{timestamp}"


def generate_subscription_id() -> str:
    """Generate a unique, opaque subscription identifier."""
    return _generate_id(SUBSCRIPTION_ID_PREFIX)


def generate_log_entry_id() -> str:
    """Generate a unique audit log entry identifier."""
    return _generate_id(LOG_ENTRY_ID_PREFIX)


def extract_id_prefix(identifier: str) -> Optional[str]:
    """Return the prefix of a generated identifier, or None if malformed."""
    match = _ID_PATTERN.match(identifier or "")
    return match.group(1) if match else None


def is_subscription_id(identifier: str) -> bool:
    """Check whether a string looks like a generated subscription id."""
    return extract_id_prefix(identifier) == SUBSCRIPTION_ID_PREFIX
