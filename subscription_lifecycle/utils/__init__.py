"""Utility functions and helpers."""

from subscription_lifecycle.utils.ids import (
    extract_id_prefix,
    generate_log_entry_id,
    generate_subscription_id,
    is_subscription_id,
)
from subscription_lifecycle.utils.periods import (
    format_period,
    parse_period,
    validate_period,
)

__all__ = [
    # Identifiers
    "generate_subscription_id",
    "generate_log_entry_id",
    "extract_id_prefix",
    "is_subscription_id",
    # Periods
    "parse_period",
    "format_period",
    "validate_period",
]
