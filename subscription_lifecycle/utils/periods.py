"""Plan period parsing utilities.

Parses the ISO 8601 duration strings used in plans.yaml for plan
durations and administrative extensions.
"""

import re
from datetime import timedelta

# Billing approximations: a month is 30 days, a year is 365 days
DAYS_PER_WEEK = 7
DAYS_PER_MONTH = 30
DAYS_PER_YEAR = 365

_PERIOD_PATTERN = re.compile(r"^(\d+)?([DWMY])$")


def parse_period(period: str) -> timedelta:
    """Parse an ISO 8601 duration string into a timedelta.

    Supported formats:
    - P[n]D - days (P30D = 30 days)
    - P[n]W - weeks (P2W = 14 days)
    - P[n]M - months (P2M = 60 days)
    - P[n]Y - years (P1Y = 365 days)

    Args:
        period: ISO 8601 duration string (e.g., "P1M", "P1Y", "P30D")

    Returns:
        Duration as a timedelta

    Raises:
        ValueError: If the period string is invalid or unsupported

    Examples:
        >>> parse_period("P1M")
        datetime.timedelta(days=30)

        >>> parse_period("P1Y")
        datetime.timedelta(days=365)
    """
    if not period or not isinstance(period, str):
        raise ValueError("Period must be a non-empty string")

    period = period.strip().upper()

    if not period.startswith("P"):
        raise ValueError(f"Invalid period format: '{period}'. Must start with 'P'")

    duration_str = period[1:]
    if not duration_str:
        raise ValueError(f"Invalid period format: '{period}'. No duration specified")

    match = _PERIOD_PATTERN.match(duration_str)
    if not match:
        raise ValueError(
            f"Unsupported period format: '{period}'. "
            "Supported formats: P[n]D, P[n]W, P[n]M, P[n]Y"
        )

    number_str, unit = match.groups()
    number = int(number_str) if number_str else 1

    if number <= 0:
        raise ValueError(f"Period number must be positive, got: {number}")

    if unit == "D":
        return timedelta(days=number)
    if unit == "W":
        return timedelta(days=number * DAYS_PER_WEEK)
    if unit == "M":
        return timedelta(days=number * DAYS_PER_MONTH)
    return timedelta(days=number * DAYS_PER_YEAR)


def format_period(duration: timedelta) -> str:
    """Convert a whole-day timedelta back to an ISO 8601 duration string.

    Prefers the largest exact unit (years, then months, weeks, days).

    Raises:
        ValueError: If the duration is negative or not a whole number of days
    """
    if duration < timedelta(0):
        raise ValueError("Duration must be non-negative")
    if duration % timedelta(days=1):
        raise ValueError(f"Duration must be a whole number of days, got: {duration}")

    days = duration.days
    if days == 0:
        return "P0D"
    if days % DAYS_PER_YEAR == 0:
        return f"P{days // DAYS_PER_YEAR}Y"
    if days % DAYS_PER_MONTH == 0:
        return f"P{days // DAYS_PER_MONTH}M"
    if days % DAYS_PER_WEEK == 0:
        return f"P{days // DAYS_PER_WEEK}W"
    return f"P{days}D"


def validate_period(period: str) -> bool:
    """Return True if the string parses as a supported period."""
    try:
        parse_period(period)
        return True
    except (ValueError, TypeError):
        return False
