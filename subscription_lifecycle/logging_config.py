"""Structured logging configuration using structlog.

Every line carries the service name and version; request-scoped fields
(request_id, subscription_id, user_id) come from contextvars bound by the
middleware. Payer phone numbers are masked before rendering.
"""

import logging
import os
import sys
from typing import Any

import structlog
from structlog.typing import EventDict, Processor

SERVICE_NAME = "subscription-lifecycle"

# event keys that may carry a payer's MSISDN
PHONE_FIELDS = frozenset({"phone_number", "payer_phone"})

# third-party loggers that are chatty at INFO
NOISY_LOGGERS = ("google.api_core", "google.cloud.pubsub_v1", "urllib3")


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp the service name (and version, once known) on every event."""
    from subscription_lifecycle import __version__

    event_dict["app"] = SERVICE_NAME
    event_dict.setdefault("version", __version__)
    return event_dict


def mask_phone(value: Any) -> Any:
    """Keep the country prefix and last three digits of a phone number.

    >>> mask_phone("254708374149")
    '254******149'
    """
    if value is None:
        return None
    digits = str(value)
    if len(digits) <= 6:
        return "*" * len(digits)
    return digits[:3] + "*" * (len(digits) - 6) + digits[-3:]


def mask_phone_numbers(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    for key in PHONE_FIELDS.intersection(event_dict):
        event_dict[key] = mask_phone(event_dict[key])
    return event_dict


def drop_debug_in_production(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Drop DEBUG logs if not in debug mode."""
    if method_name == "debug" and not is_debug_mode():
        raise structlog.DropEvent
    return event_dict


def is_debug_mode() -> bool:
    """Check if debug mode is enabled via LOG_LEVEL environment variable."""
    return os.getenv("LOG_LEVEL", "INFO").upper() == "DEBUG"


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    include_timestamp: bool = True,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON lines when True, coloured console output otherwise
        include_timestamp: Prefix events with a UTC ISO 8601 timestamp
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_app_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        mask_phone_numbers,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    if numeric_level > logging.DEBUG:
        processors.append(drop_debug_in_production)

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(colors=True, exception_formatter=structlog.dev.plain_traceback)
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging_from_env() -> None:
    """Configure logging from LOG_LEVEL and LOG_FORMAT ("json" or "console")."""
    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        json_format=os.getenv("LOG_FORMAT", "json").lower() == "json",
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind fields onto every log line of the current request or task.

    Example:
        bind_context(request_id="abc123", subscription_id="sub_456")
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
