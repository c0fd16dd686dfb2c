"""Request logging and log-context middleware."""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from subscription_lifecycle.logging_config import bind_context, clear_context, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# orchestrator health checks hit these every few seconds
QUIET_PATHS = {"/", "/health"}

# path segments that are collections rather than subscription ids
_SUBSCRIPTION_SUBPATHS = {"users", "stats", "logs", "sweep"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request with a correlation id and its outcome.

    The id is taken from an inbound X-Request-ID (set by the ingress or the
    payment gateway proxy) or generated, bound to the logging context for
    the whole request, and echoed on the response. Completed requests log
    at warning for 4xx and error for 5xx.
    """

    def __init__(self, app: ASGIApp, include_request_details: bool = True):
        super().__init__(app)
        self.include_request_details = include_request_details

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        bind_context(request_id=request_id)
        path = request.url.path
        quiet = path in QUIET_PATHS

        if quiet:
            logger.debug("request_started", method=request.method, path=path)
        elif self.include_request_details:
            logger.info(
                "request_started",
                method=request.method,
                path=path,
                query_params=str(request.query_params) if request.query_params else None,
                client_host=request.client.host if request.client else "unknown",
                user_agent=request.headers.get("user-agent"),
            )
        else:
            logger.info("request_started", method=request.method, path=path)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                method=request.method,
                path=path,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise
        else:
            if response.status_code >= 500:
                log = logger.error
            elif response.status_code >= 400:
                log = logger.warning
            else:
                log = logger.debug if quiet else logger.info
            log(
                "request_completed",
                method=request.method,
                path=path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_context()


class ContextMiddleware(BaseHTTPMiddleware):
    """Binds subscription_id, user_id and the payment gateway from the path."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        parts = [p for p in request.url.path.split("/") if p]

        if "users" in parts:
            index = parts.index("users")
            if len(parts) > index + 1:
                bind_context(user_id=parts[index + 1])
        elif "subscriptions" in parts:
            index = parts.index("subscriptions")
            if len(parts) > index + 1 and parts[index + 1] not in _SUBSCRIPTION_SUBPATHS:
                bind_context(subscription_id=parts[index + 1])
        elif parts[:1] == ["payments"]:
            bind_context(gateway=parts[1] if len(parts) > 2 else "generic")

        return await call_next(request)
