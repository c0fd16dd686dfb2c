"""FastAPI application entry point and lifecycle management."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from subscription_lifecycle import __version__
from subscription_lifecycle.logging_config import configure_logging_from_env, get_logger
from subscription_lifecycle.middleware import ContextMiddleware, RequestLoggingMiddleware
from subscription_lifecycle.repositories.subscription_store import StorageError

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Starts the expiry sweeper on startup (when enabled) and stops it,
    together with the entitlement notifier, on shutdown.
    """
    from subscription_lifecycle.config import get_config
    from subscription_lifecycle.services.entitlement import reset_entitlement_notifier
    from subscription_lifecycle.services.expiry_sweeper import ExpirySweeper
    from subscription_lifecycle.services.lifecycle_engine import get_lifecycle_engine, reset_lifecycle_engine
    from subscription_lifecycle.services.payment_callback import reset_payment_callback_matcher

    logger.info("service_starting", version=__version__)

    sweeper_settings = get_config().sweeper_settings
    sweeper = ExpirySweeper(
        engine=get_lifecycle_engine(),
        interval_seconds=sweeper_settings.interval_seconds,
    )
    app.state.sweeper = sweeper

    try:
        if sweeper_settings.enabled:
            sweeper.start()
        else:
            logger.info("expiry_sweeper_disabled")

        logger.info("service_started", status="ready")
        yield
    finally:
        logger.info("service_shutting_down")
        sweeper.stop()
        # the engine holds the notifier, so both are rebuilt on next use
        reset_payment_callback_matcher()
        reset_lifecycle_engine()
        reset_entitlement_notifier()
        logger.info("service_stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    configure_logging_from_env()

    app = FastAPI(
        title="Subscription Lifecycle Service",
        description="Subscription lifecycle and entitlement engine for paid plans",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    include_request_details = os.getenv("LOG_REQUEST_DETAILS", "true").lower() == "true"
    app.add_middleware(RequestLoggingMiddleware, include_request_details=include_request_details)
    app.add_middleware(ContextMiddleware)

    # Register routers
    from subscription_lifecycle.api.admin import router as admin_router
    from subscription_lifecycle.api.control import router as control_router
    from subscription_lifecycle.api.payments import router as payments_router
    from subscription_lifecycle.api.subscriptions import router as subscriptions_router

    app.include_router(subscriptions_router)
    app.include_router(payments_router)
    app.include_router(admin_router)
    app.include_router(control_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        logger.debug("root_endpoint_called")
        return {
            "service": "subscription-lifecycle",
            "status": "running",
            "version": __version__,
        }

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Detailed health check."""
        from subscription_lifecycle.repositories.plan_catalog import get_plan_catalog
        from subscription_lifecycle.services.entitlement import (
            PubSubEntitlementPropagator,
            get_entitlement_notifier,
        )

        propagator = get_entitlement_notifier().propagator
        if isinstance(propagator, PubSubEntitlementPropagator):
            entitlements = "pubsub" if propagator.is_enabled() else "pubsub (unavailable)"
        else:
            entitlements = "in-memory"

        sweeper = getattr(app.state, "sweeper", None)
        return {
            "status": "healthy",
            "entitlements": entitlements,
            "sweeper": "running" if sweeper is not None and sweeper.is_running else "stopped",
            "config": f"loaded ({len(get_plan_catalog())} plans)",
        }

    @app.exception_handler(StorageError)
    async def storage_exception_handler(request, exc: StorageError) -> JSONResponse:
        logger.error("storage_error", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=503,
            content={"detail": {"error": "Storage unavailable", "message": str(exc)}},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    logger.info("app_created", endpoints=len(app.routes))
    return app


app = create_app()
