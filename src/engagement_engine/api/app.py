"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from engagement_engine.api.routes import (
    budgets_router,
    health_router,
    payments_router,
    webhooks_router,
    work_items_router,
)
from engagement_engine.config import Settings, get_settings
from engagement_engine.database import dispose_db, init_db
from engagement_engine.errors import (
    EngagementError,
    GatewayUnavailable,
    InsufficientBudget,
    NotFound,
    PaymentIntegrityError,
    PermissionDenied,
    ValidationError,
)
from engagement_engine.events import (
    AsyncEventEmitter,
    LoggingNotifier,
    register_notifications,
)
from engagement_engine.gateway import PaymentGateway, build_gateway
from engagement_engine.services.state_machine import InvalidTransitionError

logger = logging.getLogger(__name__)

ERROR_STATUS: list[tuple[type[EngagementError], int]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (PermissionDenied, status.HTTP_403_FORBIDDEN),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (PaymentIntegrityError, status.HTTP_409_CONFLICT),
    (InsufficientBudget, status.HTTP_402_PAYMENT_REQUIRED),
    (GatewayUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def error_status(exc: EngagementError) -> int:
    """HTTP status for an engine error."""
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


def error_context(exc: EngagementError) -> dict | None:
    """Structured context attached to an error response."""
    if isinstance(exc, InvalidTransitionError):
        return {"current_status": exc.current_status, "to_status": exc.to_status}
    if isinstance(exc, ValidationError) and exc.field:
        return {"field": exc.field}
    if isinstance(exc, InsufficientBudget):
        return {
            "requested": str(exc.requested),
            "remaining": str(exc.remaining),
            "shortfall": str(exc.shortfall),
        }
    return None


def create_app(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    gateway: PaymentGateway | None = None,
    emitter: AsyncEventEmitter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Tests pass their own session factory and gateway; otherwise both are
    built from settings when the application starts.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        owns_db = app.state.session_factory is None
        if owns_db:
            _, app.state.session_factory = init_db(settings.database_url)
        if app.state.gateway is None:
            app.state.gateway = build_gateway(settings.gateway_config())
        yield
        if owns_db:
            await dispose_db()

    app = FastAPI(
        title="Engagement Engine API",
        description="Work engagement and payment lifecycle",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine_config = settings.engine_config()
    app.state.session_factory = session_factory
    app.state.gateway = gateway
    if emitter is None:
        emitter = AsyncEventEmitter()
        register_notifications(emitter, LoggingNotifier())
    app.state.emitter = emitter

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(EngagementError)
    async def engagement_exception_handler(
        request: Request, exc: EngagementError
    ) -> JSONResponse:
        """Map engine errors to HTTP responses."""
        return JSONResponse(
            status_code=error_status(exc),
            content={
                "detail": str(exc),
                "code": exc.code,
                "context": error_context(exc),
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(work_items_router, prefix="/api/v1")
    app.include_router(payments_router, prefix="/api/v1")
    app.include_router(budgets_router, prefix="/api/v1")
    app.include_router(webhooks_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
