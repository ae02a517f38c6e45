"""Custodia API service.

FastAPI application providing:
- Delivery workflow endpoints with segregation-of-duties enforcement
- Stock ledger writes and inventory reads
- Read projections over deliveries and stock movements

This module provides the app factory pattern for creating configured
FastAPI instances suitable for testing and production deployment.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from custodia.api.middleware import ErrorHandlerMiddleware, RequestIDMiddleware
from custodia.api.middleware.errors import build_error_response
from custodia.api.routers import deliveries_router, inventory_router, returns_router
from custodia.services.notifications import WebhookPublisher, build_publisher

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import Request
    from fastapi.responses import JSONResponse

    from custodia.core.config import Settings
    from custodia.services.notifications import EventPublisher

logger = logging.getLogger(__name__)

API_TITLE = "Custodia API"
API_DESCRIPTION = """
Chain-of-custody core for humanitarian aid deliveries.

## Namespaces

- **/api/deliveries/** - Delivery workflow and delivery reads
- **/api/inventory/** - Stock ledger and inventory reads

Mutating endpoints require the `X-Actor-Id` header set by the gateway.

## Documentation

- OpenAPI schema: `/api/openapi.json`
- Swagger UI: `/api/docs`
- ReDoc: `/api/redoc`
"""


def create_app(
    settings: Settings | None = None,
    *,
    publisher: EventPublisher | None = None,
) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Args:
        settings: Settings instance; loaded from the environment when not
            provided. Pass explicit settings for tests.
        publisher: Transition event publisher; built from the notification
            settings when not provided.

    Returns:
        Configured FastAPI application ready to serve requests.

    Example:
        app = create_app()

        # For testing
        test_settings = Settings(database=DatabaseSettings(url="sqlite:///:memory:"))
        app = create_app(test_settings, publisher=RecordingPublisher())
    """
    if settings is None:
        from custodia.core.settings import get_settings

        settings = get_settings()

    if publisher is None:
        publisher = build_publisher(settings.notifications)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        if isinstance(app.state.publisher, WebhookPublisher):
            await app.state.publisher.close()

        from custodia.db import close_engine

        await close_engine()

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=settings.app_version,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.publisher = publisher

    _add_middleware(app, settings)
    _add_exception_handlers(app)
    _include_routers(app)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint for container orchestration."""
        return {"status": "healthy"}

    logger.info("Custodia API application created (version=%s)", settings.app_version)

    return app


def _add_middleware(app: FastAPI, settings: Settings) -> None:
    """Add middleware to the application.

    Starlette wraps middleware in reverse order: the last one added is the
    outermost, so the request ID is set before errors are rendered.
    """
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)

    allowed_origins = [] if settings.is_production else ["http://localhost:3000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )


def _add_exception_handlers(app: FastAPI) -> None:
    """Render request schema failures with the standard error envelope."""

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return build_error_response(
            error="validation_error",
            message="Request validation failed",
            status_code=422,
            detail={"errors": [_error_summary(error) for error in exc.errors()]},
        )


def _error_summary(error: dict) -> dict[str, object]:
    return {
        "loc": [str(part) for part in error.get("loc", ())],
        "msg": error.get("msg"),
        "type": error.get("type"),
    }


def _include_routers(app: FastAPI) -> None:
    """Include API namespace routers under /api."""
    app.include_router(deliveries_router, prefix="/api")
    app.include_router(inventory_router, prefix="/api")
    app.include_router(returns_router, prefix="/api")
