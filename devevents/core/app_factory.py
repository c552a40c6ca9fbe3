"""Application factory for the FastAPI app.

Centralizes app construction (logging, rate limit lifecycle, middleware,
handlers, routers) so tests can build isolated instances.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from devevents.api.routes import health_router
from devevents.core.config import Settings, settings as default_settings
from devevents.core.exception_handlers import setup_exception_handlers
from devevents.core.logging import configure_logging
from devevents.core.middleware import request_context_middleware, request_id_middleware
from devevents.core.rate_limit import RateLimitService


def create_app(
    app_settings: Settings | None = None,
    rate_limits: RateLimitService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to build from; defaults to the global settings.
        rate_limits: Pre-built service (tests inject one with fake backends).

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    service = rate_limits or RateLimitService.from_settings(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        service.start()
        try:
            yield
        finally:
            await service.aclose()

    app = FastAPI(
        title="Dev Events API",
        description="Developer event publishing and booking API with distributed rate limiting.",
        version="0.1.0",
        lifespan=lifespan,
    )
    # Available before startup too, so dependencies work with a bare TestClient
    app.state.rate_limits = service

    # Registered last runs first: request id wraps the request context
    app.middleware("http")(request_context_middleware)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(health_router)

    return app
