"""
RAG Cache Server Application Entry Point

This module defines the FastAPI application instance, registers all routers,
installs the semantic cache proxy, configures global exception handling, and
provides a test-friendly application factory.

Design Goals
------------
- Deterministic startup
- Lazy backend construction (missing credentials fail the request, not boot)
- Centralized router registration
- Global exception safety net
- Test-friendly via create_app()
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from .api import chat_routes, health_routes, ingest_routes
from .api.dependencies import ServiceContainer
from .config import Settings, get_settings
from .core.errors import (
    BackendUnavailable,
    ConfigMissing,
    InvalidPayload,
    RateLimited,
    backend_unavailable_handler,
    config_missing_handler,
    invalid_payload_handler,
    rate_limited_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from .core.logging import configure_logging
from .db.session import create_tables
from .proxy.cache_intercept import CacheInterceptMiddleware


logger = logging.getLogger("rag.app")


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Parameters
    ----------
    settings : Settings, optional
        Explicit configuration; defaults to the environment-derived
        settings. Tests pass their own instance or replace
        `app.state.services` after construction.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Starting rag-cache-server (vector=%s, kv=%s)",
            settings.vector_backend,
            settings.kv_backend,
        )

        services: ServiceContainer = app.state.services
        if services.uses_postgres():
            try:
                await create_tables(services.session_factory().kw["bind"])
            except ConfigMissing as exc:
                logger.error("Postgres backend selected but not configured: %s", exc)

        yield

        logger.info("Shutting down rag-cache-server")
        await services.aclose()

    app = FastAPI(
        title="rag-cache-server",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = ServiceContainer(settings)

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(InvalidPayload, invalid_payload_handler)
    app.add_exception_handler(RateLimited, rate_limited_handler)
    app.add_exception_handler(BackendUnavailable, backend_unavailable_handler)
    app.add_exception_handler(ConfigMissing, config_missing_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Semantic Cache Proxy
    # --------------------------------------------------------------

    app.add_middleware(
        CacheInterceptMiddleware,
        get_cache=lambda: app.state.services.semantic_cache,
        path="/chat",
    )

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(chat_routes.router)
    app.include_router(ingest_routes.router)

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
