"""Conflict engine FastAPI application entry point.

Configures the FastAPI app with:
- Lifespan events for the database pool and the catalog/ERP HTTP clients
- Request id middleware
- Health and conflict routes
- OpenAPI documentation at /docs (debug mode only)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.api.middleware import RequestIDMiddleware
from src.api.routes import conflicts, health
from src.api.version import API_VERSION
from src.conflicts.engine import build_engine
from src.core.config import get_settings
from src.core.database import create_engine
from src.integrations.catalog import HttpCanonicalStore
from src.integrations.erp import HttpRemoteSourceClient
from src.integrations.http import HttpClientConfig

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the database pool, collaborators and engine; close them on shutdown."""
    settings = get_settings()

    # -- PostgreSQL ---
    engine, session_factory = create_engine(settings)
    app.state.db_engine = engine
    app.state.db_session_factory = session_factory
    logger.info("PostgreSQL connection pool initialized")

    # -- Catalog and ERP ---
    catalog = HttpCanonicalStore(
        HttpClientConfig(
            base_url=settings.catalog_api_url,
            token=settings.catalog_api_token.get_secret_value() or None,
            timeout=settings.http_timeout_seconds,
            max_retries=settings.http_max_retries,
        )
    )
    erp = HttpRemoteSourceClient(
        HttpClientConfig(
            base_url=settings.erp_api_url,
            token=settings.erp_api_token.get_secret_value() or None,
            timeout=settings.http_timeout_seconds,
            max_retries=settings.http_max_retries,
        )
    )
    logger.info("Catalog client at %s, ERP client at %s", settings.catalog_api_url, settings.erp_api_url)

    app.state.conflict_engine = build_engine(settings, session_factory, catalog, erp)

    yield

    # -- Shutdown ---
    await catalog.aclose()
    await erp.aclose()
    await engine.dispose()
    logger.info("All connections closed")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s  %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        description="Detects and resolves conflicts between the commerce catalog and the ERP",
        version=API_VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(RequestIDMiddleware)

    app.include_router(health.router)
    app.include_router(conflicts.router)

    # -- Error Handlers ---
    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.warning("Validation error [%s]: %s", request_id, exc)
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc), "request_id": request_id},
        )

    @app.exception_handler(Exception)  # Top-level handler for anything the routes did not map
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception("Unhandled error [%s]: %s", request_id, exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "request_id": request_id},
        )

    return app


# Application instance used by uvicorn
app = create_app()
