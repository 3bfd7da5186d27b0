"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from src.api.version import API_VERSION

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/api/v1/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Report service health.

    Returns ``{"status": "healthy" | "unhealthy", "services": {"postgres": "up" | "down"}, "version": ...}``.
    """
    services: dict[str, str] = {}

    try:
        session_factory = request.app.state.db_session_factory
        async with session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            services["postgres"] = "up"
    except (SQLAlchemyError, ConnectionError, OSError):
        logger.warning("PostgreSQL health check failed")
        services["postgres"] = "down"

    return {
        "status": "healthy" if all(s == "up" for s in services.values()) else "unhealthy",
        "services": services,
        "version": API_VERSION,
    }
