"""Tests for the health check endpoint."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from src.api.routes import health


def _make_app(session_factory: Any) -> FastAPI:
    app = FastAPI()
    app.include_router(health.router)
    app.state.db_session_factory = session_factory
    return app


@pytest.mark.asyncio
async def test_health_postgres_up(mock_db_session: AsyncMock, mock_session_factory: Any) -> None:
    """Health endpoint should return 'healthy' when PostgreSQL answers."""
    mock_result = MagicMock()
    mock_result.scalar.return_value = 1
    mock_db_session.execute.return_value = mock_result

    transport = ASGITransport(app=_make_app(mock_session_factory))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["services"]["postgres"] == "up"
    assert data["version"] == "0.1.0"


@pytest.mark.asyncio
async def test_health_postgres_down(mock_db_session: AsyncMock, mock_session_factory: Any) -> None:
    """Health endpoint should return 'unhealthy' when PostgreSQL fails."""
    mock_db_session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))

    transport = ASGITransport(app=_make_app(mock_session_factory))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "unhealthy"
    assert data["services"]["postgres"] == "down"
