"""Tests for application assembly and the global error handlers."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from src.api.deps import get_conflict_engine
from src.api.main import create_app
from src.conflicts.engine import ConflictEngine


def test_routes_registered() -> None:
    paths = {route.path for route in create_app().routes}

    assert "/api/v1/health" in paths
    assert "/api/v1/tenants/{tenant_id}/conflicts/detect" in paths
    assert "/api/v1/conflicts/{conflict_id}/resolve" in paths


@pytest.mark.asyncio
async def test_unexpected_error_returns_500() -> None:
    engine = MagicMock(spec=ConflictEngine)
    engine.get_metrics = AsyncMock(side_effect=RuntimeError("database exploded"))
    app = create_app()
    app.dependency_overrides[get_conflict_engine] = lambda: engine

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/api/v1/tenants/t1/conflicts/metrics", headers={"X-Request-ID": "req-9"})

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Internal server error"
