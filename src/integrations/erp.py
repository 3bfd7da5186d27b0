"""HTTP client for the ERP integration (read-only remote source)."""

from __future__ import annotations

import logging

import httpx

from src.conflicts.errors import DetectionSourceUnavailable
from src.conflicts.ports import Snapshot
from src.integrations.http import HttpClientConfig, parse_snapshot, retry_request

logger = logging.getLogger(__name__)


class HttpRemoteSourceClient:
    """RemoteSourceClient backed by the ERP REST API.

    Transport failures and error statuses that survive the retries are
    reported as ``DetectionSourceUnavailable``; a 404 means the ERP has no
    such entity.
    """

    def __init__(self, config: HttpClientConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client or config.build_client()

    async def fetch(self, tenant_id: str, entity_type: str, entity_id: str) -> Snapshot | None:
        try:
            response = await retry_request(
                self._client,
                "GET",
                f"/tenants/{tenant_id}/{entity_type}s/{entity_id}",
                max_retries=self._config.max_retries,
                retry_delays=self._config.retry_delays,
                passthrough_status=(404,),
            )
        except httpx.HTTPStatusError as exc:
            raise DetectionSourceUnavailable(entity_type, entity_id, f"HTTP {exc.response.status_code}") from exc
        except httpx.RequestError as exc:
            raise DetectionSourceUnavailable(entity_type, entity_id, str(exc) or type(exc).__name__) from exc

        if response.status_code == 404:
            return None
        return parse_snapshot(entity_type, entity_id, response.json())

    async def aclose(self) -> None:
        await self._client.aclose()
