"""HTTP client for the commerce catalog (the canonical store)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.conflicts.ports import Snapshot
from src.integrations.http import HttpClientConfig, paginate_offset, parse_snapshot, retry_request

logger = logging.getLogger(__name__)

# Statuses meaning the catalog refused the write rather than failed.
REJECTED_WRITE_STATUS = (400, 409, 422)


class HttpCanonicalStore:
    """CanonicalStore backed by the catalog REST API.

    Endpoints (relative to ``base_url``):
        GET   /tenants/{tenant}/{entity_type}s?linked=true  paginated ids
        GET   /tenants/{tenant}/{entity_type}s/{id}         snapshot
        PATCH /tenants/{tenant}/{entity_type}s/{id}         write fields
    """

    def __init__(self, config: HttpClientConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client or config.build_client()

    def _entity_url(self, tenant_id: str, entity_type: str, entity_id: str | None = None) -> str:
        url = f"/tenants/{tenant_id}/{entity_type}s"
        return f"{url}/{entity_id}" if entity_id is not None else url

    async def list_entity_ids(self, tenant_id: str, entity_type: str) -> list[str]:
        ids: list[str] = []
        async for page in paginate_offset(
            self._client,
            self._entity_url(tenant_id, entity_type),
            params={"linked": "true"},
            max_retries=self._config.max_retries,
            retry_delays=self._config.retry_delays,
        ):
            ids.extend(str(item["id"]) for item in page)
        return ids

    async def read(self, tenant_id: str, entity_type: str, entity_id: str) -> Snapshot | None:
        response = await retry_request(
            self._client,
            "GET",
            self._entity_url(tenant_id, entity_type, entity_id),
            max_retries=self._config.max_retries,
            retry_delays=self._config.retry_delays,
            passthrough_status=(404,),
        )
        if response.status_code == 404:
            return None
        return parse_snapshot(entity_type, entity_id, response.json())

    async def write(self, tenant_id: str, entity_type: str, entity_id: str, values: dict[str, Any]) -> bool:
        response = await retry_request(
            self._client,
            "PATCH",
            self._entity_url(tenant_id, entity_type, entity_id),
            json={"fields": values},
            max_retries=self._config.max_retries,
            retry_delays=self._config.retry_delays,
            passthrough_status=REJECTED_WRITE_STATUS,
        )
        if response.status_code in REJECTED_WRITE_STATUS:
            logger.warning(
                "Catalog rejected write for %s#%s (tenant %s): %d %s",
                entity_type, entity_id, tenant_id, response.status_code, response.text[:200],
            )
            return False
        return True

    async def aclose(self) -> None:
        await self._client.aclose()
