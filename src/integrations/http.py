"""Shared HTTP plumbing for the catalog and ERP clients.

Provides client configuration, a retrying request helper with exponential
backoff, offset pagination and snapshot payload parsing.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from src.conflicts.ports import Snapshot

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAYS = (1.0, 2.0, 4.0)
RETRY_ON_STATUS = (429, 500, 502, 503, 504)


@dataclass
class HttpClientConfig:
    """Connection settings for one upstream API.

    Attributes:
        base_url: Root URL of the API.
        token: Optional bearer token.
        timeout: Per-request timeout in seconds.
        max_retries: Retries after the first attempt for retryable failures.
    """

    base_url: str
    token: str | None = None
    timeout: float = 30.0
    max_retries: int = 3
    retry_delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS

    def build_client(self, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.AsyncClient(
            base_url=self.base_url.rstrip("/"),
            headers=headers,
            timeout=self.timeout,
            transport=transport,
        )


async def retry_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_retries: int = 3,
    retry_delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS,
    passthrough_status: tuple[int, ...] = (),
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying 429/5xx responses and transport errors.

    Args:
        client: The httpx AsyncClient to use.
        method: HTTP method.
        url: URL relative to the client's base URL.
        max_retries: Retries after the first attempt.
        retry_delays: Delay in seconds before each retry.
        passthrough_status: Error statuses returned to the caller instead
            of raising (e.g. 404 for "not found").
        **kwargs: Forwarded to ``client.request``.

    Raises:
        httpx.HTTPStatusError: Non-retryable error status, or retries exhausted.
        httpx.RequestError: Transport failure after all retries.
    """
    for attempt in range(max_retries + 1):
        delay = retry_delays[min(attempt, len(retry_delays) - 1)] if retry_delays else 0.0
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.RequestError as exc:
            if attempt >= max_retries:
                raise
            logger.warning(
                "%s %s failed: %s, retrying in %.1fs (attempt %d/%d)",
                method, url, exc, delay, attempt + 1, max_retries,
            )
            await asyncio.sleep(delay)
            continue

        if response.status_code in RETRY_ON_STATUS and attempt < max_retries:
            logger.warning(
                "%s %s returned %d, retrying in %.1fs (attempt %d/%d)",
                method, url, response.status_code, delay, attempt + 1, max_retries,
            )
            await asyncio.sleep(delay)
            continue

        if response.status_code in passthrough_status:
            return response
        response.raise_for_status()
        return response

    raise RuntimeError("Unexpected retry loop exit")


async def paginate_offset(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    page_size: int = 100,
    results_key: str = "results",
    max_pages: int = 1000,
    **retry_kwargs: Any,
) -> AsyncIterator[list[dict[str, Any]]]:
    """Yield pages from an offset/limit paginated endpoint."""
    offset = 0
    request_params = dict(params or {})

    for _ in range(max_pages):
        request_params.update({"offset": offset, "limit": page_size})
        response = await retry_request(client, "GET", url, params=request_params, **retry_kwargs)
        data = response.json()

        results = data.get(results_key) or []
        if not results:
            return
        yield results

        offset += len(results)
        total = data.get("total")
        if (total is not None and offset >= total) or len(results) < page_size:
            return


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def parse_snapshot(entity_type: str, entity_id: str, payload: dict[str, Any]) -> Snapshot:
    """Build a snapshot from an ``{"fields": {...}, "updated_at": ...}`` body."""
    return Snapshot(
        entity_type=entity_type,
        entity_id=entity_id,
        values=dict(payload.get("fields") or {}),
        updated_at=parse_timestamp(payload.get("updated_at")),
    )
