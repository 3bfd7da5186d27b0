"""Request correlation and access logging.

Every response carries an ``X-Request-ID`` header (the client's own value
when supplied) and every request is logged with its status and duration.
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.api.version import API_VERSION

logger = logging.getLogger(__name__)

_QUIET_PATHS = frozenset({"/api/v1/health", "/docs", "/openapi.json", "/redoc"})


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request id to ``request.state`` and to the response headers."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id

        start = time.monotonic()
        response = await call_next(request)
        elapsed_ms = (time.monotonic() - start) * 1000

        response.headers["X-Request-ID"] = request_id
        response.headers["X-API-Version"] = API_VERSION
        if request.url.path not in _QUIET_PATHS:
            logger.info(
                "%s %s -> %d in %.1fms [%s]",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
                request_id,
            )
        return response
