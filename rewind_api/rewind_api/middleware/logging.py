"""Access logging for the Rewind API."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("rewind.access")

# Header names whose values are never written to the log.
_SENSITIVE_HEADERS: frozenset[str] = frozenset({"authorization", "cookie", "x-api-key"})
_MASK = "***"

_CORRELATION_HEADER = "X-Correlation-ID"

# Endpoints that change engine state; logged at INFO even when they succeed
# so that destructive actions are visible without enabling DEBUG.
_MUTATING_METHODS: frozenset[str] = frozenset({"POST", "PUT", "DELETE"})


def _safe_headers(request: Request) -> dict[str, str]:
    return {key: (_MASK if key.lower() in _SENSITIVE_HEADERS else value) for key, value in request.headers.items()}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with method, path, status, duration and user.

    The correlation id comes from the ``X-Correlation-ID`` header or is
    generated, and is echoed on the response.  Reads that succeed are
    logged at DEBUG; mutations and failures are logged at INFO and above.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(_CORRELATION_HEADER) or str(uuid.uuid4())
        start = time.monotonic()
        response: Response | None = None
        try:
            response = await call_next(request)
            response.headers[_CORRELATION_HEADER] = correlation_id
            return response
        finally:
            status_code = response.status_code if response is not None else 500
            payload: dict[str, Any] = {
                "method": request.method,
                "path": request.url.path,
                "query": str(request.url.query) if request.url.query else None,
                "status_code": status_code,
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
                "client": request.client.host if request.client else None,
                "correlation_id": correlation_id,
                "user": request.headers.get("x-user") or None,
                "headers": _safe_headers(request),
            }
            if status_code >= 500:
                logger.error("request completed", extra={"request": payload})
            elif status_code >= 400:
                logger.warning("request completed", extra={"request": payload})
            elif request.method in _MUTATING_METHODS:
                logger.info("request completed", extra={"request": payload})
            else:
                logger.debug("request completed", extra={"request": payload})
