"""Middleware components for the Rewind API."""

from __future__ import annotations

from rewind_api.middleware.json_formatter import JSONFormatter
from rewind_api.middleware.logging import RequestLoggingMiddleware

__all__ = [
    "JSONFormatter",
    "RequestLoggingMiddleware",
]
