"""FastAPI middleware for request metrics, correlation IDs and access logs.

Webhook bodies carry payment data, so request logging records sizes and
outcomes only.
"""

import logging
import re
import time
import uuid
from typing import Callable, Iterable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from billing_engine.core.logging import clear_correlation_id, log_error, log_info, set_correlation_id
from billing_engine.core.metrics import (
    HTTP_REQUESTS_TOTAL,
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_PROGRESS,
)

logger = logging.getLogger("billing_engine.requests")

_UUID_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
    re.IGNORECASE,
)
# Provider object IDs look like ``evt_1NqXy...``
_PROVIDER_ID_RE = re.compile(r"/(evt|in|pi|cs|sub)_[A-Za-z0-9]+(?=/|$)")
# Organization IDs in /billing/subscriptions/{organization_id}
_ORGANIZATION_RE = re.compile(r"^(/billing/subscriptions)/[^/]+$")

PROBE_PATHS = frozenset(("/health", "/metrics"))


def normalize_path(path: str) -> str:
    """Replace IDs in a request path with ``{id}`` to bound label cardinality."""
    path = _UUID_RE.sub("{id}", path)
    path = _PROVIDER_ID_RE.sub("/{id}", path)
    return _ORGANIZATION_RE.sub(r"\1/{id}", path)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records request count, latency and in-flight requests per endpoint."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in PROBE_PATHS:
            return await call_next(request)

        method = request.method
        endpoint = normalize_path(request.url.path)
        HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=endpoint).inc()

        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, endpoint=endpoint).observe(
                time.perf_counter() - start_time
            )
            HTTP_REQUESTS_TOTAL.labels(
                method=method, endpoint=endpoint, status_code=str(status_code)
            ).inc()
            HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=endpoint).dec()


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Takes the correlation ID from the request header or generates one,
    and echoes it on the response."""

    CORRELATION_ID_HEADER = "X-Correlation-ID"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(self.CORRELATION_ID_HEADER) or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
            response.headers[self.CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            clear_correlation_id()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log: one line per completed or failed request.

    Args:
        app: ASGI application
        skip_paths: Paths that are never logged
    """

    def __init__(self, app: ASGIApp, skip_paths: Iterable[str] = PROBE_PATHS):
        super().__init__(app)
        self.skip_paths = frozenset(skip_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.skip_paths:
            return await call_next(request)

        start_time = time.perf_counter()
        context = {
            "method": request.method,
            "path": request.url.path,
            "content_length": request.headers.get("content-length"),
            "client_ip": request.client.host if request.client else None,
        }

        try:
            response = await call_next(request)
        except Exception as e:
            log_error(
                logger,
                "Request failed",
                exception=e,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                **context,
            )
            raise

        log_info(
            logger,
            "Request completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            **context,
        )
        return response


__all__ = [
    "MetricsMiddleware",
    "CorrelationIdMiddleware",
    "RequestLoggingMiddleware",
    "normalize_path",
]
