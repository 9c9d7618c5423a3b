"""
API Middleware.

Request ID injection with an access log line per request, and a
per-client rate limit whose rejection uses the same error envelope as
the rest of the API.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from src.config import get_settings
from src.logging_config import generate_trace_id, get_logger, trace_id_var

logger = get_logger(__name__)

# Never rate limited.
EXEMPT_PATHS = {"/health", "/"}


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag every request and its log lines with a request ID."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_trace_id()
        token = trace_id_var.set(request_id)
        start = time.monotonic()
        try:
            response = await call_next(request)
            elapsed_ms = round((time.monotonic() - start) * 1000, 1)

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time-Ms"] = str(elapsed_ms)
            logger.info(
                "api_request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                elapsed_ms=elapsed_ms,
            )
            return response
        finally:
            trace_id_var.reset(token)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window request limit per client IP (single instance)."""

    def __init__(self, app, max_requests: int | None = None, window_seconds: int | None = None) -> None:
        super().__init__(app)
        settings = get_settings()
        self.max_requests = max_requests or settings.rate_limit_max
        self.window_seconds = window_seconds or settings.rate_limit_window_seconds
        self._hits: defaultdict[str, list[float]] = defaultdict(list)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.monotonic()
        recent = [t for t in self._hits[client_ip] if now - t < self.window_seconds]

        if len(recent) >= self.max_requests:
            self._hits[client_ip] = recent
            logger.warning("rate_limit_exceeded", client_ip=client_ip)
            return JSONResponse(
                status_code=429,
                content={
                    "error": {
                        "kind": "rate_limited",
                        "message": "Too many requests",
                        "details": {"retry_after_seconds": self.window_seconds},
                    }
                },
                headers={"Retry-After": str(self.window_seconds)},
            )

        recent.append(now)
        self._hits[client_ip] = recent
        return await call_next(request)
