"""Security and observability middleware for the life-graph API.

Provides:
    - API key authentication (X-API-Key header)
    - Rate limiting (per-IP, in-memory sliding window)
    - Audit logging with a per-request correlation id (X-Request-ID)
"""

from __future__ import annotations

import logging
import os
import re
import secrets
import time
import uuid
from collections import defaultdict
from typing import Callable, Set

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from .metrics import record_request_metric

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("audit")

REQUEST_ID_HEADER = "X-Request-ID"
_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")


def configure_audit_log(path: str | None = None) -> None:
    """Attach a file handler to the audit logger (LIFE_GRAPH_AUDIT_LOG)."""
    path = path or os.environ.get("LIFE_GRAPH_AUDIT_LOG")
    if not path:
        return
    for handler in audit_logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == os.path.abspath(path):
            return
    try:
        handler = logging.FileHandler(path)
    except OSError as exc:
        logger.warning("Cannot open audit log %s: %s", path, exc)
        return
    handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))
    audit_logger.addHandler(handler)


def request_id_for(request: Request) -> str:
    """Correlation id assigned by :class:`AuditLogMiddleware` (or ``-``)."""
    return getattr(request.state, "request_id", None) or "-"


# ---------------------------------------------------------------------------
# API Key Authentication
# ---------------------------------------------------------------------------

class APIKeyMiddleware(BaseHTTPMiddleware):
    """Require X-API-Key header on all non-exempt paths."""

    EXEMPT_PATHS: Set[str] = {"/v1/health", "/docs", "/openapi.json", "/redoc"}

    def __init__(self, app, api_key: str):
        super().__init__(app)
        self.api_key = api_key

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        key = request.headers.get("X-API-Key", "")
        if not key or not secrets.compare_digest(key, self.api_key):
            audit_logger.warning(
                "AUTH_FAIL ip=%s path=%s request_id=%s",
                request.client.host if request.client else "unknown",
                request.url.path,
                request_id_for(request),
            )
            return JSONResponse(
                status_code=401,
                content={"status": "error", "error": "Invalid or missing API key",
                         "request_id": request_id_for(request)},
            )

        return await call_next(request)


# ---------------------------------------------------------------------------
# Rate Limiting
# ---------------------------------------------------------------------------

class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window rate limiter (per-IP, in-memory)."""

    def __init__(self, app, max_requests: int = 120, window_seconds: int = 60):
        super().__init__(app)
        self.max_requests = max_requests
        self.window = window_seconds
        self._hits: dict[str, list[float]] = defaultdict(list)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self.max_requests <= 0:
            return await call_next(request)

        client_ip = request.client.host if request.client else "0.0.0.0"
        now = time.time()

        hits = [t for t in self._hits[client_ip] if now - t < self.window]
        self._hits[client_ip] = hits

        if len(hits) >= self.max_requests:
            audit_logger.warning(
                "RATE_LIMIT ip=%s path=%s count=%d request_id=%s",
                client_ip, request.url.path, len(hits), request_id_for(request),
            )
            return JSONResponse(
                status_code=429,
                content={"status": "error", "error": "Rate limit exceeded",
                         "request_id": request_id_for(request)},
                headers={"Retry-After": str(self.window)},
            )

        hits.append(now)
        return await call_next(request)


# ---------------------------------------------------------------------------
# Audit Logging
# ---------------------------------------------------------------------------

class AuditLogMiddleware(BaseHTTPMiddleware):
    """Assign a correlation id, log every request, record request metrics.

    An incoming ``X-Request-ID`` is reused when it looks safe; otherwise a
    fresh id is generated.  The id is echoed on every response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"

        incoming = request.headers.get(REQUEST_ID_HEADER, "")
        request_id = incoming if _SAFE_REQUEST_ID.match(incoming) else uuid.uuid4().hex[:16]
        request.state.request_id = request_id

        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers[REQUEST_ID_HEADER] = request_id

        route = request.scope.get("route")
        path_label = getattr(route, "path", None) or request.url.path
        record_request_metric(
            method=request.method,
            path=path_label,
            status=response.status_code,
            duration_seconds=elapsed,
        )

        audit_logger.info(
            "method=%s path=%s status=%d ip=%s request_id=%s elapsed_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            client_ip,
            request_id,
            elapsed * 1000,
        )

        return response
