"""
Request middleware — correlation IDs, timing, request counting.

Every HTTP request:
    • gets an X-Request-ID (taken from the caller when supplied)
    • is counted in runtime_state.total_requests
    • is timed and returned with X-Process-Time
    • sets request-scoped log context; alert routes also carry alert_id
      so acknowledgment logs can be correlated with the original alert

Probe and docs paths are counted but not logged.
"""

from __future__ import annotations

import logging
import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core import runtime_state
from backend.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

_UNLOGGED_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")
_ALERT_PATH = re.compile(r"^/api/v1/alerts/(?P<alert_id>[^/]+)/")


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        runtime_state.record_request()

        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        path = request.url.path
        client_ip = request.client.host if request.client else "unknown"

        context = {
            "request_id": request_id,
            "client_ip": client_ip,
            "endpoint": path,
            "method": request.method,
        }
        match = _ALERT_PATH.match(path)
        if match:
            context["alert_id"] = match.group("alert_id")
        set_request_context(**context)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "%s %s crashed after %.1fms", request.method, path,
                (time.perf_counter() - started) * 1000,
                extra={"status_code": 500, "endpoint": path},
            )
            set_request_context()
            raise

        duration_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if not path.startswith(_UNLOGGED_PREFIXES):
            status = response.status_code
            if status >= 500:
                level = logging.ERROR
            elif status >= 400:
                level = logging.WARNING
            else:
                level = logging.INFO
            logger.log(
                level, "%s %s → %d (%.1fms) [%s]",
                request.method, path, status, duration_ms, client_ip,
                extra={"duration_ms": round(duration_ms, 1), "status_code": status,
                       "endpoint": path},
            )
        set_request_context()
        return response
