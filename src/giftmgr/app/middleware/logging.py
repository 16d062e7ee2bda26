"""Request logging middleware.

Provides one canonical log line per request with trace ID propagation.
"""

import logging
import re
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from giftmgr.app.config import get_settings
from giftmgr.app.logging import clear_trace_context, set_trace_id
from giftmgr.app.metrics.collector import HTTP_REQUEST_DURATION, HTTP_REQUESTS_TOTAL
from giftmgr.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)

_SKIP_PATHS = ("/health", "/metrics")

# Replace dynamic IDs with placeholders
_PATH_PATTERNS = [
    (
        re.compile(r"^/api/v1/instances/(?!bulk/|available-images$)[^/]+"),
        "/api/v1/instances/:id",
    ),
]

# Whitelist of known endpoints for metrics (cardinality control)
_KNOWN_ENDPOINTS = frozenset({
    "/api/v1/instances",
    "/api/v1/instances/:id",
    "/api/v1/instances/:id/start",
    "/api/v1/instances/:id/stop",
    "/api/v1/instances/:id/restart",
    "/api/v1/instances/:id/logs",
    "/api/v1/instances/:id/stats",
    "/api/v1/instances/:id/events",
    "/api/v1/instances/bulk/start",
    "/api/v1/instances/bulk/stop",
    "/api/v1/instances/available-images",
    "/api/v1/system/health",
    "/api/v1/system/docker",
    "/api/v1/system/docker/test",
    "/api/v1/system/ports",
    "/api/v1/system/ports/next",
    "/api/v1/system/sync",
    "/api/v1/events",
})


def _normalize_path(path: str) -> str:
    """Normalize path and apply whitelist for cardinality control."""
    for pattern, replacement in _PATH_PATTERNS:
        path = pattern.sub(replacement, path)
    return path if path in _KNOWN_ENDPOINTS else "other"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request logging with trace ID propagation.

    - Sets trace_id from X-Trace-ID header or generates a new one
    - Logs one line per request with status and duration
    - Records HTTP metrics
    - Adds X-Trace-ID header to response
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        trace_id = set_trace_id(request.headers.get("x-trace-id"))
        slow_threshold_ms = get_settings().logging.slow_threshold_ms

        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.monotonic() - start) * 1000
            logger.error(
                "Request failed",
                extra={
                    "event": LogEvent.REQUEST_FAILED,
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": duration_ms,
                    "trace_id": trace_id,
                },
            )
            raise
        finally:
            clear_trace_context()

        duration_seconds = time.monotonic() - start
        duration_ms = duration_seconds * 1000
        path = request.url.path

        if path not in _SKIP_PATHS:
            endpoint = _normalize_path(path)
            HTTP_REQUESTS_TOTAL.labels(
                method=request.method,
                endpoint=endpoint,
                status=str(response.status_code),
            ).inc()
            HTTP_REQUEST_DURATION.labels(
                method=request.method,
                endpoint=endpoint,
            ).observe(duration_seconds)

            logger.info(
                "Request completed",
                extra={
                    "event": LogEvent.REQUEST_COMPLETE,
                    "method": request.method,
                    "path": path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "trace_id": trace_id,
                },
            )

            if duration_ms > slow_threshold_ms:
                logger.warning(
                    "Slow request detected",
                    extra={
                        "event": LogEvent.REQUEST_SLOW,
                        "method": request.method,
                        "path": path,
                        "status": response.status_code,
                        "duration_ms": duration_ms,
                        "threshold_ms": slow_threshold_ms,
                        "trace_id": trace_id,
                    },
                )

        response.headers["X-Trace-ID"] = trace_id
        return response
