"""
Request middleware: correlation IDs and request metrics
"""

import time
import uuid
from typing import Callable

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from storyteller.core.metrics import http_request_duration_seconds, http_requests_total

logger = structlog.get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Adds a unique request ID to every request.

    The ID is taken from the X-Request-ID header when the client sends one,
    stored on request.state, bound into the structlog context for every log
    line emitted while handling the request, and echoed in the response.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration_seconds=time.time() - start_time,
                error=str(exc),
                exc_info=True,
            )
            raise

        duration = time.time() - start_time
        http_requests_total.labels(
            method=request.method,
            endpoint=request.url.path,
            status_code=str(response.status_code),
        ).inc()
        http_request_duration_seconds.labels(method=request.method, endpoint=request.url.path).observe(duration)
        logger.info("request_completed", status_code=response.status_code, duration_seconds=duration)

        response.headers["X-Request-ID"] = request_id
        return response


def get_request_id(request: Request) -> str:
    """Return the request ID assigned by RequestIDMiddleware."""
    return getattr(request.state, "request_id", "unknown")
