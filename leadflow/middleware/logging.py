"""
Request logging middleware.

Every API request gets a request id (taken from X-Request-ID when the
caller sends one) bound into structlog context vars, so delivery logs
emitted while handling the request carry it too.
"""
import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, route, status and duration of each request."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.monotonic()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            route=request.url.path,
            method=request.method,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                status_code=500,
                duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                error=str(e),
            )
            raise

        logger.info(
            "request_completed",
            service=getattr(request.state, "service", None),
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
