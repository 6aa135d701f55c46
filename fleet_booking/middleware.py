"""
Request tracing middleware

Binds a request id to the structlog context so every log line emitted while
serving a request (reservation_created, snapshot_refreshed, ...) carries it.
"""
import time

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from .utils import generate_request_id

logger = structlog.get_logger()


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """
    Generates or propagates X-Request-ID and logs request timing
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or generate_request_id()

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path
        )
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start_time) * 1000
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

            logger.info("request_completed",
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2)
            )
            return response
        except Exception as e:
            logger.error("request_failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2)
            )
            raise
        finally:
            structlog.contextvars.unbind_contextvars("request_id", "method", "path")
