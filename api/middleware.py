"""Middleware for request tracking and correlation."""

from collections.abc import Callable
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import structlog


logger = structlog.get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Give every request an id, bind it to the log context and echo it back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
            process_time = time.perf_counter() - start_time

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{process_time:.4f}"
            logger.debug(
                "✅ Request completed",
                status_code=response.status_code,
                process_time=f"{process_time:.4f}s",
            )
            return response

        except Exception as e:
            logger.error(
                "❌ Request failed",
                error=str(e),
                error_type=type(e).__name__,
                process_time=f"{time.perf_counter() - start_time:.4f}s",
            )
            raise

        finally:
            structlog.contextvars.unbind_contextvars("request_id", "method", "path")
