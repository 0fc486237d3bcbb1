"""HTTP request logging middleware."""

import logging
import time
import uuid
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("vertigo-proxy")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs one line per request with status and duration.

    Streaming responses are logged when their headers are sent, so the
    duration covers time to first byte rather than the whole stream.
    """

    def __init__(self, app, exclude_paths: list | None = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or ["/docs", "/redoc", "/openapi.json", "/favicon.ico"]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if any(request.url.path.startswith(path) for path in self.exclude_paths):
            return await call_next(request)

        request_id = uuid.uuid4().hex[:12]
        start_time = time.time()
        client_ip = request.client.host if request.client else "-"

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"[{request_id}] {request.method} {request.url.path} failed after "
                f"{duration_ms:.1f}ms from {client_ip}: {exc}"
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"[{request_id}] {request.method} {request.url.path} -> "
            f"{response.status_code} in {duration_ms:.1f}ms from {client_ip}"
        )
        response.headers["X-Request-ID"] = request_id
        return response
