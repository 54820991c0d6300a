"""Custom middleware for request correlation and request logging."""

import logging
import time
import uuid
from typing import Callable, Optional

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .observability import metrics_collector

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds a unique request ID to each request.

    The request ID is taken from the X-Request-ID header or generated, echoed
    back on the response, and bound into structlog's context variables so
    every structured log line emitted while handling the request carries it.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers[self.header_name] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that logs HTTP requests and records request metrics.

    Metrics are labelled by route template rather than raw path so pool and
    entry ids do not blow up label cardinality.
    """

    def __init__(self, app: ASGIApp, skip_paths: Optional[list] = None):
        super().__init__(app)
        self.skip_paths = skip_paths or ["/health", "/metrics", "/favicon.ico"]

    @staticmethod
    def _endpoint_label(request: Request) -> str:
        route = request.scope.get("route")
        return getattr(route, "path", request.url.path)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.skip_paths:
            return await call_next(request)

        start_time = time.perf_counter()
        request_id = getattr(request.state, "request_id", "unknown")
        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else "unknown",
        }

        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start_time
            metrics_collector.record_request(request.method, self._endpoint_label(request), 500, duration)
            logger.exception("HTTP request failed", extra=log_data)
            raise

        duration = time.perf_counter() - start_time
        metrics_collector.record_request(
            request.method, self._endpoint_label(request), response.status_code, duration
        )

        log_data.update({
            "status_code": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        })

        if response.status_code >= 500:
            logger.error("HTTP request completed with server error", extra=log_data)
        elif response.status_code >= 400:
            logger.warning("HTTP request completed with client error", extra=log_data)
        else:
            logger.info("HTTP request completed successfully", extra=log_data)

        return response


def setup_middleware(app, enable_logging: bool = True) -> None:
    """
    Setup all middleware on the FastAPI app.

    Args:
        app: FastAPI application instance
        enable_logging: Whether to enable request logging middleware
    """
    # Last added runs first
    if enable_logging:
        app.add_middleware(LoggingMiddleware)

    app.add_middleware(RequestIDMiddleware)