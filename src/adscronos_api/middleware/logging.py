"""Request logging middleware with correlation IDs.

- Accepts or generates ``X-Request-ID`` and echoes it on the response
- Logs method, path, status and duration for every request
- Never logs payment or authorization header values
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from adscronos_core.logging_config import generate_request_id, mask_headers, request_id_var

logger = logging.getLogger("adscronos.api")

# Headers worth recording; their values go through mask_headers first
LOGGED_HEADERS = ("content-type", "content-length", "user-agent", "x-payment", "authorization")


@dataclass
class LoggingConfig:
    """Configuration for request logging middleware."""

    # Paths to exclude from logging entirely
    exclude_paths: List[str] = field(default_factory=lambda: ["/health"])

    # Slow request threshold (ms) - logs warning if exceeded
    slow_request_threshold_ms: float = 1000.0


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Assigns a request ID and logs each request with timing."""

    def __init__(self, app, config: LoggingConfig | None = None):
        super().__init__(app)
        self.config = config or LoggingConfig()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        try:
            if request.url.path in self.config.exclude_paths:
                response = await call_next(request)
                response.headers["X-Request-ID"] = request_id
                return response

            method = request.method
            path = request.url.path
            headers = {
                name: value
                for name, value in request.headers.items()
                if name.lower() in LOGGED_HEADERS
            }
            logger.debug(
                "Request started",
                extra={"method": method, "path": path, "headers": mask_headers(headers)},
            )

            start_time = time.perf_counter()
            try:
                response = await call_next(request)
            except Exception as e:
                duration_ms = (time.perf_counter() - start_time) * 1000
                logger.error(
                    "Request failed",
                    extra={
                        "method": method,
                        "path": path,
                        "error_type": type(e).__name__,
                        "duration_ms": round(duration_ms, 2),
                    },
                )
                raise

            duration_ms = (time.perf_counter() - start_time) * 1000
            context = {
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            }
            if response.status_code >= 500:
                logger.error("Request completed with server error", extra=context)
            elif response.status_code >= 400:
                logger.warning("Request completed with client error", extra=context)
            elif duration_ms > self.config.slow_request_threshold_ms:
                logger.warning("Slow request completed", extra={**context, "slow_request": True})
            else:
                logger.info("Request completed", extra=context)

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
            return response
        finally:
            request_id_var.reset(token)
