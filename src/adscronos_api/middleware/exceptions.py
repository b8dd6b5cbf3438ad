"""Global exception handlers for the adscronos API.

Provides RFC 7807 Problem Details compliant error responses with:
- Proper HTTP status codes
- Request ID correlation
- No internal details on 5xx responses outside dev

RFC 7807 Problem Details Format:
{
    "type": "https://api.adscronos.io/errors/<error-type>",
    "title": "Human-readable error title",
    "status": 400,
    "detail": "Detailed error description",
    "instance": "/api/resource/123",
    "request_id": "req_abc123",
    ... additional fields
}
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from adscronos_core.exceptions import AdscronosException, AdscronosUpstreamError

logger = logging.getLogger("adscronos.api.errors")

# Base URL for error type URIs
ERROR_TYPE_BASE = "https://api.adscronos.io/errors"


@dataclass
class RFC7807Error:
    """RFC 7807 Problem Details representation."""
    type: str
    title: str
    status: int
    detail: str
    instance: str
    request_id: str
    extensions: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to RFC 7807 compliant dictionary."""
        result = {
            "type": self.type,
            "title": self.title,
            "status": self.status,
            "detail": self.detail,
            "instance": self.instance,
            "request_id": self.request_id,
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
        if self.extensions:
            result.update(self.extensions)
        return result


# Error type mappings for consistent error URIs
ERROR_TYPES = {
    "VALIDATION_ERROR": ("validation-error", "Validation Error"),
    "NOT_FOUND": ("not-found", "Resource Not Found"),
    "AUTHENTICATION_ERROR": ("authentication-required", "Authentication Required"),
    "AUTHORIZATION_ERROR": ("forbidden", "Access Denied"),
    "CONFLICT": ("conflict", "Resource Conflict"),
    "GONE": ("gone", "Resource Gone"),
    "PAYMENT_REQUIRED": ("payment-required", "Payment Required"),
    "PAYMENT_FAILED": ("payment-failed", "Payment Failed"),
    "UPSTREAM_ERROR": ("upstream-error", "Upstream Service Error"),
    "CONFIGURATION_ERROR": ("service-unavailable", "Service Unavailable"),
    "INTERNAL_ERROR": ("internal-error", "Internal Server Error"),
    "BAD_REQUEST": ("bad-request", "Bad Request"),
    "METHOD_NOT_ALLOWED": ("method-not-allowed", "Method Not Allowed"),
}

_STATUS_TO_CODE = {
    400: "BAD_REQUEST",
    401: "AUTHENTICATION_ERROR",
    403: "AUTHORIZATION_ERROR",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    410: "GONE",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "UPSTREAM_ERROR",
    503: "CONFIGURATION_ERROR",
}


def get_request_id(request: Request) -> str:
    """Extract request ID from request state or headers."""
    # Check request state first (set by logging middleware)
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return request.headers.get("X-Request-ID", "unknown")


def is_production(request: Request) -> bool:
    """Only dev shows verbose errors; sandbox and prod are treated alike."""
    settings = getattr(request.app.state, "settings", None)
    return settings is None or settings.environment != "dev"


def create_error_response(
    error_code: str,
    message: str,
    status_code: int,
    request_id: str,
    details: dict | None = None,
    instance: str = "",
) -> JSONResponse:
    """
    Create an RFC 7807 compliant error response.

    Args:
        error_code: Internal error code (e.g., "VALIDATION_ERROR")
        message: Human-readable error message
        status_code: HTTP status code
        request_id: Request correlation ID
        details: Additional error details (extensions)
        instance: Request path/instance identifier
    """
    type_info = ERROR_TYPES.get(
        error_code,
        (error_code.lower().replace("_", "-"), error_code.replace("_", " ").title()),
    )

    error = RFC7807Error(
        type=f"{ERROR_TYPE_BASE}/{type_info[0]}",
        title=type_info[1],
        status=status_code,
        detail=message,
        instance=instance,
        request_id=request_id,
        extensions=details,
    )

    return JSONResponse(
        status_code=status_code,
        content=error.to_dict(),
        headers={"X-Request-ID": request_id},
        media_type="application/problem+json",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Request-body shape errors become 400 with a field list."""
        request_id = get_request_id(request)

        errors = []
        for error in exc.errors():
            errors.append({
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            })

        logger.warning(
            "Validation error: %d field(s) failed",
            len(errors),
            extra={"path": request.url.path, "errors": errors},
        )

        return create_error_response(
            error_code="VALIDATION_ERROR",
            message="One or more fields failed validation",
            status_code=400,
            request_id=request_id,
            details={"errors": errors},
            instance=request.url.path,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        request_id = get_request_id(request)
        error_code = _STATUS_TO_CODE.get(exc.status_code, "INTERNAL_ERROR")

        log = logger.error if exc.status_code >= 500 else logger.warning
        log("HTTP error %d: %s", exc.status_code, exc.detail, extra={"path": request.url.path})

        return create_error_response(
            error_code=error_code,
            message=str(exc.detail) if exc.detail else "An error occurred",
            status_code=exc.status_code,
            request_id=request_id,
            instance=request.url.path,
        )

    @app.exception_handler(AdscronosException)
    async def adscronos_exception_handler(
        request: Request, exc: AdscronosException
    ) -> JSONResponse:
        """Handle all adscronos exceptions with RFC 7807 format."""
        request_id = get_request_id(request)

        if exc.http_status >= 500:
            logger.error(
                "Server error: %s - %s",
                exc.error_code,
                exc.message,
                extra={"error_code": exc.error_code, "details": exc.details},
            )
        else:
            logger.warning(
                "Client error: %s - %s",
                exc.error_code,
                exc.message,
                extra={"error_code": exc.error_code},
            )

        # Upstream failures keep the remote service's own error text everywhere
        if exc.http_status >= 500 and is_production(request) and not isinstance(exc, AdscronosUpstreamError):
            message = "Service temporarily unavailable" if exc.http_status == 503 else "Internal server error"
            details = None
        else:
            message = exc.message
            details = exc.details or None

        return create_error_response(
            error_code=exc.error_code,
            message=message,
            status_code=exc.http_status,
            request_id=request_id,
            details=details,
            instance=request.url.path,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all: the exception is logged, the client gets a generic body."""
        request_id = get_request_id(request)

        logger.error(
            "Unhandled exception: %s: %s",
            type(exc).__name__,
            exc,
            extra={
                "exception_type": type(exc).__name__,
                "path": request.url.path,
                "method": request.method,
            },
            exc_info=True,
        )

        return create_error_response(
            error_code="INTERNAL_ERROR",
            message="Unexpected error",
            status_code=500,
            request_id=request_id,
            instance=request.url.path,
        )
