"""Middleware for the adscronos API.

- Request ID tracking and request logging
- Exception handling (RFC 7807)
"""
from .logging import LoggingConfig, StructuredLoggingMiddleware
from .exceptions import (
    RFC7807Error,
    create_error_response,
    get_request_id,
    register_exception_handlers,
)

__all__ = [
    "LoggingConfig",
    "StructuredLoggingMiddleware",
    "RFC7807Error",
    "create_error_response",
    "get_request_id",
    "register_exception_handlers",
]
