"""Structured logging configuration with correlation IDs for request tracing.

This module provides structured JSON logging with:
- Correlation IDs for tracing requests across the API and webhook tasks
- Contextual fields (request, publisher, session)
- Masking of webhook secrets, signatures and payment headers
"""
from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
publisher_id_var: ContextVar[Optional[str]] = ContextVar("publisher_id", default=None)
session_id_var: ContextVar[Optional[str]] = ContextVar("session_id", default=None)

MASK_PATTERN = "***REDACTED***"

SENSITIVE_FIELDS = frozenset({
    "secret",
    "webhook_secret",
    "webhookSecret",
    "signature",
    "private_key",
    "privateKey",
    "signing_key",
    "payment_header",
    "paymentHeader",
    "authorization",
    "x-payment",
    "x-webhook-signature",
    "token",
    "password",
})

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
    "processName", "relativeCreated", "thread", "threadName", "exc_info",
    "exc_text", "stack_info", "taskName", "request_id", "publisher_id",
    "session_id",
})


class CorrelationIDFilter(logging.Filter):
    """Logging filter that adds correlation context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        record.publisher_id = publisher_id_var.get()
        record.session_id = session_id_var.get()
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for attr in ("request_id", "publisher_id", "session_id"):
            value = getattr(record, attr, None)
            if value:
                log_data[attr] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = mask_sensitive_data({key: value})[key]

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON structured logging (True) or simple format (False)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(CorrelationIDFilter())
    root_logger.addHandler(console_handler)


def generate_request_id() -> str:
    """Generate a new request ID."""
    return f"req_{uuid.uuid4().hex[:16]}"


class LogContext:
    """Context manager for temporary logging context."""

    def __init__(
        self,
        request_id: Optional[str] = None,
        publisher_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ):
        self._values = {
            request_id_var: request_id,
            publisher_id_var: publisher_id,
            session_id_var: session_id,
        }
        self._tokens: list = []

    def __enter__(self) -> "LogContext":
        for var, value in self._values.items():
            if value:
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()


def is_sensitive_key(key: str) -> bool:
    """Check if a key name indicates sensitive data."""
    if key in SENSITIVE_FIELDS or key.lower() in SENSITIVE_FIELDS:
        return True
    key_lower = key.lower().replace("-", "_")
    return key_lower in SENSITIVE_FIELDS or any(
        marker in key_lower for marker in ("secret", "private_key", "signature", "password")
    )


def mask_sensitive_data(
    data: Any,
    additional_fields: Optional[Sequence[str]] = None,
    _depth: int = 0,
    _max_depth: int = 10,
) -> Any:
    """Recursively mask sensitive data in a data structure.

    Args:
        data: The data structure to mask (dict, list, or scalar)
        additional_fields: Additional field names to mask

    Returns:
        Copy of data with sensitive values masked
    """
    if _depth > _max_depth:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if is_sensitive_key(str(key)) or (additional_fields and key in additional_fields):
                result[key] = MASK_PATTERN
            else:
                result[key] = mask_sensitive_data(value, additional_fields, _depth + 1, _max_depth)
        return result

    if isinstance(data, (list, tuple)):
        return type(data)(
            mask_sensitive_data(item, additional_fields, _depth + 1, _max_depth)
            for item in data
        )

    return data


def mask_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Mask sensitive HTTP headers."""
    return {
        key: (MASK_PATTERN if is_sensitive_key(key) else value)
        for key, value in headers.items()
    }
