"""Unified exception hierarchy for adscronos.

All adscronos-specific exceptions inherit from AdscronosException, enabling:
- Consistent error handling across packages
- HTTP status code mapping in the API layer
- Structured error responses with error codes

Usage:
    from adscronos_core.exceptions import (
        AdscronosNotFoundError,
        AdscronosConfigurationError,
        PaymentFailedError,
    )

    delivery = await store.webhook_deliveries.get(delivery_id)
    if delivery is None:
        raise AdscronosNotFoundError("WebhookDelivery", delivery_id)

All exceptions have:
- error_code: Machine-readable error code (e.g., "VALIDATION_ERROR")
- http_status: Appropriate HTTP status code for API responses
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to API response format
"""
from __future__ import annotations

from typing import Any, Optional


class AdscronosException(Exception):
    """Base exception for all adscronos errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., "VALIDATION_ERROR")
        details: Optional additional context
    """

    error_code: str = "ADSCRONOS_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Validation & Input Errors (4xx)
# =============================================================================

class AdscronosValidationError(AdscronosException):
    """Invalid input data or parameters."""

    error_code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)


class AdscronosNotFoundError(AdscronosException):
    """Requested resource not found."""

    error_code = "NOT_FOUND"
    http_status = 404

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        message = f"{resource_type} '{resource_id}' not found"
        details = details or {}
        details["resource_type"] = resource_type
        details["resource_id"] = resource_id
        super().__init__(message, details=details)


class AdscronosAuthenticationError(AdscronosException):
    """No authenticated principal on the request."""

    error_code = "AUTHENTICATION_ERROR"
    http_status = 401


class AdscronosAuthorizationError(AdscronosException):
    """Authenticated principal lacks the role or ownership required."""

    error_code = "AUTHORIZATION_ERROR"
    http_status = 403


class AdscronosConflictError(AdscronosException):
    """Resource conflict (e.g., a session that is already completed)."""

    error_code = "CONFLICT"
    http_status = 409


class AdscronosGoneError(AdscronosException):
    """Resource existed but is no longer usable (e.g., expired ad session)."""

    error_code = "GONE"
    http_status = 410


# =============================================================================
# Configuration & Upstream Errors
# =============================================================================

class AdscronosConfigurationError(AdscronosException):
    """A setting the operation depends on is missing.

    Raised before any side effect is performed: no network call, no signature.
    """

    error_code = "CONFIGURATION_ERROR"
    http_status = 503

    def __init__(
        self,
        message: str,
        setting: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if setting:
            details["setting"] = setting
        super().__init__(message, details=details)


class AdscronosUpstreamError(AdscronosException):
    """A remote collaborator (facilitator, publisher endpoint) failed."""

    error_code = "UPSTREAM_ERROR"
    http_status = 502

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        detail: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if service:
            details["service"] = service
        if detail:
            details["upstream_detail"] = detail
        super().__init__(message, details=details)
        self.detail = detail


# =============================================================================
# Payment Errors
# =============================================================================

class PaymentRequiredError(AdscronosException):
    """Payment is missing, invalid, or could not be settled.

    Surfaced to API callers as HTTP 402 with the facilitator's reason.
    """

    error_code = "PAYMENT_REQUIRED"
    http_status = 402

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if reason:
            details["reason"] = reason
        super().__init__(message, details=details)
        self.reason = reason


class PaymentFailedError(AdscronosUpstreamError):
    """Transport or HTTP failure while talking to the facilitator or a paid resource."""

    error_code = "PAYMENT_FAILED"
    http_status = 500

    def __init__(
        self,
        phase: str,
        detail: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["phase"] = phase
        super().__init__(
            f"Payment {phase} failed: {detail}",
            service="x402",
            detail=detail,
            details=details,
        )
        self.phase = phase


__all__ = [
    "AdscronosException",
    "AdscronosValidationError",
    "AdscronosNotFoundError",
    "AdscronosAuthenticationError",
    "AdscronosAuthorizationError",
    "AdscronosConflictError",
    "AdscronosGoneError",
    "AdscronosConfigurationError",
    "AdscronosUpstreamError",
    "PaymentRequiredError",
    "PaymentFailedError",
]
