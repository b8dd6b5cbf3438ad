"""x402 HTTP 402 Payment Required wire types.

Implements:
- PaymentRequirements issued by a resource server in its 402 body
- The signed payment header envelope sent back in ``X-PAYMENT``
- Facilitator verify/settle response shapes

Reference: https://www.x402.org/
"""
from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

X402_VERSION = 1
X_PAYMENT_HEADER = "X-PAYMENT"
X402_VERSION_HEADER = "X402-Version"
PAYMENT_SETTLED_EVENT = "payment.settled"


class X402Model(BaseModel):
    """Base model: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PaymentRequirements(X402Model):
    """What the resource server will accept as payment. Immutable once issued."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    scheme: Literal["exact"] = "exact"
    network: str
    pay_to: str = Field(alias="payTo")
    asset: str
    description: str = ""
    mime_type: str = Field(default="application/json", alias="mimeType")
    max_amount_required: str = Field(alias="maxAmountRequired")
    max_timeout_seconds: int = Field(default=300, alias="maxTimeoutSeconds", gt=0)

    @field_validator("max_amount_required")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        if not v.isdigit():
            raise ValueError("maxAmountRequired must be an integer string in the token's smallest unit")
        return v


class PaymentAuthorization(X402Model):
    """ERC-3009 authorization fields plus signature, as carried in the header."""

    from_address: str = Field(alias="from")
    to_address: str = Field(alias="to")
    value: str
    valid_after: int = Field(alias="validAfter")
    valid_before: int = Field(alias="validBefore")
    nonce: str
    signature: str
    asset: str


class PaymentHeader(X402Model):
    """Versioned envelope, base64 JSON encoded into ``X-PAYMENT``."""

    x402_version: Literal[1] = Field(default=X402_VERSION, alias="x402Version")
    scheme: str = "exact"
    network: str
    payload: PaymentAuthorization


class VerifyResponse(X402Model):
    is_valid: bool = Field(alias="isValid")
    invalid_reason: Optional[str] = Field(default=None, alias="invalidReason")


class SettleResponse(X402Model):
    event: str
    tx_hash: Optional[str] = Field(default=None, alias="txHash")
    from_address: Optional[str] = Field(default=None, alias="from")
    to_address: Optional[str] = Field(default=None, alias="to")
    value: Optional[str] = None
    block_number: Optional[int] = Field(default=None, alias="blockNumber")
    timestamp: Optional[str] = None
    error: Optional[str] = None

    @field_validator("value", "timestamp", mode="before")
    @classmethod
    def coerce_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, (int, float)) else v

    @property
    def settled(self) -> bool:
        return self.event == PAYMENT_SETTLED_EVENT


class PaymentRequiredBody(X402Model):
    """Body of a 402 response from an x402-gated resource."""

    error: str = "Payment Required"
    x402_version: int = Field(default=X402_VERSION, alias="x402Version")
    payment_requirements: PaymentRequirements = Field(alias="paymentRequirements")


def encode_payment_header(header: PaymentHeader) -> str:
    """Serialize the envelope for transport (base64-encoded JSON)."""
    data = json.dumps(header.to_wire(), separators=(",", ":"))
    return base64.b64encode(data.encode()).decode()


def decode_payment_header(value: str) -> PaymentHeader:
    """Parse an ``X-PAYMENT`` value back to a PaymentHeader.

    Raises:
        ValueError: if the value is not base64 JSON of a payment envelope
    """
    try:
        data = json.loads(base64.b64decode(value, validate=True))
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"invalid_payment_header: {exc}") from exc
    try:
        return PaymentHeader.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"invalid_payment_header: {exc.error_count()} field error(s)") from exc


__all__ = [
    "X402_VERSION",
    "X_PAYMENT_HEADER",
    "X402_VERSION_HEADER",
    "PAYMENT_SETTLED_EVENT",
    "PaymentRequirements",
    "PaymentAuthorization",
    "PaymentHeader",
    "VerifyResponse",
    "SettleResponse",
    "PaymentRequiredBody",
    "encode_payment_header",
    "decode_payment_header",
]
