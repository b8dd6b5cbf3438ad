"""x402 payment protocol adapters."""

from .x402 import (
    PAYMENT_SETTLED_EVENT,
    X402_VERSION,
    X402_VERSION_HEADER,
    X_PAYMENT_HEADER,
    PaymentAuthorization,
    PaymentHeader,
    PaymentRequiredBody,
    PaymentRequirements,
    SettleResponse,
    VerifyResponse,
    decode_payment_header,
    encode_payment_header,
)
from .x402_erc3009 import (
    TokenDomain,
    build_transfer_authorization,
    generate_nonce,
    sign_transfer_authorization,
    validate_authorization_timing,
)
from .payment_header import PaymentHeaderBuilder, build_payment_header
from .facilitator import FacilitatorClient, create_payment_requirements
from .x402_settlement import (
    DatabaseSettlementStore,
    InMemorySettlementStore,
    X402Settlement,
    X402SettlementStatus,
    X402Settler,
)
from .x402_client import X402Client, pay_for_resource

__all__ = [
    # Wire types
    "PAYMENT_SETTLED_EVENT",
    "X402_VERSION",
    "X402_VERSION_HEADER",
    "X_PAYMENT_HEADER",
    "PaymentAuthorization",
    "PaymentHeader",
    "PaymentRequiredBody",
    "PaymentRequirements",
    "SettleResponse",
    "VerifyResponse",
    "decode_payment_header",
    "encode_payment_header",
    # ERC-3009
    "TokenDomain",
    "build_transfer_authorization",
    "generate_nonce",
    "sign_transfer_authorization",
    "validate_authorization_timing",
    # Header / facilitator
    "PaymentHeaderBuilder",
    "build_payment_header",
    "FacilitatorClient",
    "create_payment_requirements",
    # Settlement
    "DatabaseSettlementStore",
    "InMemorySettlementStore",
    "X402Settlement",
    "X402SettlementStatus",
    "X402Settler",
    # Client
    "X402Client",
    "pay_for_resource",
]
