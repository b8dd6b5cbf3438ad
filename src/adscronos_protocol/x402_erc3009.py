"""ERC-3009 TransferWithAuthorization support for x402 payments.

ERC-3009 lets a payer authorize a token transfer off-chain with an EIP-712
signature; the facilitator submits it on-chain. This module builds the typed
data, signs it with eth-account and checks its validity window.

Reference: https://eips.ethereum.org/EIPS/eip-3009
"""
from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from typing import Any

from eth_account import Account

# EIP-712 domain fields for the token contract
EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

TRANSFER_WITH_AUTHORIZATION_TYPE = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
    {"name": "nonce", "type": "bytes32"},
]

NONCE_BYTES = 32


@dataclass(frozen=True, slots=True)
class TokenDomain:
    """EIP-712 domain of the token contract that verifies the authorization."""
    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


def generate_nonce() -> str:
    """32 cryptographically random bytes as a 0x-prefixed hex string."""
    return "0x" + secrets.token_bytes(NONCE_BYTES).hex()


def build_transfer_authorization(
    domain: TokenDomain,
    from_addr: str,
    to_addr: str,
    value: int,
    valid_after: int,
    valid_before: int,
    nonce: str,
) -> dict[str, Any]:
    """Build EIP-712 typed data for TransferWithAuthorization.

    Args:
        domain: Token contract domain (name, version, chain id, address)
        from_addr: Payer address (0x-prefixed hex)
        to_addr: Payee address (0x-prefixed hex)
        value: Transfer amount in token's smallest unit
        valid_after: Unix timestamp when authorization becomes valid
        valid_before: Unix timestamp when authorization expires
        nonce: 0x-prefixed hex string of exactly 32 bytes

    Returns:
        EIP-712 typed data dict with keys: types, primaryType, domain, message
    """
    nonce_bytes = bytes.fromhex(nonce[2:] if nonce.startswith("0x") else nonce)
    if len(nonce_bytes) != NONCE_BYTES:
        raise ValueError(f"invalid_nonce_length: expected 32 bytes, got {len(nonce_bytes)}")

    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_TYPE,
            "TransferWithAuthorization": TRANSFER_WITH_AUTHORIZATION_TYPE,
        },
        "primaryType": "TransferWithAuthorization",
        "domain": domain.to_dict(),
        "message": {
            "from": from_addr,
            "to": to_addr,
            "value": int(value),
            "validAfter": int(valid_after),
            "validBefore": int(valid_before),
            "nonce": nonce_bytes,
        },
    }


def sign_transfer_authorization(private_key: str | bytes, typed_data: dict[str, Any]) -> str:
    """Sign typed data with the payer's key. Returns a 0x-prefixed 65-byte signature."""
    signed = Account.sign_typed_data(private_key, full_message=typed_data)
    return "0x" + bytes(signed.signature).hex()


def validate_authorization_timing(
    valid_after: int,
    valid_before: int,
    now: int | None = None,
) -> tuple[bool, str | None]:
    """Check that authorization timing is valid.

    Validates that:
    - valid_after is not in the future
    - valid_before is not in the past
    - valid_after < valid_before

    Returns:
        Tuple of (is_valid, error_reason).
    """
    current_time = now if now is not None else int(time.time())

    if valid_after >= valid_before:
        return False, "valid_after_must_be_before_valid_before"

    if current_time < valid_after:
        return False, "authorization_not_yet_valid"

    if current_time >= valid_before:
        return False, "authorization_expired"

    return True, None


__all__ = [
    "EIP712_DOMAIN_TYPE",
    "TRANSFER_WITH_AUTHORIZATION_TYPE",
    "NONCE_BYTES",
    "TokenDomain",
    "generate_nonce",
    "build_transfer_authorization",
    "sign_transfer_authorization",
    "validate_authorization_timing",
]
