"""
Tests for x402 payment header construction and ERC-3009 signing.
"""
from __future__ import annotations

import base64
import json

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data

from adscronos_core.exceptions import AdscronosConfigurationError
from adscronos_protocol.payment_header import PaymentHeaderBuilder, build_payment_header
from adscronos_protocol.x402 import PaymentRequirements, decode_payment_header
from adscronos_protocol.x402_erc3009 import (
    TokenDomain,
    build_transfer_authorization,
    generate_nonce,
    validate_authorization_timing,
)

from conftest import PAYER_ADDRESS, PAYER_KEY, SELLER_WALLET

NOW = 1_700_000_000
FIXED_NONCE = "0x" + "ab" * 32


def _raw(header: str) -> dict:
    return json.loads(base64.b64decode(header))


class TestPaymentHeaderBuilder:
    """Tests for the X-PAYMENT envelope."""

    def test_envelope_shape(self, requirements):
        """Should be base64 JSON carrying the signed authorization."""
        header = PaymentHeaderBuilder().build(PAYER_KEY, requirements, now=NOW)

        raw = _raw(header)
        assert raw["x402Version"] == 1
        assert raw["scheme"] == "exact"
        assert raw["network"] == requirements.network

        payload = raw["payload"]
        assert payload["from"] == PAYER_ADDRESS
        assert payload["to"] == SELLER_WALLET
        assert payload["value"] == "5000000"
        assert payload["validAfter"] == 0
        assert payload["validBefore"] == NOW + requirements.max_timeout_seconds
        assert payload["asset"] == requirements.asset
        assert payload["nonce"].startswith("0x")
        assert len(payload["nonce"]) == 66
        assert payload["signature"].startswith("0x")
        assert len(payload["signature"]) == 132

    def test_nonces_are_unique(self, requirements):
        """Should draw a fresh nonce for every header."""
        builder = PaymentHeaderBuilder()
        nonces = {
            _raw(builder.build(PAYER_KEY, requirements, now=NOW))["payload"]["nonce"]
            for _ in range(50)
        }

        assert len(nonces) == 50

    def test_fixed_inputs_are_deterministic(self, requirements):
        """Should give the same header for the same clock and nonce."""
        builder = PaymentHeaderBuilder()

        first = builder.build(PAYER_KEY, requirements, now=NOW, nonce=FIXED_NONCE)
        second = builder.build(PAYER_KEY, requirements, now=NOW, nonce=FIXED_NONCE)

        assert first == second

    def test_signature_recovers_payer(self, requirements):
        """Should be signed by the payer over the token's EIP-712 domain."""
        builder = PaymentHeaderBuilder()
        header = decode_payment_header(builder.build(PAYER_KEY, requirements, now=NOW))
        auth = header.payload

        typed_data = build_transfer_authorization(
            builder.domain_for(requirements),
            from_addr=auth.from_address,
            to_addr=auth.to_address,
            value=int(auth.value),
            valid_after=auth.valid_after,
            valid_before=auth.valid_before,
            nonce=auth.nonce,
        )

        signable = encode_typed_data(full_message=typed_data)
        assert Account.recover_message(signable, signature=auth.signature) == PAYER_ADDRESS

    def test_domain_uses_network_chain_id(self, requirements):
        """Should map cronos-testnet to chain 338 with the asset as verifying contract."""
        domain = PaymentHeaderBuilder().domain_for(requirements)

        assert domain.chain_id == 338
        assert domain.verifying_contract == requirements.asset
        assert domain.name == "Bridged USDC (Stargate)"

    def test_unknown_network_is_a_configuration_error(self, requirements):
        """Should refuse to sign for a network without a chain id."""
        other = requirements.model_copy(update={"network": "base-sepolia"})

        with pytest.raises(AdscronosConfigurationError):
            PaymentHeaderBuilder().build(PAYER_KEY, other)

    def test_module_helper(self, requirements):
        """Should build a decodable header with the default domain."""
        header = decode_payment_header(build_payment_header(PAYER_KEY, requirements))

        assert header.payload.from_address == PAYER_ADDRESS


class TestTransferAuthorization:
    """Tests for ERC-3009 helpers."""

    def test_generate_nonce(self):
        nonce = generate_nonce()

        assert nonce.startswith("0x")
        assert len(bytes.fromhex(nonce[2:])) == 32

    def test_nonce_must_be_32_bytes(self):
        """Should reject a short nonce."""
        domain = TokenDomain("Token", "1", 338, SELLER_WALLET)

        with pytest.raises(ValueError, match="invalid_nonce_length"):
            build_transfer_authorization(domain, PAYER_ADDRESS, SELLER_WALLET, 1, 0, 10, "0x1234")

    @pytest.mark.parametrize(
        ("valid_after", "valid_before", "reason"),
        [
            (0, NOW + 60, None),
            (NOW + 10, NOW + 60, "authorization_not_yet_valid"),
            (0, NOW, "authorization_expired"),
            (NOW + 60, NOW + 60, "valid_after_must_be_before_valid_before"),
        ],
    )
    def test_timing(self, valid_after, valid_before, reason):
        ok, error = validate_authorization_timing(valid_after, valid_before, now=NOW)

        assert ok is (reason is None)
        assert error == reason


class TestPaymentRequirements:
    """Tests for the requirements wire model."""

    def test_wire_uses_camel_case(self, requirements):
        wire = requirements.to_wire()

        assert wire["payTo"] == SELLER_WALLET
        assert wire["maxAmountRequired"] == "5000000"
        assert wire["maxTimeoutSeconds"] == 300
        assert wire["mimeType"] == "application/json"

    def test_amount_must_be_integer_string(self, requirements):
        """Should reject a decimal amount."""
        data = requirements.to_wire()
        data["maxAmountRequired"] = "1.5"

        with pytest.raises(ValueError):
            PaymentRequirements.model_validate(data)

    def test_decode_rejects_garbage(self):
        with pytest.raises(ValueError, match="invalid_payment_header"):
            decode_payment_header("not base64!!")
