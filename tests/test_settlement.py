"""
Tests for the verify-then-settle flow and the nonce ledger.
"""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from adscronos_core.exceptions import PaymentFailedError, PaymentRequiredError
from adscronos_protocol.payment_header import PaymentHeaderBuilder
from adscronos_protocol.x402 import SettleResponse, VerifyResponse, decode_payment_header
from adscronos_protocol.x402_settlement import (
    InMemorySettlementStore,
    X402Settlement,
    X402SettlementStatus,
    X402Settler,
)

from conftest import PAYER_ADDRESS, PAYER_KEY, SELLER_WALLET

LONG_AGO = 1_600_000_000


@pytest.fixture
def facilitator():
    facilitator = AsyncMock()
    facilitator.verify.return_value = VerifyResponse(is_valid=True)
    facilitator.settle.return_value = SettleResponse(
        event="payment.settled",
        tx_hash="0xabc",
        block_number=7,
        from_address=PAYER_ADDRESS,
        to_address=SELLER_WALLET,
        value="5000000",
        timestamp="2024-01-01T00:00:00Z",
    )
    return facilitator


@pytest.fixture
def settlement_store():
    return InMemorySettlementStore()


@pytest.fixture
def settler(facilitator, settlement_store):
    return X402Settler(facilitator, settlement_store)


@pytest.fixture
def payment_header(requirements):
    return PaymentHeaderBuilder().build(PAYER_KEY, requirements)


class TestVerifyAndSettle:
    """Tests for X402Settler.verify_and_settle."""

    async def test_success(self, settler, facilitator, payment_header, requirements):
        """Should settle and return the SETTLED record."""
        settlement = await settler.verify_and_settle(payment_header, requirements)

        assert settlement.status == X402SettlementStatus.SETTLED
        assert settlement.tx_hash == "0xabc"
        assert settlement.block_number == 7
        assert settlement.payer == PAYER_ADDRESS
        assert settlement.amount == "5000000"
        assert settlement.settled_at is not None
        assert settlement.to_address == SELLER_WALLET
        assert settlement.chain_timestamp == "2024-01-01T00:00:00Z"
        payment = settlement.to_dict()
        assert payment["from"] == PAYER_ADDRESS
        assert payment["to"] == SELLER_WALLET
        assert payment["value"] == "5000000"
        assert payment["timestamp"] == "2024-01-01T00:00:00Z"
        facilitator.verify.assert_awaited_once_with(payment_header, requirements)
        facilitator.settle.assert_awaited_once_with(payment_header, requirements)

    async def test_invalid_never_settles(self, settler, facilitator, settlement_store, payment_header, requirements):
        """Should raise 402 with the facilitator's reason and skip settle."""
        facilitator.verify.return_value = VerifyResponse(is_valid=False, invalid_reason="expired")

        with pytest.raises(PaymentRequiredError) as exc_info:
            await settler.verify_and_settle(payment_header, requirements)

        assert exc_info.value.reason == "expired"
        assert exc_info.value.http_status == 402
        facilitator.settle.assert_not_awaited()
        nonce = decode_payment_header(payment_header).payload.nonce
        assert await settlement_store.get(nonce) is None

    async def test_malformed_header(self, settler, facilitator, requirements):
        """Should reject without calling the facilitator."""
        with pytest.raises(PaymentRequiredError) as exc_info:
            await settler.verify_and_settle("%%%", requirements)

        assert exc_info.value.reason == "invalid_payment_header"
        facilitator.verify.assert_not_awaited()

    async def test_expired_authorization_is_rejected_locally(self, settler, facilitator, settlement_store, requirements):
        """Should refuse an authorization past validBefore without contacting the facilitator."""
        header = PaymentHeaderBuilder().build(PAYER_KEY, requirements, now=LONG_AGO)

        with pytest.raises(PaymentRequiredError) as exc_info:
            await settler.verify_and_settle(header, requirements)

        assert exc_info.value.reason == "authorization_expired"
        facilitator.verify.assert_not_awaited()
        facilitator.settle.assert_not_awaited()
        nonce = decode_payment_header(header).payload.nonce
        assert await settlement_store.get(nonce) is None

    async def test_nonce_reuse_is_rejected(self, settler, facilitator, payment_header, requirements):
        """Should refuse a second settle of the same authorization."""
        await settler.verify_and_settle(payment_header, requirements)

        with pytest.raises(PaymentRequiredError) as exc_info:
            await settler.verify_and_settle(payment_header, requirements)

        assert exc_info.value.reason == "nonce_already_used"
        assert facilitator.settle.await_count == 1

    async def test_settle_failure_event(self, settler, facilitator, payment_header, requirements):
        """Should mark FAILED and answer 402 with the facilitator's error."""
        facilitator.settle.return_value = SettleResponse(event="payment.failed", error="transfer_reverted")

        with pytest.raises(PaymentRequiredError) as exc_info:
            await settler.verify_and_settle(payment_header, requirements)

        assert exc_info.value.reason == "transfer_reverted"
        nonce = decode_payment_header(payment_header).payload.nonce
        record = await settler.check_settlement(nonce)
        assert record.status == X402SettlementStatus.FAILED
        assert record.error == "transfer_reverted"

    async def test_settle_transport_failure_allows_retry(self, settler, facilitator, payment_header, requirements):
        """Should record FAILED, re-raise, and let the same nonce be retried."""
        facilitator.settle.side_effect = [PaymentFailedError("settlement", "timeout"), facilitator.settle.return_value]

        with pytest.raises(PaymentFailedError):
            await settler.verify_and_settle(payment_header, requirements)

        settlement = await settler.verify_and_settle(payment_header, requirements)
        assert settlement.status == X402SettlementStatus.SETTLED


class TestInMemorySettlementStore:
    """Tests for the nonce claim."""

    async def test_claim_once(self, settlement_store):
        record = X402Settlement(
            nonce="0x01",
            status=X402SettlementStatus.VERIFIED,
            payer=PAYER_ADDRESS,
            amount="1",
            network="cronos-testnet",
        )

        assert await settlement_store.claim(record) is True
        assert await settlement_store.claim(record) is False
        stored = await settlement_store.get("0x01")
        assert stored.status == X402SettlementStatus.SETTLING

    async def test_update_unknown_nonce(self, settlement_store):
        with pytest.raises(ValueError):
            await settlement_store.update_status("0xmissing", X402SettlementStatus.FAILED)
