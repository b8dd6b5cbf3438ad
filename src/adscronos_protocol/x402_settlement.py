"""x402 settlement module - drives verify then settle against the facilitator.

Implements:
- Settlement status tracking (VERIFIED -> SETTLING -> SETTLED | FAILED)
- A ledger keyed by the authorization nonce, written before settle is called
- X402Settler, the single entry point route handlers use
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol

from adscronos_core.database import Database
from adscronos_core.exceptions import PaymentFailedError, PaymentRequiredError

from .facilitator import FacilitatorClient
from .x402 import PaymentHeader, PaymentRequirements, decode_payment_header
from .x402_erc3009 import validate_authorization_timing

logger = logging.getLogger("adscronos.protocol.settlement")


class X402SettlementStatus(Enum):
    """Settlement status enum."""
    VERIFIED = "verified"
    SETTLING = "settling"
    SETTLED = "settled"
    FAILED = "failed"


# A nonce in one of these states cannot be settled again
_CLAIMED = (X402SettlementStatus.SETTLING, X402SettlementStatus.SETTLED)


@dataclass(slots=True)
class X402Settlement:
    """Settlement tracking for one signed authorization."""
    nonce: str
    status: X402SettlementStatus
    payer: str
    amount: str
    network: str
    tx_hash: str | None = None
    block_number: int | None = None
    from_address: str | None = None
    to_address: str | None = None
    value: str | None = None
    chain_timestamp: str | None = None
    error: str | None = None
    settled_at: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "nonce": self.nonce,
            "status": self.status.value,
            "payer": self.payer,
            "amount": self.amount,
            "network": self.network,
            "txHash": self.tx_hash,
            "blockNumber": self.block_number,
            "from": self.from_address,
            "to": self.to_address,
            "value": self.value,
            "timestamp": self.chain_timestamp,
            "settledAt": self.settled_at.isoformat() if self.settled_at else None,
        }


class X402SettlementStore(Protocol):
    """Protocol for settlement persistence."""

    async def claim(self, settlement: X402Settlement) -> bool:
        """Record ``settlement`` as SETTLING unless its nonce is already claimed."""
        ...

    async def get(self, nonce: str) -> X402Settlement | None:
        ...

    async def update_status(
        self,
        nonce: str,
        status: X402SettlementStatus,
        **kwargs,
    ) -> None:
        """Update settlement status and optional fields."""
        ...


class InMemorySettlementStore:
    """In-memory implementation of X402SettlementStore."""

    def __init__(self):
        self._settlements: dict[str, X402Settlement] = {}
        self._lock = asyncio.Lock()

    async def claim(self, settlement: X402Settlement) -> bool:
        async with self._lock:
            existing = self._settlements.get(settlement.nonce)
            if existing is not None and existing.status in _CLAIMED:
                return False
            self._settlements[settlement.nonce] = replace(
                settlement, status=X402SettlementStatus.SETTLING
            )
            return True

    async def get(self, nonce: str) -> X402Settlement | None:
        settlement = self._settlements.get(nonce)
        return replace(settlement) if settlement else None

    async def update_status(
        self,
        nonce: str,
        status: X402SettlementStatus,
        **kwargs,
    ) -> None:
        settlement = self._settlements.get(nonce)
        if settlement is None:
            raise ValueError(f"settlement_not_found: {nonce}")

        settlement.status = status
        for key, value in kwargs.items():
            if hasattr(settlement, key):
                setattr(settlement, key, value)


class DatabaseSettlementStore:
    """PostgreSQL implementation of X402SettlementStore."""

    _UPDATABLE = (
        "tx_hash",
        "block_number",
        "from_address",
        "to_address",
        "value",
        "chain_timestamp",
        "settled_at",
        "error",
    )

    def __init__(self, db: Database):
        self._db = db

    async def claim(self, settlement: X402Settlement) -> bool:
        # Re-claim is only allowed from VERIFIED or FAILED
        nonce = await self._db.fetchval(
            """
            INSERT INTO x402_settlements (nonce, status, payer, amount, network, created_at)
            VALUES ($1, 'settling', $2, $3, $4, $5)
            ON CONFLICT (nonce) DO UPDATE SET status = 'settling', error = NULL
            WHERE x402_settlements.status IN ('verified', 'failed')
            RETURNING nonce
            """,
            settlement.nonce,
            settlement.payer,
            settlement.amount,
            settlement.network,
            settlement.created_at,
        )
        return nonce is not None

    async def get(self, nonce: str) -> X402Settlement | None:
        row = await self._db.fetchrow("SELECT * FROM x402_settlements WHERE nonce = $1", nonce)
        if not row:
            return None
        return X402Settlement(
            nonce=row["nonce"],
            status=X402SettlementStatus(row["status"]),
            payer=row["payer"],
            amount=row["amount"],
            network=row["network"],
            tx_hash=row["tx_hash"],
            block_number=row["block_number"],
            from_address=row["from_address"],
            to_address=row["to_address"],
            value=row["value"],
            chain_timestamp=row["chain_timestamp"],
            error=row["error"],
            settled_at=row["settled_at"],
            created_at=row["created_at"],
        )

    async def update_status(
        self,
        nonce: str,
        status: X402SettlementStatus,
        **kwargs,
    ) -> None:
        sets = ["status = $2"]
        args: list = [nonce, status.value]
        idx = 3
        for key, value in kwargs.items():
            if key in self._UPDATABLE:
                sets.append(f"{key} = ${idx}")
                args.append(value)
                idx += 1
        await self._db.execute(
            f"UPDATE x402_settlements SET {', '.join(sets)} WHERE nonce = $1",
            *args,
        )


class X402Settler:
    """Verifies a payment header with the facilitator, then settles it.

    An authorization outside its validity window is rejected before the
    facilitator is contacted. Settle is never called for a header the
    facilitator rejected. The nonce is claimed in the store before settle so a
    second request carrying the same authorization is refused locally instead
    of racing the facilitator.
    """

    def __init__(self, facilitator: FacilitatorClient, store: X402SettlementStore):
        self.facilitator = facilitator
        self.store = store

    async def verify_and_settle(
        self,
        payment_header: str,
        requirements: PaymentRequirements,
    ) -> X402Settlement:
        header = self._decode(payment_header)
        auth = header.payload

        timely, timing_error = validate_authorization_timing(auth.valid_after, auth.valid_before)
        if not timely:
            logger.info("x402 payment from %s rejected locally: %s", auth.from_address, timing_error)
            raise PaymentRequiredError(f"Payment authorization rejected: {timing_error}", reason=timing_error)

        verification = await self.facilitator.verify(payment_header, requirements)
        if not verification.is_valid:
            reason = verification.invalid_reason or "invalid_payment"
            logger.info("x402 payment from %s rejected at verify: %s", auth.from_address, reason)
            raise PaymentRequiredError(f"Payment verification failed: {reason}", reason=reason)

        settlement = X402Settlement(
            nonce=auth.nonce.lower(),
            status=X402SettlementStatus.VERIFIED,
            payer=auth.from_address,
            amount=auth.value,
            network=header.network,
        )
        if not await self.store.claim(settlement):
            logger.warning("x402 nonce %s already used", settlement.nonce)
            raise PaymentRequiredError("Payment authorization already used", reason="nonce_already_used")

        try:
            result = await self.facilitator.settle(payment_header, requirements)
        except PaymentFailedError as e:
            await self.store.update_status(settlement.nonce, X402SettlementStatus.FAILED, error=e.detail)
            raise

        if not result.settled:
            reason = result.error or result.event
            await self.store.update_status(settlement.nonce, X402SettlementStatus.FAILED, error=reason)
            logger.warning("x402 settlement for nonce %s failed: %s", settlement.nonce, reason)
            raise PaymentRequiredError(f"Payment settlement failed: {reason}", reason=reason)

        await self.store.update_status(
            settlement.nonce,
            X402SettlementStatus.SETTLED,
            tx_hash=result.tx_hash,
            block_number=result.block_number,
            from_address=result.from_address,
            to_address=result.to_address,
            value=result.value,
            chain_timestamp=result.timestamp,
            settled_at=datetime.now(timezone.utc),
        )
        updated = await self.store.get(settlement.nonce)
        if updated is None:
            raise ValueError(f"settlement_lost: {settlement.nonce}")
        logger.info("x402 payment settled: %s", updated.tx_hash)
        return updated

    async def check_settlement(self, nonce: str) -> X402Settlement | None:
        """Check settlement status from store."""
        return await self.store.get(nonce.lower())

    @staticmethod
    def _decode(payment_header: str) -> PaymentHeader:
        try:
            return decode_payment_header(payment_header)
        except ValueError as e:
            raise PaymentRequiredError("Malformed payment header", reason="invalid_payment_header") from e


__all__ = [
    "X402SettlementStatus",
    "X402Settlement",
    "X402SettlementStore",
    "InMemorySettlementStore",
    "DatabaseSettlementStore",
    "X402Settler",
]
