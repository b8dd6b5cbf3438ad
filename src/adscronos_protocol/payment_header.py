"""Builds the signed ``X-PAYMENT`` header for a set of payment requirements."""
from __future__ import annotations

import logging
import time
from typing import Mapping, Optional, Union

from eth_account import Account
from eth_account.signers.local import LocalAccount

from adscronos_core.config import NETWORK_CHAIN_IDS, AdscronosSettings
from adscronos_core.exceptions import AdscronosConfigurationError

from .x402 import (
    X402_VERSION,
    PaymentAuthorization,
    PaymentHeader,
    PaymentRequirements,
    encode_payment_header,
)
from .x402_erc3009 import (
    TokenDomain,
    build_transfer_authorization,
    generate_nonce,
    sign_transfer_authorization,
)

logger = logging.getLogger("adscronos.protocol.payment_header")

SigningKey = Union[str, LocalAccount]

DEFAULT_TOKEN_NAME = "Bridged USDC (Stargate)"
DEFAULT_TOKEN_VERSION = "1"


class PaymentHeaderBuilder:
    """Signs ERC-3009 authorizations and wraps them in the x402 envelope.

    The token domain name and version are fixed per deployment; the chain id
    comes from the requirements' network and the verifying contract is the
    requirements' asset.
    """

    def __init__(
        self,
        token_name: str = DEFAULT_TOKEN_NAME,
        token_version: str = DEFAULT_TOKEN_VERSION,
        chain_ids: Optional[Mapping[str, int]] = None,
    ):
        self.token_name = token_name
        self.token_version = token_version
        self.chain_ids = dict(chain_ids or NETWORK_CHAIN_IDS)

    @classmethod
    def from_settings(cls, settings: AdscronosSettings) -> "PaymentHeaderBuilder":
        return cls(
            token_name=settings.x402.token_name,
            token_version=settings.x402.token_version,
        )

    def domain_for(self, requirements: PaymentRequirements) -> TokenDomain:
        chain_id = self.chain_ids.get(requirements.network)
        if chain_id is None:
            raise AdscronosConfigurationError(
                f"No chain id configured for network {requirements.network}",
                setting="network",
            )
        return TokenDomain(
            name=self.token_name,
            version=self.token_version,
            chain_id=chain_id,
            verifying_contract=requirements.asset,
        )

    def build(
        self,
        signing_key: SigningKey,
        requirements: PaymentRequirements,
        *,
        now: Optional[int] = None,
        nonce: Optional[str] = None,
    ) -> str:
        """Return the base64 envelope for one payment attempt.

        ``now`` and ``nonce`` default to the wall clock and a fresh random
        nonce; with both fixed the output is deterministic.
        """
        account = Account.from_key(signing_key) if isinstance(signing_key, str) else signing_key
        current = now if now is not None else int(time.time())
        nonce = nonce or generate_nonce()
        valid_after = 0
        valid_before = current + requirements.max_timeout_seconds

        typed_data = build_transfer_authorization(
            self.domain_for(requirements),
            from_addr=account.address,
            to_addr=requirements.pay_to,
            value=int(requirements.max_amount_required),
            valid_after=valid_after,
            valid_before=valid_before,
            nonce=nonce,
        )
        signature = sign_transfer_authorization(account.key, typed_data)

        header = PaymentHeader(
            x402_version=X402_VERSION,
            scheme=requirements.scheme,
            network=requirements.network,
            payload=PaymentAuthorization(
                from_address=account.address,
                to_address=requirements.pay_to,
                value=requirements.max_amount_required,
                valid_after=valid_after,
                valid_before=valid_before,
                nonce=nonce,
                signature=signature,
                asset=requirements.asset,
            ),
        )
        logger.debug(
            "Built payment header from %s to %s on %s",
            account.address,
            requirements.pay_to,
            requirements.network,
        )
        return encode_payment_header(header)


def build_payment_header(signing_key: SigningKey, requirements: PaymentRequirements) -> str:
    """Build a header with the default token domain."""
    return PaymentHeaderBuilder().build(signing_key, requirements)
