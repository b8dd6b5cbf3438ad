"""x402 facilitator client: the two-phase verify / settle exchange."""
from __future__ import annotations

import logging
from typing import Any, Optional, Type, TypeVar

import httpx
from pydantic import ValidationError

from adscronos_core.config import AdscronosSettings
from adscronos_core.exceptions import AdscronosConfigurationError, PaymentFailedError

from .x402 import (
    X402_VERSION,
    X402_VERSION_HEADER,
    PaymentRequirements,
    SettleResponse,
    VerifyResponse,
    X402Model,
)

logger = logging.getLogger("adscronos.protocol.facilitator")

ResponseT = TypeVar("ResponseT", bound=X402Model)


class FacilitatorClient:
    """Talks to one facilitator base URL.

    ``verify`` never changes state; a ``VerifyResponse`` with ``is_valid``
    false is a normal result the caller must branch on. ``settle`` must only
    follow a successful verify. Neither call is retried: HTTP and transport
    failures raise :class:`PaymentFailedError` carrying the facilitator's
    own error text when it sent one.
    """

    def __init__(
        self,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout

    @classmethod
    def from_settings(
        cls,
        settings: AdscronosSettings,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "FacilitatorClient":
        return cls(settings.x402.facilitator_url, http_client=http_client)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def verify(self, payment_header: str, requirements: PaymentRequirements) -> VerifyResponse:
        return await self._post("verification", "/verify", payment_header, requirements, VerifyResponse)

    async def settle(self, payment_header: str, requirements: PaymentRequirements) -> SettleResponse:
        return await self._post("settlement", "/settle", payment_header, requirements, SettleResponse)

    def _timeout_for(self, requirements: PaymentRequirements) -> float:
        bound = float(requirements.max_timeout_seconds)
        if self._timeout is None:
            return bound
        return min(self._timeout, bound)

    async def _post(
        self,
        phase: str,
        path: str,
        payment_header: str,
        requirements: PaymentRequirements,
        response_type: Type[ResponseT],
    ) -> ResponseT:
        body = {
            "x402Version": X402_VERSION,
            "paymentHeader": payment_header,
            "paymentRequirements": requirements.to_wire(),
        }
        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}{path}",
                json=body,
                headers={X402_VERSION_HEADER: str(X402_VERSION)},
                timeout=self._timeout_for(requirements),
            )
        except httpx.HTTPError as e:
            logger.error("x402 %s request failed: %s", phase, e)
            raise PaymentFailedError(phase, str(e) or type(e).__name__) from e

        data = _json_or_none(response)
        if response.is_error:
            detail = _error_detail(data) or f"HTTP {response.status_code} {response.reason_phrase}".strip()
            logger.error("x402 %s rejected by facilitator: %s", phase, detail)
            raise PaymentFailedError(phase, detail)

        if data is None:
            raise PaymentFailedError(phase, "facilitator returned a non-JSON body")
        try:
            return response_type.model_validate(data)
        except ValidationError as e:
            raise PaymentFailedError(phase, "malformed facilitator response") from e


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _error_detail(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        for key in ("invalidReason", "error", "message"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def create_payment_requirements(
    settings: AdscronosSettings,
    description: str,
    price: Optional[str] = None,
    mime_type: str = "application/json",
) -> PaymentRequirements:
    """Requirements for a resource sold by this deployment's seller wallet."""
    x402 = settings.x402
    if not x402.seller_wallet:
        raise AdscronosConfigurationError(
            "x402 seller wallet is not configured",
            setting="x402.seller_wallet",
        )
    return PaymentRequirements(
        scheme="exact",
        network=x402.network,
        pay_to=x402.seller_wallet,
        asset=x402.asset,
        description=description,
        mime_type=mime_type,
        max_amount_required=price or x402.default_price,
        max_timeout_seconds=x402.max_timeout_seconds,
    )
