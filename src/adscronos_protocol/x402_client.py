"""x402 HTTP payment client: GET, pay on 402, retry once."""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from adscronos_core.exceptions import PaymentFailedError

from .payment_header import PaymentHeaderBuilder, SigningKey
from .x402 import X_PAYMENT_HEADER, PaymentRequiredBody

logger = logging.getLogger("adscronos.protocol.client")


class X402Client:
    """HTTP 402 client that signs an ERC-3009 authorization and retries."""

    def __init__(
        self,
        signing_key: SigningKey,
        header_builder: Optional[PaymentHeaderBuilder] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._signing_key = signing_key
        self._builder = header_builder or PaymentHeaderBuilder()
        self._http = http_client or httpx.AsyncClient()
        self._owns_client = http_client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "X402Client":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def pay_for_resource(self, url: str, **kwargs) -> httpx.Response:
        """GET ``url``; on 402 attach a payment header and GET again.

        Any non-402 first response is returned untouched.
        """
        try:
            response = await self._http.get(url, **kwargs)
        except httpx.HTTPError as e:
            raise PaymentFailedError("client", str(e) or type(e).__name__) from e

        if response.status_code != 402:
            return response
        return await self._handle_payment_required(url, response, **kwargs)

    async def _handle_payment_required(
        self,
        url: str,
        payment_response: httpx.Response,
        **kwargs,
    ) -> httpx.Response:
        try:
            body = PaymentRequiredBody.model_validate(payment_response.json())
        except (ValueError, ValidationError) as e:
            raise PaymentFailedError("client", "402 response carried no usable paymentRequirements") from e

        requirements = body.payment_requirements
        logger.info(
            "Paying %s %s on %s for %s",
            requirements.max_amount_required,
            requirements.asset,
            requirements.network,
            url,
        )
        payment_header = self._builder.build(self._signing_key, requirements)

        headers = dict(kwargs.pop("headers", None) or {})
        headers[X_PAYMENT_HEADER] = payment_header
        try:
            response = await self._http.get(url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise PaymentFailedError("client", str(e) or type(e).__name__) from e

        if response.is_error:
            raise PaymentFailedError("client", _server_error(response))
        return response


def _server_error(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("error", "detail", "reason"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return f"HTTP {response.status_code}"


async def pay_for_resource(
    url: str,
    signing_key: SigningKey,
    header_builder: Optional[PaymentHeaderBuilder] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> httpx.Response:
    """One-shot convenience around :class:`X402Client`."""
    client = X402Client(signing_key, header_builder=header_builder, http_client=http_client)
    try:
        return await client.pay_for_resource(url)
    finally:
        await client.close()
