"""Signed publisher webhook delivery with attempt tracking and manual replay."""
from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional, Set
from uuid import uuid4

import httpx

from .exceptions import AdscronosConfigurationError, AdscronosNotFoundError
from .logging_config import LogContext
from .models import DeliveryStatus, Publisher, WebhookDelivery, utcnow
from .repositories import Store

logger = logging.getLogger("adscronos.webhooks")

TIMESTAMP_HEADER = "x-webhook-timestamp"
NONCE_HEADER = "x-webhook-nonce"
SIGNATURE_HEADER = "x-webhook-signature"


def serialize_payload(payload: dict) -> str:
    """Compact JSON used both as the signed content and the request body."""
    return json.dumps(payload, separators=(",", ":"), default=str)


def sign_payload(secret: str, payload: str, timestamp: str, nonce: str) -> str:
    """Hex HMAC-SHA256 of ``"{timestamp}.{nonce}.{payload}"``.

    The receiver recomputes this with its copy of the shared secret and the
    ``x-webhook-timestamp`` / ``x-webhook-nonce`` headers it was sent.
    """
    signed_content = f"{timestamp}.{nonce}.{payload}"
    return hmac.new(
        secret.encode(),
        signed_content.encode(),
        hashlib.sha256,
    ).hexdigest()


def verify_signature(
    secret: str,
    payload: str,
    timestamp: str,
    nonce: str,
    signature: str,
    tolerance_seconds: int = 300,
    now_ms: Optional[int] = None,
) -> bool:
    """Verify a delivered webhook on the receiving side.

    Args:
        secret: The publisher's webhook secret
        payload: The raw request body
        timestamp: ``x-webhook-timestamp`` header (ms since epoch)
        nonce: ``x-webhook-nonce`` header
        signature: ``x-webhook-signature`` header
        tolerance_seconds: Maximum age of the timestamp (default 5 minutes)

    Returns:
        True if the signature matches and the timestamp is fresh
    """
    try:
        ts = int(timestamp)
    except ValueError:
        return False

    now = now_ms if now_ms is not None else int(time.time() * 1000)
    if abs(now - ts) > tolerance_seconds * 1000:
        return False

    expected = sign_payload(secret, payload, timestamp, nonce)
    return hmac.compare_digest(expected, signature)


@dataclass
class DeliveryResult:
    """Outcome of one delivery attempt."""
    status: DeliveryStatus
    response_status: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == DeliveryStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status.value}
        if self.response_status is not None:
            result["responseStatus"] = self.response_status
        if self.error:
            result["error"] = self.error
        return result


class WebhookDeliveryService:
    """Delivers persisted webhook records to publisher endpoints.

    Every attempt re-signs the payload with a fresh timestamp and nonce.
    Transport errors schedule ``next_attempt_at`` one retry delay ahead; a
    non-2xx response is recorded as FAILED without rescheduling. Nothing in
    this service polls ``next_attempt_at``.
    """

    DELIVERY_TIMEOUT = 10  # seconds
    RETRY_DELAY = 300  # seconds

    def __init__(
        self,
        store: Store,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DELIVERY_TIMEOUT,
        retry_delay_seconds: int = RETRY_DELAY,
    ):
        self._store = store
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout
        self._retry_delay = timedelta(seconds=retry_delay_seconds)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._tasks: Set[asyncio.Task] = set()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._http_client

    async def enqueue(self, publisher: Publisher, event_id: str, payload: dict) -> WebhookDelivery:
        """Persist a PENDING delivery for a publisher with a configured webhook."""
        if not publisher.has_webhook:
            raise AdscronosConfigurationError(
                f"Publisher {publisher.id} has no webhook configured",
                setting="webhook_url",
            )
        body = serialize_payload(payload)
        timestamp = str(int(time.time() * 1000))
        delivery = WebhookDelivery(
            publisher_id=publisher.id,
            event_id=event_id,
            target_url=publisher.webhook_url,
            payload=payload,
            signature=sign_payload(publisher.webhook_secret, body, timestamp, str(uuid4())),
            next_attempt_at=utcnow(),
        )
        await self._store.webhook_deliveries.create(delivery)
        logger.debug("Queued webhook %s for publisher %s", delivery.id, publisher.id)
        return delivery

    async def deliver(self, delivery_id: str) -> DeliveryResult:
        """Run one delivery attempt and persist its outcome."""
        lock = self._locks.setdefault(delivery_id, asyncio.Lock())
        self._lock_users[delivery_id] = self._lock_users.get(delivery_id, 0) + 1
        try:
            async with lock:
                return await self._deliver(delivery_id)
        finally:
            # Drop the lock with its last user
            self._lock_users[delivery_id] -= 1
            if not self._lock_users[delivery_id]:
                del self._lock_users[delivery_id]
                del self._locks[delivery_id]

    async def _deliver(self, delivery_id: str) -> DeliveryResult:
        delivery = await self._store.webhook_deliveries.get(delivery_id)
        if delivery is None:
            return DeliveryResult(status=DeliveryStatus.FAILED, error="delivery not found")

        publisher = await self._store.publishers.get(delivery.publisher_id)
        if publisher is None or not publisher.webhook_url:
            raise AdscronosConfigurationError(
                f"Webhook URL missing for publisher {delivery.publisher_id}",
                setting="webhook_url",
            )
        if not publisher.webhook_secret:
            raise AdscronosConfigurationError(
                f"Webhook secret missing for publisher {delivery.publisher_id}",
                setting="webhook_secret",
            )

        body = serialize_payload(delivery.payload)
        timestamp = str(int(time.time() * 1000))
        nonce = str(uuid4())
        signature = sign_payload(publisher.webhook_secret, body, timestamp, nonce)

        headers = {
            "content-type": "application/json",
            TIMESTAMP_HEADER: timestamp,
            NONCE_HEADER: nonce,
            SIGNATURE_HEADER: signature,
        }

        client = await self._get_client()
        with LogContext(publisher_id=publisher.id):
            try:
                response = await client.post(
                    publisher.webhook_url,
                    content=body,
                    headers=headers,
                    follow_redirects=True,
                )
            except httpx.HTTPError as e:
                logger.warning("Webhook %s delivery error: %s", delivery.id, e)
                delivery.status = DeliveryStatus.FAILED
                delivery.error = str(e) or type(e).__name__
                delivery.attempt += 1
                delivery.next_attempt_at = utcnow() + self._retry_delay
                await self._store.webhook_deliveries.update(delivery)
                return DeliveryResult(status=DeliveryStatus.FAILED, error=delivery.error)

            delivery.attempt += 1
            delivery.response_status = response.status_code
            delivery.signature = signature
            if response.is_success:
                delivery.status = DeliveryStatus.SUCCESS
                delivery.error = None
                logger.info("Webhook %s delivered (%d)", delivery.id, response.status_code)
            else:
                delivery.status = DeliveryStatus.FAILED
                logger.warning("Webhook %s returned %d", delivery.id, response.status_code)
            await self._store.webhook_deliveries.update(delivery)

        return DeliveryResult(status=delivery.status, response_status=response.status_code)

    def dispatch(self, delivery_id: str) -> asyncio.Task:
        """Deliver in the background. Errors are logged, never raised."""
        task = asyncio.create_task(self._deliver_logged(delivery_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver_logged(self, delivery_id: str) -> Optional[DeliveryResult]:
        try:
            return await self.deliver(delivery_id)
        except AdscronosConfigurationError as e:
            logger.warning("Webhook %s not delivered: %s", delivery_id, e.message)
        except Exception:
            logger.exception("Webhook %s delivery crashed", delivery_id)
        return None

    async def drain(self) -> None:
        """Wait for in-flight background deliveries."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def replay(self, delivery_id: str) -> DeliveryResult:
        """Redeliver an existing record and wait for the outcome."""
        delivery = await self._store.webhook_deliveries.get(delivery_id)
        if delivery is None:
            raise AdscronosNotFoundError("WebhookDelivery", delivery_id)
        logger.info("Replaying webhook %s (attempt %d)", delivery_id, delivery.attempt + 1)
        return await self.deliver(delivery_id)

    async def close(self) -> None:
        await self.drain()
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
