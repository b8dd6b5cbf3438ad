"""Publisher registration and webhook settings."""
from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, HttpUrl

from adscronos_core.exceptions import (
    AdscronosAuthorizationError,
    AdscronosConflictError,
    AdscronosNotFoundError,
)
from adscronos_core.models import AdUnit, Publisher, new_id
from adscronos_core.repositories import Store

from ..dependencies import Principal, get_principal, get_store, require_publisher_access

_logger = logging.getLogger("adscronos.api.publishers")

router = APIRouter(tags=["publishers"])

WEBHOOK_SECRET_PREFIX = "whsec_"


def issue_webhook_secret() -> str:
    return WEBHOOK_SECRET_PREFIX + secrets.token_hex(24)


class CreatePublisherRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    webhook_url: Optional[HttpUrl] = Field(None, alias="webhookUrl")


class UpdateWebhookRequest(BaseModel):
    webhook_url: Optional[HttpUrl] = Field(None, alias="webhookUrl")
    rotate_secret: bool = Field(False, alias="rotateSecret")


async def _load_publisher(store: Store, principal: Principal, publisher_id: str) -> Publisher:
    publisher = await store.publishers.get(publisher_id)
    if publisher is None:
        raise AdscronosNotFoundError("Publisher", publisher_id)
    require_publisher_access(principal, publisher.id)
    return publisher


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_publisher(
    request: CreatePublisherRequest,
    principal: Principal = Depends(get_principal),
    store: Store = Depends(get_store),
):
    """Register a publisher app with a default ad unit.

    A publisher principal registers itself under its own id; an admin gets a
    new id. The webhook secret is only ever returned here and on rotation.
    """
    if principal.role not in ("publisher", "admin"):
        raise AdscronosAuthorizationError("Only publishers can register an app")

    publisher_id = new_id("pub") if principal.is_admin else principal.id
    if await store.publishers.get(publisher_id) is not None:
        raise AdscronosConflictError(
            "Publisher already registered",
            details={"publisher_id": publisher_id},
        )

    webhook_secret = issue_webhook_secret() if request.webhook_url else None
    publisher = Publisher(
        id=publisher_id,
        app_id=new_id("app"),
        name=request.name,
        webhook_url=str(request.webhook_url) if request.webhook_url else None,
        webhook_secret=webhook_secret,
    )
    await store.publishers.save(publisher)
    ad_unit = AdUnit(publisher_id=publisher.id, name="default")
    await store.ad_units.save(ad_unit)
    _logger.info("Publisher %s registered by %s", publisher.id, principal.id)

    body = publisher.to_dict()
    body["webhookSecret"] = webhook_secret
    body["adUnit"] = {"id": ad_unit.id, "name": ad_unit.name}
    return body


@router.get("/{publisher_id}")
async def get_publisher(
    publisher_id: str,
    principal: Principal = Depends(get_principal),
    store: Store = Depends(get_store),
):
    publisher = await _load_publisher(store, principal, publisher_id)
    return publisher.to_dict()


@router.put("/{publisher_id}/webhook")
async def update_webhook(
    publisher_id: str,
    request: UpdateWebhookRequest,
    principal: Principal = Depends(get_principal),
    store: Store = Depends(get_store),
):
    """Set or clear the webhook URL. A new secret is issued when none exists or on rotation."""
    publisher = await _load_publisher(store, principal, publisher_id)

    issued = None
    if request.webhook_url is None:
        publisher.webhook_url = None
        publisher.webhook_secret = None
    else:
        publisher.webhook_url = str(request.webhook_url)
        if publisher.webhook_secret is None or request.rotate_secret:
            issued = issue_webhook_secret()
            publisher.webhook_secret = issued
    await store.publishers.save(publisher)
    _logger.info("Webhook settings of %s updated by %s", publisher.id, principal.id)

    body = publisher.to_dict()
    body["webhookSecret"] = issued
    return body
