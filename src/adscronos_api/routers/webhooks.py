"""Webhook delivery log and manual replay."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from adscronos_core.exceptions import AdscronosNotFoundError
from adscronos_core.repositories import Store
from adscronos_core.webhooks import WebhookDeliveryService

from ..dependencies import Principal, get_principal, get_store, get_webhook_service, require_publisher_access

_logger = logging.getLogger("adscronos.api.webhooks")

router = APIRouter(tags=["webhooks"])


class ReplayRequest(BaseModel):
    id: str = Field(..., min_length=3, description="Webhook delivery id")


@router.post("/replay")
async def replay_delivery(
    request: ReplayRequest,
    principal: Principal = Depends(get_principal),
    store: Store = Depends(get_store),
    webhooks: WebhookDeliveryService = Depends(get_webhook_service),
):
    """Redeliver a webhook now and return the attempt's outcome."""
    delivery = await store.webhook_deliveries.get(request.id)
    if delivery is None:
        raise AdscronosNotFoundError("WebhookDelivery", request.id)
    require_publisher_access(principal, delivery.publisher_id)

    _logger.info("Replay of %s requested by %s", request.id, principal.id)
    result = await webhooks.replay(request.id)
    return {"result": result.to_dict()}


@router.get("/replay")
async def list_deliveries(
    principal: Principal = Depends(get_principal),
    store: Store = Depends(get_store),
):
    """The 20 most recent deliveries visible to the caller."""
    deliveries = await store.webhook_deliveries.list_recent(limit=20)
    if not principal.is_admin:
        deliveries = [d for d in deliveries if d.publisher_id == principal.id]
    return {"deliveries": [d.to_dict() for d in deliveries]}
