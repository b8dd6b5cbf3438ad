"""Ad SDK event ingestion. Recording an event may queue a publisher webhook."""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from adscronos_core.exceptions import AdscronosNotFoundError
from adscronos_core.logging_config import LogContext
from adscronos_core.models import AdEvent, AdEventType
from adscronos_core.repositories import Store
from adscronos_core.webhooks import WebhookDeliveryService

from ..dependencies import get_store, get_webhook_service

logger = logging.getLogger("adscronos.api.events")

router = APIRouter(tags=["events"])

WireEvent = Literal[
    "impression",
    "start",
    "firstQuartile",
    "midpoint",
    "thirdQuartile",
    "complete",
    "skip",
    "click",
]


class AdEventRequest(BaseModel):
    app_id: str = Field(..., alias="appId", min_length=4)
    ad_unit_id: str = Field(..., alias="adUnitId", min_length=2)
    event: WireEvent
    ts: Optional[int] = Field(None, description="Client timestamp, ms since epoch")
    signature: Optional[str] = None


@router.post("", status_code=status.HTTP_201_CREATED)
async def record_event(
    request: AdEventRequest,
    store: Store = Depends(get_store),
    webhooks: WebhookDeliveryService = Depends(get_webhook_service),
):
    """Record an SDK event and notify the publisher's webhook, if configured."""
    publisher = await store.publishers.get_by_app_id(request.app_id)
    if publisher is None:
        raise AdscronosNotFoundError("App", request.app_id)

    ad_unit = await store.ad_units.get(request.ad_unit_id)
    if ad_unit is None or ad_unit.publisher_id != publisher.id:
        raise AdscronosNotFoundError("AdUnit", request.ad_unit_id)

    event = AdEvent(
        event_type=AdEventType.from_wire(request.event),
        publisher_id=publisher.id,
        ad_unit_id=ad_unit.id,
        signature=request.signature,
    )
    if request.ts is not None:
        event.ts = datetime.fromtimestamp(request.ts / 1000, tz=timezone.utc)
    await store.ad_events.create(event)

    with LogContext(publisher_id=publisher.id):
        logger.info("Recorded %s event %s", request.event, event.id)

        if publisher.has_webhook:
            payload = {
                "id": event.id,
                "type": request.event,
                "publisherId": publisher.id,
                "adUnitId": ad_unit.id,
                "appId": request.app_id,
                "ts": request.ts if request.ts is not None else int(time.time() * 1000),
            }
            delivery = await webhooks.enqueue(publisher, event.id, payload)
            webhooks.dispatch(delivery.id)

    return {"event": event.to_dict()}


@router.get("")
async def list_events(store: Store = Depends(get_store)):
    """Most recent 100 events, newest first."""
    events = await store.ad_events.list_recent(limit=100)
    return {"events": [e.to_dict() for e in events]}
