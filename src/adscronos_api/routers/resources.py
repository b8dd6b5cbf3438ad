"""Premium resource catalog and the x402-gated content endpoint."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from adscronos_core.config import AdscronosSettings
from adscronos_core.exceptions import AdscronosNotFoundError, PaymentRequiredError
from adscronos_core.logging_config import LogContext
from adscronos_core.models import AccessMethod, PremiumResource, ResourceAccess, utcnow
from adscronos_core.repositories import Store
from adscronos_protocol.facilitator import create_payment_requirements
from adscronos_protocol.x402 import X_PAYMENT_HEADER, PaymentRequiredBody
from adscronos_protocol.x402_settlement import X402Settler

from ..dependencies import get_settings, get_settler, get_store

logger = logging.getLogger("adscronos.api.resources")

router = APIRouter(tags=["resources"])


async def load_resource(store: Store, resource_id: str) -> PremiumResource:
    resource = await store.resources.get(resource_id)
    if resource is None or not resource.published:
        raise AdscronosNotFoundError("PremiumResource", resource_id)
    return resource


def resource_detail(resource: PremiumResource) -> dict:
    detail = resource.summary()
    detail["previewContent"] = resource.preview_content
    detail["format"] = resource.format
    if resource.ad_requirement is not None:
        detail["adRequirement"] = {
            "minViewDuration": resource.ad_requirement.min_view_duration,
            "adType": resource.ad_requirement.ad_type,
            "cost": str(resource.ad_requirement.cost),
        }
    return detail


@router.get("")
async def list_resources(store: Store = Depends(get_store)):
    resources = await store.resources.list_published()
    return {"resources": [r.summary() for r in resources]}


@router.get("/{resource_id}")
async def get_resource(resource_id: str, store: Store = Depends(get_store)):
    resource = await load_resource(store, resource_id)
    return resource_detail(resource)


@router.get("/{resource_id}/content")
async def get_resource_content(
    resource_id: str,
    payment_header: str | None = Header(default=None, alias=X_PAYMENT_HEADER),
    store: Store = Depends(get_store),
    settings: AdscronosSettings = Depends(get_settings),
    settler: X402Settler = Depends(get_settler),
):
    """Full content. Paid resources answer 402 until an ``X-PAYMENT`` header settles."""
    resource = await load_resource(store, resource_id)
    body = {
        "id": resource.id,
        "title": resource.title,
        "content": resource.content,
        "format": resource.format,
    }
    if not resource.requires_payment:
        return body

    requirements = create_payment_requirements(
        settings,
        description=f"Access to {resource.title}",
        price=resource.price,
    )
    if not payment_header:
        challenge = PaymentRequiredBody(payment_requirements=requirements)
        return JSONResponse(status_code=status.HTTP_402_PAYMENT_REQUIRED, content=challenge.to_wire())

    settlement = await settler.verify_and_settle(payment_header, requirements)
    access = ResourceAccess(
        resource_id=resource.id,
        user_id=settlement.payer,
        access_method=AccessMethod.DIRECT_PAYMENT,
    )
    await store.resource_access.create(access)
    logger.info("Resource %s unlocked by payment %s", resource.id, settlement.tx_hash)

    body["payment"] = settlement.to_dict()
    body["accessExpiresAt"] = access.expires_at.isoformat()
    return body


class AccessRequest(BaseModel):
    user_id: str = Field(..., alias="userId", min_length=1)
    session_id: str | None = Field(None, alias="sessionId")


async def find_active_grant(store: Store, resource_id: str, user_id: str) -> ResourceAccess | None:
    now = utcnow()
    for grant in await store.resource_access.list_for_user(user_id):
        if grant.resource_id == resource_id and grant.expires_at > now:
            return grant
    return None


async def _grant_from_session(
    store: Store, resource: PremiumResource, request: AccessRequest
) -> ResourceAccess | None:
    session = await store.ad_sessions.get(request.session_id)
    if session is None or session.resource_id != resource.id or session.user_id != request.user_id:
        return None
    completion = await store.ad_completions.get(session.id)
    if completion is None or not (completion.completed and completion.payment_processed):
        return None

    access = ResourceAccess(
        resource_id=resource.id,
        user_id=request.user_id,
        access_method=AccessMethod.AD_COMPLETION,
        session_id=session.id,
    )
    await store.resource_access.create(access)
    with LogContext(session_id=session.id):
        logger.info("Resource %s unlocked by completed ad session", resource.id)
    return access


@router.post("/{resource_id}/access")
async def access_resource(
    resource_id: str,
    request: AccessRequest,
    store: Store = Depends(get_store),
):
    """Serve full content to a viewer holding an unexpired grant or a completed ad session.

    Ad completion and direct payment both leave a 24h grant behind, so
    ``userId`` alone is enough while it lasts. Without a grant, ``sessionId``
    must name a session for this resource and user whose ad view was
    completed and billed.
    """
    resource = await load_resource(store, resource_id)
    body = {
        "success": True,
        "id": resource.id,
        "title": resource.title,
        "content": resource.content,
        "format": resource.format,
        "accessedAt": utcnow().isoformat(),
    }
    if not resource.requires_payment:
        body["accessMethod"] = None
        body["expiresAt"] = None
        return body

    access = await find_active_grant(store, resource.id, request.user_id)
    if access is None and request.session_id:
        access = await _grant_from_session(store, resource, request)
    if access is None:
        raise PaymentRequiredError(
            "Access denied. Complete the ad view or pay for the resource.",
            reason="access_required",
        )

    body["accessMethod"] = access.access_method.value
    body["expiresAt"] = access.expires_at.isoformat()
    return body
