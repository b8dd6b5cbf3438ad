"""Ad-supported access: open a session, watch the ad, unlock the resource."""
from __future__ import annotations

import logging
import secrets
import time
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from adscronos_core.config import AdscronosSettings
from adscronos_core.exceptions import (
    AdscronosConflictError,
    AdscronosGoneError,
    AdscronosNotFoundError,
    AdscronosValidationError,
)
from adscronos_core.logging_config import LogContext
from adscronos_core.models import AccessMethod, AdCompletion, AdSession, ResourceAccess, new_id
from adscronos_core.repositories import Store
from adscronos_protocol.facilitator import create_payment_requirements

from ..dependencies import get_settings, get_store
from .resources import load_resource

logger = logging.getLogger("adscronos.api.ad_sessions")

router = APIRouter(tags=["ad-sessions"])


class CreateSessionRequest(BaseModel):
    resource_id: str = Field(..., alias="resourceId", min_length=1)
    user_id: str = Field(..., alias="userId", min_length=1)
    ad_id: Optional[str] = Field(None, alias="adId")


class CompleteSessionRequest(BaseModel):
    session_id: str = Field(..., alias="sessionId", min_length=1)
    ad_id: str = Field(..., alias="adId", min_length=1)
    view_duration: int = Field(..., alias="viewDuration", ge=0)
    interaction_data: dict = Field(default_factory=dict, alias="interactionData")


def session_to_dict(session: AdSession) -> dict:
    return {
        "sessionId": session.id,
        "resourceId": session.resource_id,
        "adId": session.ad_id,
        "userId": session.user_id,
        "requiredViewDuration": session.required_view_duration,
        "expiresAt": session.expires_at.isoformat(),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_session(
    request: CreateSessionRequest,
    store: Store = Depends(get_store),
    settings: AdscronosSettings = Depends(get_settings),
):
    """Start a 30 minute session gating a resource behind an ad view or a payment."""
    resource = await load_resource(store, request.resource_id)
    if resource.ad_requirement is None:
        raise AdscronosValidationError(
            f"Resource {resource.id} cannot be unlocked with an ad",
            field="resourceId",
        )

    session = AdSession(
        resource_id=resource.id,
        ad_id=request.ad_id or new_id("ad"),
        user_id=request.user_id,
        required_view_duration=resource.ad_requirement.min_view_duration,
    )
    await store.ad_sessions.create(session)

    with LogContext(session_id=session.id):
        logger.info("Ad session opened for resource %s", resource.id)

    body = session_to_dict(session)
    body["adType"] = resource.ad_requirement.ad_type
    # Sessions can also be settled directly once a payee wallet is configured
    body["paymentRequirements"] = None
    if settings.x402.seller_wallet:
        requirements = create_payment_requirements(
            settings,
            description=f"Access to premium content: {resource.title}",
            price=resource.price,
        )
        body["paymentRequirements"] = requirements.to_wire()
    return body


@router.post("/complete")
async def complete_session(
    request: CompleteSessionRequest,
    store: Store = Depends(get_store),
):
    """Record a finished ad view, bill the advertiser and unlock the resource for 24h."""
    session = await store.ad_sessions.get(request.session_id)
    if session is None:
        raise AdscronosNotFoundError("AdSession", request.session_id)
    if session.is_expired():
        raise AdscronosGoneError("Ad session has expired", details={"session_id": session.id})
    if request.ad_id != session.ad_id:
        raise AdscronosValidationError("adId does not match the session", field="adId")
    if request.view_duration < session.required_view_duration:
        raise AdscronosValidationError(
            f"Minimum viewing duration of {session.required_view_duration} seconds not met",
            field="viewDuration",
            details={
                "requiredDuration": session.required_view_duration,
                "actualDuration": request.view_duration,
            },
        )
    if await store.ad_completions.get(session.id) is not None:
        raise AdscronosConflictError("Ad session already completed", details={"session_id": session.id})

    resource = await load_resource(store, session.resource_id)
    billing_amount = resource.ad_requirement.cost if resource.ad_requirement else Decimal("0")
    transaction_id = f"tx_{int(time.time() * 1000)}_{secrets.token_hex(5)}"

    completion = AdCompletion(
        session_id=session.id,
        completed=True,
        view_duration=request.view_duration,
        payment_processed=True,
        billing_amount=billing_amount,
        transaction_id=transaction_id,
        interaction_data=request.interaction_data,
    )
    await store.ad_completions.create(completion)

    access = ResourceAccess(
        resource_id=resource.id,
        user_id=session.user_id,
        access_method=AccessMethod.AD_COMPLETION,
        session_id=session.id,
    )
    await store.resource_access.create(access)

    with LogContext(session_id=session.id):
        logger.info("Ad session completed, billed %s", billing_amount)

    return {
        "success": True,
        "paymentProcessed": True,
        "resourceUnlocked": True,
        "billingAmount": str(billing_amount),
        "transactionId": transaction_id,
        "accessExpiresAt": access.expires_at.isoformat(),
    }
