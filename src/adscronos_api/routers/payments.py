"""Direct x402 payment for an ad session's resource."""
from __future__ import annotations

import logging
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from adscronos_core.config import AdscronosSettings
from adscronos_core.exceptions import (
    AdscronosConflictError,
    AdscronosGoneError,
    AdscronosNotFoundError,
    AdscronosValidationError,
)
from adscronos_core.logging_config import LogContext
from adscronos_core.models import AccessMethod, AdCompletion, ResourceAccess
from adscronos_core.repositories import Store
from adscronos_protocol.facilitator import create_payment_requirements
from adscronos_protocol.x402_settlement import X402Settler

from ..dependencies import get_settings, get_settler, get_store
from .resources import load_resource

logger = logging.getLogger("adscronos.api.payments")

router = APIRouter(tags=["payments"])

# USDX uses 6 decimals
TOKEN_DECIMALS = 6


class CompletePaymentRequest(BaseModel):
    session_id: str = Field(..., alias="sessionId", min_length=1)
    resource_id: str = Field(..., alias="resourceId", min_length=1)
    user_id: str = Field(..., alias="userId", min_length=1)
    payment_header: str = Field(..., alias="paymentHeader", min_length=1)


@router.post("/complete")
async def complete_payment(
    request: CompletePaymentRequest,
    store: Store = Depends(get_store),
    settings: AdscronosSettings = Depends(get_settings),
    settler: X402Settler = Depends(get_settler),
):
    """Verify then settle ``paymentHeader``; on success the session counts as completed.

    A header the facilitator rejects answers 402 with its reason and is never
    settled.
    """
    session = await store.ad_sessions.get(request.session_id)
    if session is None:
        raise AdscronosNotFoundError("AdSession", request.session_id)
    if session.is_expired():
        raise AdscronosGoneError("Ad session has expired", details={"session_id": session.id})
    if session.resource_id != request.resource_id:
        raise AdscronosValidationError("resourceId does not match the session", field="resourceId")
    if await store.ad_completions.get(session.id) is not None:
        raise AdscronosConflictError("Ad session already completed", details={"session_id": session.id})

    resource = await load_resource(store, session.resource_id)
    requirements = create_payment_requirements(
        settings,
        description=f"Access to premium content: {resource.title}",
        price=resource.price,
    )

    with LogContext(session_id=session.id):
        settlement = await settler.verify_and_settle(request.payment_header, requirements)

        completion = AdCompletion(
            session_id=session.id,
            completed=True,
            view_duration=session.required_view_duration,
            payment_processed=True,
            billing_amount=Decimal(requirements.max_amount_required).scaleb(-TOKEN_DECIMALS),
            transaction_id=settlement.tx_hash or "",
        )
        try:
            await store.ad_completions.create(completion)
        except AdscronosConflictError:
            # Settled on-chain but another request completed the session first
            logger.error("Payment %s settled for already completed session", settlement.tx_hash)
            raise

        await store.resource_access.create(
            ResourceAccess(
                resource_id=resource.id,
                user_id=request.user_id,
                access_method=AccessMethod.DIRECT_PAYMENT,
                session_id=session.id,
            )
        )
        logger.info("Payment %s completed session", settlement.tx_hash)

    return {
        "resourceId": resource.id,
        "title": resource.title,
        "paymentCompleted": True,
        "txHash": settlement.tx_hash,
        "payment": settlement.to_dict(),
        "content": resource.content or resource.preview_content,
    }
