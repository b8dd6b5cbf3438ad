"""Liveness endpoint."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from adscronos_core.config import AdscronosSettings

from ..dependencies import get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(settings: AdscronosSettings = Depends(get_settings)):
    return {
        "status": "healthy",
        "environment": settings.environment,
        "store": "postgres" if settings.uses_postgres else "memory",
    }
