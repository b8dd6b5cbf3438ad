"""API composition root."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adscronos_core import AdscronosSettings, load_settings
from adscronos_core.catalog import seed_catalog
from adscronos_core.logging_config import setup_logging
from adscronos_core.repositories import Store, create_store
from adscronos_core.webhooks import WebhookDeliveryService
from adscronos_protocol.facilitator import FacilitatorClient
from adscronos_protocol.x402_settlement import (
    DatabaseSettlementStore,
    InMemorySettlementStore,
    X402Settler,
)

from .middleware import StructuredLoggingMiddleware, register_exception_handlers
from .routers import ad_sessions, events, health, payments, publishers, resources, webhooks

logger = logging.getLogger("adscronos.api")

API_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect the store and seed the catalog; drain webhooks on the way out."""
    logger.info("Starting adscronos API...", extra={"environment": app.state.settings.environment})
    store: Store = app.state.store
    await store.connect()
    await seed_catalog(store)

    yield

    logger.info("Shutting down adscronos API...")
    await app.state.webhook_service.close()
    await app.state.facilitator.close()
    await store.close()


def create_app(
    settings: Optional[AdscronosSettings] = None,
    store: Optional[Store] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(level=settings.log_level, json_format=settings.log_json)

    app = FastAPI(
        title="adscronos API",
        version=API_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID", "X-PAYMENT", "X-Principal-Id", "X-Principal-Role"],
    )
    register_exception_handlers(app)

    store = store or create_store(settings)
    webhook_service = WebhookDeliveryService(
        store,
        http_client=http_client,
        timeout=settings.webhooks.timeout_seconds,
        retry_delay_seconds=settings.webhooks.retry_delay_seconds,
    )
    facilitator = FacilitatorClient.from_settings(settings, http_client=http_client)
    settlement_store = (
        DatabaseSettlementStore(store.database)
        if store.database is not None
        else InMemorySettlementStore()
    )

    app.state.settings = settings
    app.state.store = store
    app.state.webhook_service = webhook_service
    app.state.facilitator = facilitator
    app.state.settler = X402Settler(facilitator, settlement_store)

    app.include_router(health.router)
    app.include_router(publishers.router, prefix="/api/publishers")
    app.include_router(events.router, prefix="/api/events")
    app.include_router(webhooks.router, prefix="/api/webhooks")
    app.include_router(resources.router, prefix="/api/resources")
    app.include_router(ad_sessions.router, prefix="/api/ad-sessions")
    app.include_router(payments.router, prefix="/api/payments")

    return app
