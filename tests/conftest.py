"""
Pytest configuration and fixtures for adscronos tests.
"""
from __future__ import annotations

import httpx
import pytest
from eth_account import Account

from adscronos_api.main import create_app
from adscronos_core.config import AdscronosSettings, X402Config
from adscronos_core.models import AdUnit, Publisher
from adscronos_core.repositories import create_in_memory_store
from adscronos_protocol.facilitator import create_payment_requirements

# Well-known development key; never holds funds
PAYER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
PAYER_ADDRESS = Account.from_key(PAYER_KEY).address

SELLER_WALLET = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
FACILITATOR_URL = "https://facilitator.test/x402"
WEBHOOK_URL = "https://publisher.test/hooks/ads"
WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def settings() -> AdscronosSettings:
    return AdscronosSettings(
        _env_file=None,
        environment="dev",
        log_level="WARNING",
        log_json=False,
        x402=X402Config(seller_wallet=SELLER_WALLET, facilitator_url=FACILITATOR_URL),
    )


@pytest.fixture
def store():
    return create_in_memory_store()


@pytest.fixture
async def publisher(store) -> Publisher:
    """Publisher with a webhook, owning the ad unit ``unit_test``."""
    publisher = Publisher(
        id="pub_test",
        app_id="app_test",
        name="Test Publisher",
        webhook_url=WEBHOOK_URL,
        webhook_secret=WEBHOOK_SECRET,
    )
    await store.publishers.save(publisher)
    await store.ad_units.save(AdUnit(id="unit_test", publisher_id=publisher.id, name="Banner"))
    return publisher


@pytest.fixture
def requirements(settings):
    return create_payment_requirements(settings, description="Access to test content", price="5000000")


@pytest.fixture
async def app(settings, store):
    app = create_app(settings=settings, store=store)
    async with app.router.lifespan_context(app):
        yield app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
