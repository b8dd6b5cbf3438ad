"""
API tests for event ingestion, webhook replay and health.
"""
from __future__ import annotations

import json

import pytest

from adscronos_core.models import AdUnit, DeliveryStatus, Publisher

from conftest import WEBHOOK_URL

ADMIN = {"X-Principal-Id": "admin_1", "X-Principal-Role": "admin"}
OWNER = {"X-Principal-Id": "pub_test", "X-Principal-Role": "publisher"}
STRANGER = {"X-Principal-Id": "pub_other", "X-Principal-Role": "publisher"}

EVENT = {"appId": "app_test", "adUnitId": "unit_test", "event": "firstQuartile", "ts": 1700000000000}


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "environment": "dev", "store": "memory"}


class TestRecordEvent:
    """Tests for POST /api/events."""

    async def test_records_event_and_delivers_webhook(self, app, client, store, publisher, httpx_mock):
        """Should store the event and deliver a signed webhook in the background."""
        httpx_mock.add_response(url=WEBHOOK_URL, method="POST", status_code=200)

        response = await client.post("/api/events", json=EVENT)
        await app.state.webhook_service.drain()

        assert response.status_code == 201
        event = response.json()["event"]
        assert event["eventType"] == "FIRST_QUARTILE"
        assert event["publisherId"] == "pub_test"
        assert event["adUnitId"] == "unit_test"

        webhook = json.loads(httpx_mock.get_request().content)
        assert webhook == {
            "id": event["id"],
            "type": "firstQuartile",
            "publisherId": "pub_test",
            "adUnitId": "unit_test",
            "appId": "app_test",
            "ts": 1700000000000,
        }

        deliveries = await store.webhook_deliveries.list_recent()
        assert len(deliveries) == 1
        assert deliveries[0].status == DeliveryStatus.SUCCESS
        assert deliveries[0].event_id == event["id"]

    async def test_publisher_without_webhook(self, client, store, httpx_mock):
        """Should record the event without queuing a delivery."""
        await store.publishers.save(Publisher(id="pub_quiet", app_id="app_quiet"))
        await store.ad_units.save(AdUnit(id="unit_quiet", publisher_id="pub_quiet"))

        response = await client.post(
            "/api/events",
            json={"appId": "app_quiet", "adUnitId": "unit_quiet", "event": "impression"},
        )

        assert response.status_code == 201
        assert await store.webhook_deliveries.list_recent() == []
        assert httpx_mock.get_requests() == []

    async def test_unknown_app(self, client, publisher):
        response = await client.post("/api/events", json={**EVENT, "appId": "app_nope"})

        assert response.status_code == 404
        assert response.headers["content-type"] == "application/problem+json"
        assert response.json()["resource_type"] == "App"

    async def test_ad_unit_of_another_publisher(self, client, store, publisher):
        """Should not accept an ad unit the app does not own."""
        await store.ad_units.save(AdUnit(id="unit_foreign", publisher_id="pub_other"))

        response = await client.post("/api/events", json={**EVENT, "adUnitId": "unit_foreign"})

        assert response.status_code == 404
        assert response.json()["resource_type"] == "AdUnit"

    @pytest.mark.parametrize(
        "body",
        [
            {**EVENT, "appId": "ab"},
            {**EVENT, "event": "rewind"},
            {"appId": "app_test", "event": "start"},
        ],
    )
    async def test_invalid_body(self, client, publisher, body):
        response = await client.post("/api/events", json=body)

        assert response.status_code == 400
        assert response.json()["errors"]

    async def test_list_events(self, client, publisher):
        await client.post("/api/events", json={**EVENT, "event": "impression"})
        await client.post("/api/events", json={**EVENT, "event": "click"})

        response = await client.get("/api/events")

        types = [e["eventType"] for e in response.json()["events"]]
        assert sorted(types) == ["CLICK", "IMPRESSION"]


class TestWebhookReplay:
    """Tests for /api/webhooks/replay."""

    @pytest.fixture
    async def delivery(self, app, publisher):
        return await app.state.webhook_service.enqueue(publisher, "evt_1", {"id": "evt_1"})

    async def test_requires_principal(self, client, delivery):
        response = await client.post("/api/webhooks/replay", json={"id": delivery.id})

        assert response.status_code == 401

    async def test_other_publisher_is_forbidden(self, client, delivery, httpx_mock):
        response = await client.post("/api/webhooks/replay", json={"id": delivery.id}, headers=STRANGER)

        assert response.status_code == 403
        assert httpx_mock.get_requests() == []

    async def test_unknown_delivery(self, client):
        response = await client.post("/api/webhooks/replay", json={"id": "whd_missing"}, headers=ADMIN)

        assert response.status_code == 404

    async def test_owner_replays(self, client, store, delivery, httpx_mock):
        """Should redeliver and return the attempt outcome."""
        httpx_mock.add_response(url=WEBHOOK_URL, method="POST", status_code=202)

        response = await client.post("/api/webhooks/replay", json={"id": delivery.id}, headers=OWNER)

        assert response.status_code == 200
        assert response.json() == {"result": {"status": "SUCCESS", "responseStatus": 202}}
        stored = await store.webhook_deliveries.get(delivery.id)
        assert stored.attempt == 1

    async def test_failed_replay_is_reported(self, client, delivery, httpx_mock):
        httpx_mock.add_response(url=WEBHOOK_URL, method="POST", status_code=410)

        response = await client.post("/api/webhooks/replay", json={"id": delivery.id}, headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["result"] == {"status": "FAILED", "responseStatus": 410}

    async def test_list_is_scoped_to_caller(self, client, delivery):
        """Should show publishers only their own deliveries."""
        own = await client.get("/api/webhooks/replay", headers=OWNER)
        other = await client.get("/api/webhooks/replay", headers=STRANGER)
        admin = await client.get("/api/webhooks/replay", headers=ADMIN)

        assert [d["id"] for d in own.json()["deliveries"]] == [delivery.id]
        assert other.json()["deliveries"] == []
        assert len(admin.json()["deliveries"]) == 1
