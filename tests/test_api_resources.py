"""
API tests for the premium catalog and the x402-gated content endpoint.

The facilitator is mocked with pytest-httpx; the app itself is reached
through an ASGI transport, which pytest-httpx leaves alone.
"""
from __future__ import annotations

from datetime import timedelta

import httpx

from adscronos_core.config import X402Config
from adscronos_core.models import AccessMethod, ResourceAccess, utcnow
from adscronos_protocol.payment_header import PaymentHeaderBuilder
from adscronos_protocol.x402 import X_PAYMENT_HEADER, PaymentRequirements
from adscronos_protocol.x402_client import X402Client

from conftest import FACILITATOR_URL, PAYER_ADDRESS, PAYER_KEY, SELLER_WALLET

CONTENT_URL = "/api/resources/premium-analysis-1/content"
SETTLED = {
    "event": "payment.settled",
    "txHash": "0xabc",
    "blockNumber": 12,
    "from": PAYER_ADDRESS,
    "to": SELLER_WALLET,
    "value": "5000000",
}


async def _challenge(client) -> PaymentRequirements:
    response = await client.get(CONTENT_URL)
    return PaymentRequirements.model_validate(response.json()["paymentRequirements"])


class TestCatalog:
    """Tests for listing and reading resources."""

    async def test_list(self, client):
        response = await client.get("/api/resources")

        resources = {r["id"]: r for r in response.json()["resources"]}
        assert set(resources) == {"premium-analysis-1", "premium-template-1", "getting-started"}
        assert resources["premium-analysis-1"]["requiresPayment"] is True
        assert resources["getting-started"]["requiresPayment"] is False

    async def test_detail(self, client):
        response = await client.get("/api/resources/premium-template-1")

        detail = response.json()
        assert detail["adRequirement"] == {"minViewDuration": 45, "adType": "video", "cost": "10.00"}
        assert "content" not in detail

    async def test_unknown(self, client):
        response = await client.get("/api/resources/nope")

        assert response.status_code == 404

    async def test_free_content(self, client, httpx_mock):
        response = await client.get("/api/resources/getting-started/content")

        assert response.status_code == 200
        assert response.json()["content"].startswith("Watch a short ad")
        assert httpx_mock.get_requests() == []


class TestPaidContent:
    """Tests for the 402 challenge and payment settlement."""

    async def test_challenge(self, client, httpx_mock):
        """Should answer 402 with the requirements and contact no facilitator."""
        response = await client.get(CONTENT_URL)

        assert response.status_code == 402
        body = response.json()
        assert body["error"] == "Payment Required"
        assert body["x402Version"] == 1
        requirements = body["paymentRequirements"]
        assert requirements["scheme"] == "exact"
        assert requirements["payTo"] == SELLER_WALLET
        assert requirements["maxAmountRequired"] == "5000000"
        assert requirements["network"] == "cronos-testnet"
        assert httpx_mock.get_requests() == []

    async def test_paid(self, client, store, httpx_mock):
        """Should verify, settle and unlock for the payer."""
        httpx_mock.add_response(url=f"{FACILITATOR_URL}/verify", method="POST", json={"isValid": True})
        httpx_mock.add_response(url=f"{FACILITATOR_URL}/settle", method="POST", json=SETTLED)
        header = PaymentHeaderBuilder().build(PAYER_KEY, await _challenge(client))

        response = await client.get(CONTENT_URL, headers={X_PAYMENT_HEADER: header})

        assert response.status_code == 200
        body = response.json()
        assert body["content"].startswith("# Advanced Market Analysis")
        assert body["payment"]["txHash"] == "0xabc"
        assert body["payment"]["status"] == "settled"
        assert body["payment"]["to"] == SELLER_WALLET
        assert body["payment"]["value"] == "5000000"
        assert body["accessExpiresAt"]

        grants = await store.resource_access.list_for_user(PAYER_ADDRESS)
        assert [g.access_method for g in grants] == [AccessMethod.DIRECT_PAYMENT]

    async def test_rejected_payment_is_never_settled(self, client, httpx_mock):
        """Should answer 402 with the verify reason and skip settle."""
        httpx_mock.add_response(
            url=f"{FACILITATOR_URL}/verify",
            method="POST",
            json={"isValid": False, "invalidReason": "expired"},
        )
        header = PaymentHeaderBuilder().build(PAYER_KEY, await _challenge(client))

        response = await client.get(CONTENT_URL, headers={X_PAYMENT_HEADER: header})

        assert response.status_code == 402
        assert response.json()["reason"] == "expired"
        urls = [str(r.url) for r in httpx_mock.get_requests()]
        assert urls == [f"{FACILITATOR_URL}/verify"]

    async def test_replayed_header(self, client, httpx_mock):
        """Should refuse a header whose nonce was already settled."""
        httpx_mock.add_response(url=f"{FACILITATOR_URL}/verify", method="POST", json={"isValid": True})
        httpx_mock.add_response(url=f"{FACILITATOR_URL}/settle", method="POST", json=SETTLED)
        httpx_mock.add_response(url=f"{FACILITATOR_URL}/verify", method="POST", json={"isValid": True})
        header = PaymentHeaderBuilder().build(PAYER_KEY, await _challenge(client))

        first = await client.get(CONTENT_URL, headers={X_PAYMENT_HEADER: header})
        second = await client.get(CONTENT_URL, headers={X_PAYMENT_HEADER: header})

        assert first.status_code == 200
        assert second.status_code == 402
        assert second.json()["reason"] == "nonce_already_used"

    async def test_facilitator_down(self, client, httpx_mock):
        """Should answer 500 with the failing phase."""
        httpx_mock.add_exception(httpx.ConnectError("connection refused"), url=f"{FACILITATOR_URL}/verify")
        header = PaymentHeaderBuilder().build(PAYER_KEY, await _challenge(client))

        response = await client.get(CONTENT_URL, headers={X_PAYMENT_HEADER: header})

        assert response.status_code == 500
        body = response.json()
        assert body["phase"] == "verification"
        assert body["upstream_detail"] == "connection refused"

    async def test_paying_client_end_to_end(self, app, httpx_mock):
        """Should unlock with exactly one challenge and one paid request."""
        httpx_mock.add_response(url=f"{FACILITATOR_URL}/verify", method="POST", json={"isValid": True})
        httpx_mock.add_response(url=f"{FACILITATOR_URL}/settle", method="POST", json=SETTLED)
        seen = []

        async def record(request):
            seen.append(request)

        http_client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://test",
            event_hooks={"request": [record]},
        )
        async with X402Client(PAYER_KEY, http_client=http_client) as payer:
            response = await payer.pay_for_resource(CONTENT_URL)
        await http_client.aclose()

        assert response.status_code == 200
        assert response.json()["payment"]["txHash"] == "0xabc"
        assert len(seen) == 2
        assert X_PAYMENT_HEADER in seen[1].headers


class TestProductionErrors:
    """Tests for error bodies outside dev."""

    async def test_upstream_detail_is_kept(self, app, client, settings, httpx_mock):
        """Should pass the facilitator's error text through in prod."""
        app.state.settings = settings.model_copy(update={"environment": "prod"})
        httpx_mock.add_response(url=f"{FACILITATOR_URL}/verify", method="POST", json={"isValid": True})
        httpx_mock.add_response(
            url=f"{FACILITATOR_URL}/settle",
            method="POST",
            status_code=503,
            json={"error": "rpc_unavailable"},
        )
        header = PaymentHeaderBuilder().build(PAYER_KEY, await _challenge(client))

        response = await client.get(CONTENT_URL, headers={X_PAYMENT_HEADER: header})

        assert response.status_code == 500
        body = response.json()
        assert "rpc_unavailable" in body["detail"]
        assert body["upstream_detail"] == "rpc_unavailable"
        assert body["phase"] == "settlement"

    async def test_internal_detail_is_hidden(self, app, client, settings, httpx_mock):
        """Should answer a generic message without the missing setting."""
        app.state.settings = settings.model_copy(update={"environment": "prod", "x402": X402Config()})

        response = await client.get(CONTENT_URL)

        assert response.status_code == 503
        body = response.json()
        assert body["detail"] == "Service temporarily unavailable"
        assert "setting" not in body
        assert httpx_mock.get_requests() == []


class TestResourceAccess:
    """Tests for POST /api/resources/{id}/access."""

    ACCESS_URL = "/api/resources/premium-analysis-1/access"

    async def _watch_ad(self, client, user_id: str = "user_1") -> str:
        opened = await client.post(
            "/api/ad-sessions",
            json={"resourceId": "premium-analysis-1", "userId": user_id, "adId": "ad_1"},
        )
        session_id = opened.json()["sessionId"]
        completed = await client.post(
            "/api/ad-sessions/complete",
            json={"sessionId": session_id, "adId": "ad_1", "viewDuration": 60},
        )
        assert completed.status_code == 200
        return session_id

    async def test_completed_ad_unlocks_content(self, client, httpx_mock):
        """Should serve full content after the ad view was completed."""
        session_id = await self._watch_ad(client)

        response = await client.post(self.ACCESS_URL, json={"userId": "user_1", "sessionId": session_id})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["content"].startswith("# Advanced Market Analysis")
        assert body["accessMethod"] == "AD_COMPLETION"
        assert body["expiresAt"]
        assert httpx_mock.get_requests() == []

    async def test_grant_is_reused_by_user(self, client, store):
        """Should serve content from the 24h grant without a session id."""
        await self._watch_ad(client)

        response = await client.post(self.ACCESS_URL, json={"userId": "user_1"})

        assert response.status_code == 200
        assert response.json()["accessMethod"] == "AD_COMPLETION"
        grants = await store.resource_access.list_for_user("user_1")
        assert len(grants) == 1

    async def test_session_without_completion(self, client):
        """Should answer 402 while the ad view is unfinished."""
        opened = await client.post(
            "/api/ad-sessions",
            json={"resourceId": "premium-analysis-1", "userId": "user_1"},
        )

        response = await client.post(
            self.ACCESS_URL,
            json={"userId": "user_1", "sessionId": opened.json()["sessionId"]},
        )

        assert response.status_code == 402
        assert response.json()["reason"] == "access_required"

    async def test_session_of_another_user(self, client):
        """Should not unlock with a session someone else completed."""
        session_id = await self._watch_ad(client, user_id="user_1")

        response = await client.post(self.ACCESS_URL, json={"userId": "user_2", "sessionId": session_id})

        assert response.status_code == 402

    async def test_expired_grant(self, client, store):
        await store.resource_access.create(
            ResourceAccess(
                resource_id="premium-analysis-1",
                user_id="user_1",
                access_method=AccessMethod.DIRECT_PAYMENT,
                expires_at=utcnow() - timedelta(minutes=1),
            )
        )

        response = await client.post(self.ACCESS_URL, json={"userId": "user_1"})

        assert response.status_code == 402

    async def test_free_resource(self, client):
        response = await client.post("/api/resources/getting-started/access", json={"userId": "user_1"})

        assert response.status_code == 200
        assert response.json()["accessMethod"] is None
