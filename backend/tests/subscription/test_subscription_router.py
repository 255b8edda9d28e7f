"""Tests for the subscription HTTP routes."""

import json
import uuid

import pytest
import pytest_asyncio
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient

from airtime_billing.core.config import settings
from airtime_billing.core.database import get_session
from airtime_billing.main import app
from airtime_billing.modules.identity.repository import UserRepository
from airtime_billing.modules.subscription.dependencies import require_active_subscription
from airtime_billing.modules.subscription.signature import compute_signature
from airtime_billing.modules.subscription.webhook import TelcoWebhookService

SECRET = "s3cret"
ADMIN_TOKEN = "admin-t0ken"
WEBHOOK_URL = "/api/v1/subscriptions/webhook/telco"


@pytest_asyncio.fixture
async def client(async_db):
    async def override_get_session():
        yield async_db

    app.dependency_overrides[get_session] = override_get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def signed(monkeypatch):
    """Configure the webhook secret and return a body signer."""
    monkeypatch.setattr(settings, "TELCO_WEBHOOK_SECRET", SECRET)

    def sign(payload: dict) -> tuple[bytes, dict]:
        body = json.dumps(payload).encode()
        headers = {"content-type": "application/json", "x-signature": compute_signature(body, SECRET)}
        return body, headers

    return sign


def as_user(user_id) -> dict:
    return {"x-user-id": str(user_id)}


async def post_webhook(client: AsyncClient, signed, payload: dict):
    body, headers = signed(payload)
    return await client.post(WEBHOOK_URL, content=body, headers=headers)


class TestTelcoWebhookRoute:
    @pytest.mark.asyncio
    async def test_valid_delivery(self, client, signed, webhook_payload):
        response = await post_webhook(client, signed, webhook_payload())

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Webhook processed successfully"}

    @pytest.mark.asyncio
    async def test_bad_signature(self, client, signed, webhook_payload):
        body, headers = signed(webhook_payload())
        headers["x-signature"] = "0" * 64

        response = await client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid webhook signature"

    @pytest.mark.asyncio
    async def test_missing_signature(self, client, signed, webhook_payload):
        response = await client.post(WEBHOOK_URL, json=webhook_payload())

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_json(self, client, signed):
        response = await client.post(
            WEBHOOK_URL,
            content=b"{not json",
            headers={"x-signature": compute_signature(b"{not json", SECRET)},
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_processing_failure_is_400(self, client, signed, webhook_payload):
        payload = webhook_payload()
        del payload["details"]["phone"]

        response = await post_webhook(client, signed, payload)

        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "No phone number in webhook payload"}

    @pytest.mark.asyncio
    async def test_unknown_type_is_200(self, client, signed, webhook_payload):
        response = await post_webhook(client, signed, webhook_payload("SOMETHING_NEW"))

        assert response.status_code == 200
        assert response.json()["success"] is True

    @pytest.mark.asyncio
    async def test_unsigned_allowed_without_secret_outside_production(self, client, monkeypatch, webhook_payload):
        monkeypatch.setattr(settings, "TELCO_WEBHOOK_SECRET", "")
        monkeypatch.setattr(settings, "ENVIRONMENT", "development")
        monkeypatch.setattr(settings, "ALLOW_UNSIGNED_WEBHOOKS", True)

        response = await client.post(WEBHOOK_URL, json=webhook_payload())

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_unsigned_refused_in_production(self, client, monkeypatch, webhook_payload):
        monkeypatch.setattr(settings, "TELCO_WEBHOOK_SECRET", "")
        monkeypatch.setattr(settings, "ENVIRONMENT", "production")
        monkeypatch.setattr(settings, "ALLOW_UNSIGNED_WEBHOOKS", True)

        response = await client.post(WEBHOOK_URL, json=webhook_payload())

        assert response.status_code == 401


class TestSubscriptionRoutes:
    @pytest.mark.asyncio
    async def test_user_subscription_status_history_and_cancel(self, client, signed, async_db, webhook_payload):
        await post_webhook(client, signed, webhook_payload(amount=50000))
        user = await UserRepository(async_db).get_by_phone("2348012345678")

        response = await client.get(f"/api/v1/subscriptions/{user.id}", headers=as_user(user.id))
        assert response.status_code == 200
        assert response.json()["active_subscription"]["plan_type"] == "weekly"

        response = await client.get(f"/api/v1/subscriptions/{user.id}/status", headers=as_user(user.id))
        assert response.status_code == 200
        assert response.json()["is_active"] is True

        response = await client.get(
            f"/api/v1/subscriptions/{user.id}/history", params={"limit": 5}, headers=as_user(user.id)
        )
        assert response.status_code == 200
        assert response.json()["total"] == 1

        response = await client.post(
            f"/api/v1/subscriptions/{user.id}/cancel", json={"reason": "moving abroad"}, headers=as_user(user.id)
        )
        assert response.status_code == 200
        assert response.json()["cancelled_count"] == 1

        response = await client.get(f"/api/v1/subscriptions/{user.id}/status", headers=as_user(user.id))
        assert response.json()["is_active"] is False

    @pytest.mark.asyncio
    async def test_unknown_user_is_404(self, client):
        user_id = uuid.uuid4()
        response = await client.get(f"/api/v1/subscriptions/{user_id}", headers=as_user(user_id))

        assert response.status_code == 404

        response = await client.post(f"/api/v1/subscriptions/{user_id}/cancel", headers=as_user(user_id))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_admin_routes(self, client, signed, monkeypatch, webhook_payload):
        monkeypatch.setattr(settings, "ADMIN_API_TOKEN", ADMIN_TOKEN)
        admin = {"x-admin-token": ADMIN_TOKEN}
        await post_webhook(client, signed, webhook_payload(amount=150000))

        response = await client.get("/api/v1/subscriptions/admin/stats", headers=admin)
        assert response.status_code == 200
        assert response.json()["active"] == 1
        assert response.json()["total_revenue"] == 150000

        response = await client.get(
            "/api/v1/subscriptions/admin/active", params={"page": 1, "limit": 10}, headers=admin
        )
        assert response.status_code == 200
        assert response.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_health_and_metrics(self, client):
        assert (await client.get("/health")).json() == {"status": "healthy"}

        response = await client.get("/metrics")
        assert response.status_code == 200
        assert "telco_webhook_events_total" in response.text


class TestCallerIdentity:
    """Per-user routes serve only the caller; admin routes need the token."""

    @pytest.mark.asyncio
    async def test_missing_caller_is_401(self, client):
        response = await client.post(f"/api/v1/subscriptions/{uuid.uuid4()}/cancel")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_malformed_caller_is_401(self, client):
        response = await client.get(
            f"/api/v1/subscriptions/{uuid.uuid4()}/status", headers={"x-user-id": "not-a-uuid"}
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_cannot_cancel_another_users_subscription(self, client, signed, async_db, webhook_payload):
        await post_webhook(client, signed, webhook_payload())
        user = await UserRepository(async_db).get_by_phone("2348012345678")

        response = await client.post(f"/api/v1/subscriptions/{user.id}/cancel", headers=as_user(uuid.uuid4()))

        assert response.status_code == 403
        response = await client.get(f"/api/v1/subscriptions/{user.id}/status", headers=as_user(user.id))
        assert response.json()["is_active"] is True

    @pytest.mark.asyncio
    async def test_admin_without_token_is_403(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_API_TOKEN", ADMIN_TOKEN)

        assert (await client.get("/api/v1/subscriptions/admin/stats")).status_code == 403
        response = await client.get("/api/v1/subscriptions/admin/active", headers={"x-admin-token": "wrong"})
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_admin_disabled_without_configured_token(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_API_TOKEN", "")

        response = await client.get("/api/v1/subscriptions/admin/stats", headers={"x-admin-token": ""})

        assert response.status_code == 403


class TestRequireActiveSubscription:
    @pytest_asyncio.fixture
    async def gated_client(self, async_db):
        gated = FastAPI()

        @gated.get("/workouts/{user_id}")
        async def workouts(user_id: uuid.UUID = Depends(require_active_subscription)):
            return {"user_id": str(user_id)}

        async def override_get_session():
            yield async_db

        gated.dependency_overrides[get_session] = override_get_session
        async with AsyncClient(transport=ASGITransport(app=gated), base_url="http://test") as client:
            yield client

    @pytest.mark.asyncio
    async def test_without_subscription_is_forbidden(self, gated_client, async_db):
        user = await UserRepository(async_db).create_from_phone("08012345678")
        await async_db.commit()

        response = await gated_client.get(f"/workouts/{user.id}")

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "SUBSCRIPTION_REQUIRED"

    @pytest.mark.asyncio
    async def test_with_subscription_is_allowed(self, gated_client, async_db, webhook_payload):
        await TelcoWebhookService(async_db).process_aggregator_webhook(webhook_payload())
        user = await UserRepository(async_db).get_by_phone("2348012345678")

        response = await gated_client.get(f"/workouts/{user.id}")

        assert response.status_code == 200
        assert response.json() == {"user_id": str(user.id)}
