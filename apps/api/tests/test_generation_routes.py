import dataclasses
import json

import pytest

from config import settings
from main import app
from routers.deps import get_core_config
from services.payment_webhooks import sign_payload
from services.session_token import create_session_token


USER_ID = "icon-user"
OTHER_USER_ID = "icon-user-other"
USER_AUTH_HEADER = {"Authorization": f"Bearer {create_session_token(USER_ID)['token']}"}
OTHER_AUTH_HEADER = {"Authorization": f"Bearer {create_session_token(OTHER_USER_ID)['token']}"}

GENERATION_BODY = {
    "appName": "Pawsome",
    "appFocus": "pet adoption",
    "color1": "teal",
    "color2": "orange",
    "model": "reve-text",
    "outputCount": 1,
}


def _webhook_headers(raw: bytes, secret: str = "whsec_test") -> dict:
    timestamp = "1760000000"
    return {
        "Content-Type": "application/json",
        "webhook-signature": f"v1,{timestamp},{sign_payload(raw, timestamp, secret)}",
    }


@pytest.mark.asyncio
async def test_create_generation_requires_session(api_client, fake_provider):
    response = await api_client.post("/generations", json=GENERATION_BODY)

    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "unauthenticated"
    assert fake_provider.requests == []


@pytest.mark.asyncio
async def test_create_poll_and_history_flow(api_client, fake_provider):
    fake_provider.submit_response = {"id": "pred-1", "status": "queued"}

    created = await api_client.post("/generations", json=GENERATION_BODY, headers=USER_AUTH_HEADER)

    assert created.status_code == 200
    body = created.json()
    assert body["prediction_id"] == "pred-1"
    assert body["status"] == "running"
    assert body["credits_charged"] == 1
    assert body["balance"] == 1
    assert body["prediction"] == {"id": "pred-1", "status": "queued"}
    assert fake_provider.submitted_bodies()[0]["model"] == "reve-text-to-image"

    fake_provider.status_responses["pred-1"] = {"id": "pred-1", "status": "success", "output": ["icon.png"]}
    polled = await api_client.get("/generations/pred-1", headers=USER_AUTH_HEADER)
    forbidden = await api_client.get("/generations/pred-1", headers=OTHER_AUTH_HEADER)
    missing = await api_client.get("/generations/pred-404", headers=USER_AUTH_HEADER)

    assert polled.status_code == 200
    assert polled.json()["output"] == ["icon.png"]
    assert forbidden.status_code == 403
    assert missing.status_code == 404

    history = await api_client.get("/generations?limit=10", headers=USER_AUTH_HEADER)
    record = await api_client.get(f"/generations/records/{body['generation_id']}", headers=USER_AUTH_HEADER)

    assert history.status_code == 200
    items = history.json()["generations"]
    assert len(items) == 1
    assert items[0]["status"] == "succeeded"
    assert items[0]["images"] == ["icon.png"]
    assert history.json()["pagination"]["total"] == 1
    assert record.status_code == 200
    assert record.json()["generation"]["app_name"] == "Pawsome"


@pytest.mark.asyncio
async def test_create_generation_error_responses(api_client, fake_provider):
    invalid = await api_client.post(
        "/generations",
        content=b"{not json",
        headers={**USER_AUTH_HEADER, "Content-Type": "application/json"},
    )
    short = await api_client.post(
        "/generations",
        json={**GENERATION_BODY, "outputCount": 3},
        headers=USER_AUTH_HEADER,
    )
    fake_provider.unreachable = True
    unreachable = await api_client.post("/generations", json=GENERATION_BODY, headers=USER_AUTH_HEADER)
    balance = await api_client.get("/credits/balance", headers=USER_AUTH_HEADER)

    assert invalid.status_code == 400
    assert invalid.json()["detail"]["code"] == "invalid_request"
    assert short.status_code == 402
    assert short.json()["detail"]["balance"] == 2
    assert short.json()["detail"]["required"] == 3
    assert unreachable.status_code == 502
    assert unreachable.json()["detail"]["code"] == "provider_unreachable"
    assert balance.json()["balance"] == 2


@pytest.mark.asyncio
async def test_history_rejects_unknown_status(api_client):
    response = await api_client.get("/generations?status=exploded", headers=USER_AUTH_HEADER)

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_payment_webhook_grants_and_replays(api_client):
    raw = json.dumps(
        {
            "type": "order.created",
            "data": {"id": "order-123", "amount": 500, "metadata": {"userId": USER_ID}},
        }
    ).encode("utf-8")

    first = await api_client.post("/webhooks/payment", content=raw, headers=_webhook_headers(raw))
    replay = await api_client.post("/webhooks/payment", content=raw, headers=_webhook_headers(raw))
    forged = await api_client.post("/webhooks/payment", content=raw, headers=_webhook_headers(raw, "nope"))
    balance = await api_client.get("/credits/balance", headers=USER_AUTH_HEADER)

    assert first.status_code == 200
    assert first.json()["status"] == "processed"
    assert first.json()["credits"] == 5
    assert replay.status_code == 200
    assert replay.json()["status"] == "already_processed"
    assert forged.status_code == 401
    assert balance.json() == {"balance": 7, "total_purchased": 5, "total_used": 0}


@pytest.mark.asyncio
async def test_payment_webhook_without_user_is_pending(api_client):
    raw = json.dumps(
        {
            "type": "order.created",
            "data": {"id": "order-orphan", "amount": 300, "customer": {"email": "who@logoloco.test"}},
        }
    ).encode("utf-8")

    response = await api_client.post("/webhooks/payment", content=raw, headers=_webhook_headers(raw))

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["status"] == "pending_user_link"
    assert detail["credits"] == 3
    assert detail["customer_email"] == "who@logoloco.test"


@pytest.mark.asyncio
async def test_manual_credit_endpoint_is_gated(api_client, monkeypatch):
    payload = {"user_id": USER_ID, "credits": 4}

    hidden = await api_client.post("/webhooks/payment/test", json=payload)
    monkeypatch.setattr(settings, "ENABLE_TEST_ENDPOINTS", True)
    granted = await api_client.post("/webhooks/payment/test", json=payload)

    assert hidden.status_code == 404
    assert granted.status_code == 200
    assert granted.json() == {"success": True, "new_balance": 6}


@pytest.mark.asyncio
async def test_health_probes(api_client):
    live = await api_client.get("/health/live")
    ready = await api_client.get("/health/ready")

    assert live.json() == {"alive": True}
    assert ready.status_code == 200
    assert ready.json() == {"ready": True}


@pytest.mark.asyncio
async def test_readiness_lists_missing_credentials(api_client, core_config):
    app.dependency_overrides[get_core_config] = lambda: dataclasses.replace(core_config, webhook_secret="")

    response = await api_client.get("/health/ready")

    assert response.status_code == 503
    assert response.json() == {"ready": False, "missing": ["POLAR_WEBHOOK_SECRET"]}
