import hashlib
import hmac
import json
from unittest.mock import AsyncMock, Mock, patch

import pytest
from fastapi.testclient import TestClient

from atende.config import settings
from atende.database import get_db
from atende.main import app
from atende.services.session_service import get_session_service

PAYLOAD = {
    "object": "whatsapp_business_account",
    "entry": [
        {
            "id": "WABA",
            "changes": [
                {
                    "field": "messages",
                    "value": {
                        "metadata": {"phone_number_id": "1000"},
                        "messages": [
                            {"from": "5585988887777", "id": "wamid.1", "type": "text", "text": {"body": "oi"}}
                        ],
                    },
                }
            ],
        }
    ],
}


@pytest.fixture
def service():
    return Mock()


@pytest.fixture
def client(db, tenant, service):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_session_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestVerify:
    def test_returns_challenge_for_tenant_token(self, client):
        response = client.get(
            "/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "verify-aurora", "hub.challenge": "12345"},
        )
        assert response.status_code == 200
        assert response.text == "12345"

    def test_returns_challenge_for_global_token(self, client, monkeypatch):
        monkeypatch.setattr(settings, "whatsapp_verify_token", "global-token")
        response = client.get(
            "/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "global-token", "hub.challenge": "abc"},
        )
        assert response.text == "abc"

    def test_wrong_token(self, client):
        response = client.get(
            "/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "12345"},
        )
        assert response.status_code == 403

    def test_missing_params(self, client):
        assert client.get("/webhook", params={"hub.mode": "subscribe"}).status_code == 400


class TestReceive:
    def test_acknowledges_and_dispatches(self, client, service):
        response = client.post("/webhook", json=PAYLOAD)

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "received": 1}
        [messages] = service.dispatch.call_args[0]
        assert messages[0].provider_message_id == "wamid.1"
        assert messages[0].event.text == "oi"

    def test_status_only_payload(self, client, service):
        payload = json.loads(json.dumps(PAYLOAD))
        value = payload["entry"][0]["changes"][0]["value"]
        value["messages"] = []
        value["statuses"] = [{"id": "wamid.1", "status": "read"}]

        response = client.post("/webhook", json=payload)
        assert response.json()["received"] == 0

    def test_invalid_json_is_acknowledged(self, client, service):
        response = client.post("/webhook", content=b"not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 200
        assert response.json()["received"] == 0
        service.dispatch.assert_not_called()

    def test_signature_enforced_when_secret_configured(self, client, service, monkeypatch):
        monkeypatch.setattr(settings, "whatsapp_app_secret", "app-secret")
        body = json.dumps(PAYLOAD).encode()

        with patch("atende.routers.webhook.alert_warning", AsyncMock(return_value=False)) as alert:
            rejected = client.post("/webhook", content=body, headers={"x-hub-signature-256": "sha256=00"})
        assert rejected.status_code == 403
        alert.assert_awaited_once()

        signature = "sha256=" + hmac.new(b"app-secret", body, hashlib.sha256).hexdigest()
        accepted = client.post(
            "/webhook",
            content=body,
            headers={"x-hub-signature-256": signature, "Content-Type": "application/json"},
        )
        assert accepted.status_code == 200
        assert accepted.json()["received"] == 1


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_db_check(self, client, departments):
        body = client.get("/db-check").json()
        assert body["status"] == "ok"
        assert body["departments"] == 3
        assert body["cases"] == 0
