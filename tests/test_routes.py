from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from costpulse.main import _is_ping, app, app_state


@pytest.fixture
def client(service):
    app_state["service"] = service
    yield TestClient(app)
    app_state.clear()


class TestDashboardRoutes:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["region"] == "westeurope"
        assert "snapshot" in data

    def test_dashboard(self, client):
        resp = client.get("/api/dashboard")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["status"] == "success"
        assert data["models"][0]["name"] == "gpt-4o"
        assert data["models"][0]["input_price"] == 0.0000025
        assert data["summary"]["total_cost"] == 0
        assert data["exchange_rates"]["usd_czk"] == 23.1

    def test_dashboard_failure_returns_500(self, client, service):
        service.aggregator.build_snapshot = AsyncMock(side_effect=RuntimeError("aggregation bug"))
        resp = client.get("/api/dashboard")
        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "aggregation bug"}

    def test_manual_refresh(self, client, fake_azure):
        resp = client.post("/api/refresh")
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert fake_azure.calls["pricing"] == 1

    def test_pricing(self, client):
        data = client.get("/api/pricing").json()
        assert data["success"] is True
        assert data["data"][0]["model"] == "gpt-4o"

    def test_usage(self, client):
        data = client.get("/api/usage").json()
        assert list(data["data"]) == ["gpt-4o"]

    def test_exchange_rates(self, client):
        data = client.get("/api/exchange-rates").json()
        assert data["data"]["usd_eur"] == 0.92


class TestConfigCheckRoute:
    def test_valid(self, client, valid_credentials):
        body = {
            "subscriptionId": valid_credentials["subscription_id"],
            "tenantId": valid_credentials["tenant_id"],
            "clientId": valid_credentials["client_id"],
            "clientSecret": valid_credentials["client_secret"],
            "resourceGroup": valid_credentials["resource_group"],
            "region": valid_credentials["region"],
        }
        resp = client.post("/api/test-config", json=body)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Configuration is valid"}

    def test_snake_case_body(self, client, valid_credentials):
        resp = client.post("/api/test-config", json=valid_credentials)
        assert resp.status_code == 200

    def test_malformed(self, client, valid_credentials, fake_azure):
        valid_credentials["client_secret"] = "short"
        resp = client.post("/api/test-config", json=valid_credentials)
        assert resp.status_code == 400
        data = resp.json()
        assert data["success"] is False
        assert data["errors"] == {"client_secret": "must be 32-255 characters"}
        assert fake_azure.calls["token"] == 0

    def test_rejected_by_identity_provider(self, client, valid_credentials, fake_azure):
        fake_azure.status["token"] = 401
        resp = client.post("/api/test-config", json=valid_credentials)
        assert resp.status_code == 400
        assert "401" in resp.json()["error"]


class TestWebSocket:
    def test_receives_current_snapshot_and_pong(self, client, service, snapshot_factory):
        service.cache.publish(snapshot_factory(4.0))
        with client.websocket_connect("/ws") as ws:
            message = ws.receive_json()
            assert message["type"] == "update"
            assert message["data"]["summary"]["total_cost"] == 4.0
            assert service.hub.subscriber_count == 1

            ws.send_text("ping")
            assert ws.receive_json()["type"] == "pong"

            ws.send_text('{"type": "ping"}')
            assert ws.receive_json()["type"] == "pong"

    def test_ping_detection(self):
        assert _is_ping("ping")
        assert _is_ping(' {"type": "ping"} ')
        assert not _is_ping("hello")
        assert not _is_ping('["ping"]')


class TestConfigCheckMalformedToken:
    def test_non_string_token_is_an_auth_failure(self, client, valid_credentials, fake_azure):
        fake_azure.token_payload = {"access_token": 12345, "expires_in": 3600}
        resp = client.post("/api/test-config", json=valid_credentials)
        assert resp.status_code == 400
        data = resp.json()
        assert data["success"] is False
        assert "Malformed" in data["error"]
