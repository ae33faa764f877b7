"""
HTTP surface tests: immediate send, drain, CORS, configuration and health.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from push_dispatch.api.notifications import get_pipeline
from push_dispatch.config import ConfigurationError
from push_dispatch.main import create_app
from push_dispatch.models.schemas import DeliveryStatus
from push_dispatch.services.pipeline import build_pipeline


@pytest.fixture
def api_pipeline(settings, store, onesignal):
    client = httpx.AsyncClient(transport=httpx.MockTransport(onesignal.handler))
    return build_pipeline(settings, store, client)


@pytest.fixture
def client(settings, api_pipeline):
    app = create_app(settings)
    app.dependency_overrides[get_pipeline] = lambda: api_pipeline
    return TestClient(app)


class TestSendEndpoint:
    """POST /api/notifications/send"""

    def test_send_to_user_ids(self, client, onesignal):
        response = client.post(
            "/api/notifications/send",
            json={"userIds": ["u1", "u2"], "title": "Hi", "message": "Test"}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["provider_id"] == "os-notification-1"
        assert len(onesignal.requests) == 1
        payload = onesignal.payloads[0]
        assert payload["include_external_user_ids"] == ["u1", "u2"]
        assert payload["data"] == {}

    def test_empty_user_ids_rejected_without_provider_call(self, client, onesignal):
        response = client.post(
            "/api/notifications/send",
            json={"userIds": [], "title": "Hi", "message": "Test"}
        )
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert "userIds" in body["error"]
        assert onesignal.requests == []

    @pytest.mark.parametrize("body", [
        {"userIds": ["u1"], "title": "", "message": "Test"},
        {"userIds": ["u1"], "title": "Hi"},
        {"title": "Hi", "message": "Test"},
        {"userIds": "u1", "title": "Hi", "message": "Test"},
    ])
    def test_invalid_bodies_rejected(self, client, onesignal, body):
        response = client.post("/api/notifications/send", json=body)
        assert response.status_code == 400
        assert onesignal.requests == []

    def test_provider_failure_is_reported_in_summary(self, client, onesignal):
        onesignal.status_code = 400
        onesignal.body = {"errors": ["Invalid app_id format"]}
        response = client.post(
            "/api/notifications/send",
            json={"userIds": ["u1"], "title": "Hi", "message": "Test"}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert "Invalid app_id format" in body["error"]

    def test_correlated_records_are_reconciled(self, client, store):
        record = store.add(user_id="u1", correlation_id="corr-5")
        response = client.post(
            "/api/notifications/send",
            json={
                "userIds": ["u1"],
                "title": "Hi",
                "message": "Test",
                "data": {"url": "https://example.com/tasks/7"},
                "correlationId": "corr-5"
            }
        )
        assert response.status_code == 200
        assert response.json()["data"]["reconciled_record_ids"] == [str(record.id)]
        assert store.records[record.id].delivery_status == DeliveryStatus.SENT

    def test_cors_preflight(self, client):
        response = client.options(
            "/api/notifications/send",
            headers={
                "Origin": "https://app.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "authorization, content-type",
            }
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"


class TestDrainEndpoint:
    """POST /api/notifications/drain"""

    def test_drain_reports_per_record_outcomes(self, client, store, onesignal):
        sent = store.add(target_type="global")
        skipped = store.add(target_type="nowhere")

        response = client.post("/api/notifications/drain")

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Processed 2 notifications"
        statuses = {r["id"]: r["status"] for r in body["data"]["results"]}
        assert statuses == {str(sent.id): "sent", str(skipped.id): "skipped"}
        assert len(onesignal.requests) == 1

    def test_drain_with_nothing_due(self, client):
        response = client.post("/api/notifications/drain")
        assert response.status_code == 200
        assert response.json()["message"] == "No pending notifications"


class TestConfiguration:
    """Missing configuration is fatal per invocation"""

    def test_missing_configuration_returns_500(self):
        app = create_app(None, ConfigurationError(["ONESIGNAL_APP_ID", "ONESIGNAL_REST_API_KEY"]))
        client = TestClient(app)

        response = client.post(
            "/api/notifications/send",
            json={"userIds": ["u1"], "title": "Hi", "message": "Test"}
        )
        assert response.status_code == 500
        assert "ONESIGNAL_APP_ID" in response.json()["error"]

        assert client.post("/api/notifications/drain").status_code == 500

    def test_health_reports_degraded_without_resources(self, settings):
        response = TestClient(create_app(settings)).get("/health")
        assert response.status_code == 503
        body = response.json()
        assert body["success"] is False
        assert body["data"]["database"].startswith("disconnected")
