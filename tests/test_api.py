"""Tests for the HTTP surface of the gateway."""

import hashlib
import json
from datetime import datetime
from unittest.mock import patch

import httpx
import pytest
import respx

import main
from services.config import Settings
from services.errors import StorageError
from services.leads import SUCCESS_MESSAGE

from conftest import (
    AMOCRM_OK,
    AMOCRM_URL,
    CAPI_OK,
    CAPI_URL,
    TELEGRAM_OK,
    TELEGRAM_URL,
    FakeEventStore,
)

ENDPOINTS = ["/api/facebook-capi", "/api/submit-lead", "/api/analytics", "/ru/api/analytics"]


def _mock_integrations(router):
    return (
        router.post(CAPI_URL).mock(return_value=httpx.Response(200, json=CAPI_OK)),
        router.post(AMOCRM_URL).mock(return_value=httpx.Response(200, json=AMOCRM_OK)),
        router.post(TELEGRAM_URL).mock(return_value=httpx.Response(200, json=TELEGRAM_OK)),
    )


class TestHttpSurface:
    @pytest.mark.parametrize("path", ENDPOINTS)
    def test_options_preflight(self, client, path):
        response = client.options(
            path,
            headers={"Origin": "https://landing.example", "Access-Control-Request-Method": "POST"},
        )
        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert "POST" in response.headers["Access-Control-Allow-Methods"]
        assert "Content-Type" in response.headers["Access-Control-Allow-Headers"]

    @pytest.mark.parametrize("path", ENDPOINTS)
    @pytest.mark.parametrize("method", ["GET", "PUT", "DELETE"])
    def test_method_not_allowed(self, client, path, method):
        response = client.request(method, path)
        assert response.status_code == 405
        assert response.json() == {"error": "Method not allowed"}

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "integrations": {
                "capi": True,
                "crm": True,
                "telegram": True,
                "analytics_store": True,
                "geoip": False,
            },
        }

    def test_malformed_json_is_400(self, client):
        response = client.post(
            "/api/submit-lead", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request body"


class TestFacebookCapiEndpoint:
    def test_success(self, client):
        with respx.mock:
            route = respx.post(CAPI_URL).mock(return_value=httpx.Response(200, json=CAPI_OK))
            response = client.post(
                "/api/facebook-capi",
                json={"event_name": "Lead", "event_id": "e-1", "user_data": {"email": "a@b.c"}},
                headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "User-Agent": "UA/1"},
            )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "events_received": 1,
            "fbtrace_id": "AbCdEf123",
            "event_id": "e-1",
        }
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        user = json.loads(route.calls.last.request.content)["data"][0]["user_data"]
        assert user["client_ip_address"] == "203.0.113.7"
        assert user["client_user_agent"] == "UA/1"
        assert user["em"] == hashlib.sha256(b"a@b.c").hexdigest()

    def test_non_string_page_url_still_forwarded(self, client):
        with respx.mock:
            route = respx.post(CAPI_URL).mock(return_value=httpx.Response(200, json=CAPI_OK))
            response = client.post(
                "/api/facebook-capi",
                json={"event_name": "Lead", "event_id": "e1", "event_data": {"page_url": 123}},
                headers={"Referer": "https://landing.example/ru/"},
            )

        assert response.status_code == 200
        event = json.loads(route.calls.last.request.content)["data"][0]
        assert event["event_source_url"] == "https://landing.example/ru/"
        assert event["custom_data"]["page_url"] == 123

    def test_missing_fields(self, client):
        with respx.mock(assert_all_called=False) as router:
            route = router.post(CAPI_URL)
            response = client.post("/api/facebook-capi", json={"event_name": "Lead"})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing required fields: event_name, event_id"}
        assert not route.called

    def test_missing_token(self, make_client):
        client = make_client(Settings())
        response = client.post("/api/facebook-capi", json={"event_name": "Lead", "event_id": "e-1"})
        assert response.status_code == 500
        assert response.json() == {"error": "Server configuration error"}

    def test_upstream_error_propagated(self, client):
        error_body = {"error": {"message": "Invalid OAuth access token.", "code": 190}}
        with respx.mock:
            respx.post(CAPI_URL).mock(return_value=httpx.Response(401, json=error_body))
            response = client.post("/api/facebook-capi", json={"event_name": "Lead", "event_id": "e-1"})

        assert response.status_code == 401
        assert response.json() == {"error": "Facebook API error", "details": error_body}

    def test_network_failure_is_500(self, client):
        with respx.mock:
            respx.post(CAPI_URL).mock(side_effect=httpx.ConnectError("boom"))
            response = client.post("/api/facebook-capi", json={"event_name": "Lead", "event_id": "e-1"})

        assert response.status_code == 500
        assert response.json()["error"] == "Internal server error"


class TestSubmitLeadEndpoint:
    def test_full_flow(self, client, lead_payload):
        with respx.mock:
            capi, amocrm, telegram = _mock_integrations(respx)
            response = client.post("/api/submit-lead", json=lead_payload)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["lead_id"] == 4242
        assert body["fb_event_id"].startswith("u1_Lead_")
        assert body["message"] == SUCCESS_MESSAGE

        event = json.loads(capi.calls.last.request.content)["data"][0]
        assert event["event_id"] == body["fb_event_id"]
        assert event["custom_data"]["value"] == 500
        assert event["custom_data"]["currency"] == "EUR"
        assert event["custom_data"]["utm_source"] == "facebook"
        assert event["user_data"]["country"] == hashlib.sha256(b"RU").hexdigest()
        assert event["user_data"]["em"] == hashlib.sha256(b"ivan.petrov@example.com").hexdigest()

        raw = capi.calls.last.request.content.decode()
        assert "Ivan.Petrov" not in raw
        assert amocrm.called
        assert telegram.called

    def test_missing_phone_makes_no_outbound_calls(self, client, lead_payload):
        lead_payload.pop("phone")
        with respx.mock(assert_all_called=False) as router:
            _mock_integrations(router)
            response = client.post("/api/submit-lead", json=lead_payload)

        assert response.status_code == 400
        assert response.json() == {"error": "Missing required fields: name, phone"}
        assert router.calls.call_count == 0

    def test_crm_not_configured(self, make_client, settings, lead_payload):
        settings.amocrm_api_key = None
        client = make_client(settings)
        with respx.mock(assert_all_called=False) as router:
            capi, amocrm, telegram = _mock_integrations(router)
            response = client.post("/api/submit-lead", json=lead_payload)

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["lead_id"] is None
        assert capi.called
        assert telegram.called
        assert not amocrm.called

    def test_integration_failures_do_not_fail_lead(self, client, lead_payload):
        with respx.mock:
            respx.post(CAPI_URL).mock(return_value=httpx.Response(500, json={"error": {"message": "x"}}))
            respx.post(AMOCRM_URL).mock(side_effect=httpx.ConnectTimeout("slow"))
            respx.post(TELEGRAM_URL).mock(return_value=httpx.Response(400, json={"ok": False}))
            response = client.post("/api/submit-lead", json=lead_payload)

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["lead_id"] is None

    def test_standard_package_value(self, client):
        with respx.mock:
            capi, _, _ = _mock_integrations(respx)
            client.post("/api/submit-lead", json={"name": "Ivan", "phone": "+491701234567"})

        custom = json.loads(capi.calls.last.request.content)["data"][0]["custom_data"]
        assert custom["value"] == 300
        assert "content_type" not in custom

    def test_internal_http_forwarding(self, make_client, settings, lead_payload):
        settings.capi_internal_http = True
        client = make_client(settings)
        internal_url = "https://landing.example/api/facebook-capi"
        with respx.mock(assert_all_called=False) as router:
            route = router.post(internal_url).mock(
                return_value=httpx.Response(200, json={"success": True, "event_id": "x"})
            )
            capi, _, _ = _mock_integrations(router)
            response = client.post(
                "/api/submit-lead",
                json=lead_payload,
                headers={
                    "X-Forwarded-Proto": "https",
                    "X-Forwarded-Host": "landing.example",
                    "X-Forwarded-For": "203.0.113.7",
                },
            )

        assert response.status_code == 200
        assert not capi.called
        forwarded = route.calls.last.request
        assert forwarded.headers["X-Forwarded-For"] == "203.0.113.7"
        assert json.loads(forwarded.content)["event_name"] == "Lead"


class TestAnalyticsEndpoint:
    @pytest.mark.parametrize("path", ["/api/analytics", "/ru/api/analytics"])
    def test_persists_event_with_metadata(self, client, event_store, path):
        response = client.post(path, json={"foo": "bar"}, headers={"User-Agent": "UA/2"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "id": "evt-1"}
        assert response.headers["Access-Control-Allow-Credentials"] == "true"

        doc = event_store.documents[0]
        assert doc["foo"] == "bar"
        datetime.fromisoformat(doc["server_timestamp"].replace("Z", "+00:00"))
        assert doc["ip_address"]
        assert doc["user_agent"] == "UA/2"

    def test_forwarded_for_header(self, client, event_store):
        client.post("/api/analytics", json={}, headers={"X-Forwarded-For": "198.51.100.9"})
        assert event_store.documents[0]["ip_address"] == "198.51.100.9"

    def test_payload_too_large(self, make_client, settings, event_store):
        settings.analytics_max_body_bytes = 100
        client = make_client(settings, store=event_store)
        response = client.post("/api/analytics", json={"blob": "x" * 200})

        assert response.status_code == 413
        assert response.json() == {"success": False, "error": "Payload too large"}
        assert event_store.documents == []

    @pytest.mark.parametrize("content", [b"[1, 2]", b"not json"])
    def test_rejects_non_object(self, client, event_store, content):
        response = client.post(
            "/api/analytics", content=content, headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json()["success"] is False
        assert event_store.documents == []

    def test_storage_error(self, make_client, settings):
        client = make_client(settings, store=FakeEventStore(error=StorageError("MongoDB connection failed: down")))
        response = client.post("/api/analytics", json={"foo": "bar"})

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "MongoDB connection failed: down"}

    def test_unconfigured_store_fails_loudly(self, make_client):
        client = make_client(Settings())
        response = client.post("/api/analytics", json={"foo": "bar"})

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "MONGODB_URI is not configured"}


def test_run_serves_app_with_configured_bind(monkeypatch):
    monkeypatch.setattr(main.app.state, "settings", Settings(host="127.0.0.1", port=9100))
    with patch("uvicorn.run") as uvicorn_run:
        main.run()

    uvicorn_run.assert_called_once_with(main.app, host="127.0.0.1", port=9100, log_config=None)
