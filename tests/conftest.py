"""Shared fixtures for gateway tests."""

import os

# main.py настраивает логирование при импорте; в тестах файл логов не нужен
os.environ["LOG_TO_FILE"] = "false"

import pytest
from fastapi.testclient import TestClient

from main import create_app, get_event_store
from services.config import Settings

TEST_PIXEL_ID = "1234567890"
TEST_ACCESS_TOKEN = "test-access-token"
CAPI_URL = f"https://graph.facebook.com/v21.0/{TEST_PIXEL_ID}/events"
AMOCRM_URL = "https://testco.amocrm.ru/api/v4/leads"
TELEGRAM_URL = "https://api.telegram.org/bot123:TEST/sendMessage"

CAPI_OK = {"events_received": 1, "messages": [], "fbtrace_id": "AbCdEf123"}
AMOCRM_OK = {"_embedded": {"leads": [{"id": 4242, "request_id": "0"}]}}
TELEGRAM_OK = {"ok": True, "result": {"message_id": 1}}


class FakeEventStore:
    """In-memory stand-in for EventStore."""

    def __init__(self, error: Exception = None):
        self.documents = []
        self.error = error

    async def insert(self, document):
        if self.error:
            raise self.error
        self.documents.append(document)
        return f"evt-{len(self.documents)}"

    async def close(self):
        pass


@pytest.fixture
def settings():
    """Settings with every integration configured."""
    return Settings(
        facebook_pixel_id=TEST_PIXEL_ID,
        facebook_access_token=TEST_ACCESS_TOKEN,
        amocrm_subdomain="testco",
        amocrm_api_key="crm-api-key",
        telegram_bot_token="123:TEST",
        telegram_chat_id="-100500",
        mongodb_uri="mongodb://localhost:27017",
    )


@pytest.fixture
def make_client():
    """Build a TestClient for arbitrary settings (and optional store override)."""
    clients = []

    def _make(settings: Settings, store=None) -> TestClient:
        app = create_app(settings)
        if store is not None:
            app.dependency_overrides[get_event_store] = lambda: store
        client = TestClient(app)
        clients.append(client)
        return client

    yield _make
    for c in clients:
        c.close()


@pytest.fixture
def event_store():
    return FakeEventStore()


@pytest.fixture
def client(make_client, settings, event_store):
    return make_client(settings, store=event_store)


@pytest.fixture
def lead_payload():
    return {
        "name": "Ivan",
        "phone": "+49 170 1234567",
        "email": "  Ivan.Petrov@Example.COM ",
        "whatsapp": "+491701234567",
        "package_type": "premium",
        "comments": "Хочу начать в марте",
        "utm": {"utm_source": "facebook", "utm_campaign": "spring", "utm_medium": "cpc"},
        "page_url": "https://landing.example/ru/",
        "site_language": "ru",
        "user_id": "u1",
        "session_id": "s1",
        "fbp": "fb.1.1700000000000.111",
        "fbc": "fb.1.1700000000000.AbCd",
    }
