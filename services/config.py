# services/config.py
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    """Пустая строка в .env считается отсутствием значения."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_bool(name: str, default: bool = False) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """
    Вся конфигурация сервиса в одном месте. Собирается один раз при старте
    (Settings.from_env()) и хранится в app.state.settings.
    Необязательная интеграция выключается, если не задано хотя бы одно из её полей.
    """

    # Facebook Conversions API
    facebook_pixel_id: str = "3789700971281396"
    facebook_access_token: Optional[str] = None
    facebook_test_event_code: Optional[str] = None
    facebook_api_version: str = "v21.0"
    facebook_graph_url: str = "https://graph.facebook.com"
    capi_internal_http: bool = False

    # amoCRM
    amocrm_subdomain: Optional[str] = None
    amocrm_api_key: Optional[str] = None
    amocrm_domain: str = "amocrm.ru"

    # Telegram
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    telegram_api_url: str = "https://api.telegram.org"
    notify_timezone: str = "Europe/Moscow"

    # MongoDB (аналитика)
    mongodb_uri: Optional[str] = None
    mongodb_db: str = "truck_driver_analytics"
    mongodb_collection: str = "events"
    mongodb_timeout_ms: int = 5000
    analytics_max_body_bytes: int = 64 * 1024

    # прочее
    host: str = "0.0.0.0"
    port: int = 8000
    http_timeout: float = 10.0
    geoip_db_path: Optional[str] = None

    @property
    def capi_enabled(self) -> bool:
        return bool(self.facebook_access_token)

    @property
    def crm_enabled(self) -> bool:
        return bool(self.amocrm_subdomain and self.amocrm_api_key)

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @property
    def capi_events_url(self) -> str:
        base = self.facebook_graph_url.rstrip("/")
        return f"{base}/{self.facebook_api_version}/{self.facebook_pixel_id}/events"

    @property
    def amocrm_leads_url(self) -> str:
        return f"https://{self.amocrm_subdomain}.{self.amocrm_domain}/api/v4/leads"

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            facebook_pixel_id=_env("FACEBOOK_PIXEL_ID", defaults.facebook_pixel_id),
            facebook_access_token=_env("FACEBOOK_ACCESS_TOKEN"),
            facebook_test_event_code=_env("FACEBOOK_TEST_EVENT_CODE"),
            facebook_api_version=_env("FACEBOOK_API_VERSION", defaults.facebook_api_version),
            capi_internal_http=_env_bool("CAPI_INTERNAL_HTTP"),
            amocrm_subdomain=_env("AMOCRM_SUBDOMAIN"),
            amocrm_api_key=_env("AMOCRM_API_KEY"),
            telegram_bot_token=_env("TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=_env("TELEGRAM_CHAT_ID"),
            notify_timezone=_env("NOTIFY_TIMEZONE", defaults.notify_timezone),
            mongodb_uri=_env("MONGODB_URI"),
            mongodb_db=_env("MONGODB_DB", defaults.mongodb_db),
            mongodb_collection=_env("MONGODB_COLLECTION", defaults.mongodb_collection),
            mongodb_timeout_ms=int(_env("MONGODB_TIMEOUT_MS", str(defaults.mongodb_timeout_ms))),
            analytics_max_body_bytes=int(
                _env("ANALYTICS_MAX_BODY_BYTES", str(defaults.analytics_max_body_bytes))
            ),
            http_timeout=float(_env("HTTP_TIMEOUT", str(defaults.http_timeout))),
            geoip_db_path=_env("GEOIP_DB_PATH"),
            host=_env("HOST", defaults.host),
            port=int(_env("PORT", str(defaults.port))),
        )
