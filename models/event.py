# models/event.py
from pydantic import BaseModel, ConfigDict, field_validator
from typing import Any, Dict, Optional


class _Inbound(BaseModel):
    # фронт шлёт лишние поля и иногда числа вместо строк (телефон)
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


# ─── Данные пользователя для CAPI (ещё не захешированные) ───
class ConversionUserInput(_Inbound):
    email: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    fbp: Optional[str] = None
    fbc: Optional[str] = None


# ─── Событие для /api/facebook-capi ───
class ConversionRequest(_Inbound):
    event_name: Optional[str] = None
    event_id: Optional[str] = None
    event_data: Dict[str, Any] = {}
    user_data: ConversionUserInput = ConversionUserInput()
    utm: Dict[str, Any] = {}

    @field_validator("event_data", "utm", "user_data", mode="before")
    @classmethod
    def _null_as_empty(cls, v):
        return {} if v is None else v


# ─── Заявка с лендинга для /api/submit-lead ───
class LeadSubmission(_Inbound):
    name: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    email: Optional[str] = None
    package_type: Optional[str] = None
    comments: Optional[str] = None
    # трекинг
    utm: Dict[str, Optional[str]] = {}
    page_url: Optional[str] = None
    site_language: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    fbp: Optional[str] = None
    fbc: Optional[str] = None

    @field_validator("utm", mode="before")
    @classmethod
    def _null_as_empty(cls, v):
        return {} if v is None else v

    def utm_value(self, key: str, default: str = "") -> str:
        return self.utm.get(key) or default
