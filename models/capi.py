# models/capi.py
"""
Исходящие модели Facebook Conversions API.
Имена полей заданы Facebook и должны совпадать байт в байт.
"""
from pydantic import BaseModel
from typing import Any, Dict, List, Literal, Optional


class CapiUserData(BaseModel):
    client_ip_address: Optional[str] = None
    client_user_agent: Optional[str] = None
    em: Optional[str] = None
    ph: Optional[str] = None
    fbc: Optional[str] = None
    fbp: Optional[str] = None
    country: Optional[str] = None
    ct: Optional[str] = None


class CapiEvent(BaseModel):
    event_name: str
    event_time: int
    event_id: str
    action_source: Literal["website"] = "website"
    event_source_url: Optional[str] = None
    user_data: CapiUserData
    custom_data: Dict[str, Any] = {}


class CapiRequest(BaseModel):
    data: List[CapiEvent]
    test_event_code: Optional[str] = None
    access_token: str

    def to_payload(self) -> Dict[str, Any]:
        # отсутствующие поля не отправляем вовсе: ни null, ни пустых хешей
        return self.model_dump(exclude_none=True)
