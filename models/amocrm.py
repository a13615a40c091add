# models/amocrm.py
from pydantic import BaseModel
from typing import Any, Dict, List


class CrmFieldValue(BaseModel):
    value: str


class CrmCustomField(BaseModel):
    field_id: str
    values: List[CrmFieldValue]

    @classmethod
    def single(cls, field_id: str, value: str) -> "CrmCustomField":
        return cls(field_id=field_id, values=[CrmFieldValue(value=value)])


class CrmLead(BaseModel):
    """Сделка amoCRM v4 (POST /api/v4/leads принимает массив таких объектов)."""
    name: str
    custom_fields_values: List[CrmCustomField]

    def to_payload(self) -> List[Dict[str, Any]]:
        return [self.model_dump()]
