# services/amocrm.py
import logging
import httpx
from typing import Any, List, Optional

from models.amocrm import CrmCustomField, CrmLead
from models.event import LeadSubmission
from services.errors import UpstreamError

logger = logging.getLogger(__name__)


def build_amocrm_payload(lead: LeadSubmission) -> CrmLead:
    """
    Формируем сделку под amoCRM. Порядок и field_id полей заданы настройками аккаунта.
    """
    fields: List[CrmCustomField] = [CrmCustomField.single("PHONE", lead.phone)]
    if lead.whatsapp:
        fields.append(CrmCustomField.single("WHATSAPP", lead.whatsapp))
    if lead.email:
        fields.append(CrmCustomField.single("EMAIL", lead.email))
    if lead.package_type:
        fields.append(CrmCustomField.single("PACKAGE", lead.package_type))
    if lead.comments:
        fields.append(CrmCustomField.single("COMMENTS", lead.comments))
    fields.append(CrmCustomField.single("UTM_SOURCE", lead.utm_value("utm_source")))
    fields.append(CrmCustomField.single("UTM_CAMPAIGN", lead.utm_value("utm_campaign")))

    return CrmLead(name=f"Заявка от {lead.name}", custom_fields_values=fields)


def extract_lead_id(body: Any) -> Optional[int]:
    """_embedded.leads[0].id из ответа amoCRM или None."""
    try:
        return body["_embedded"]["leads"][0]["id"]
    except (KeyError, IndexError, TypeError):
        return None


class AmoCRMClient:
    def __init__(self, leads_url: str, api_key: str, timeout: float):
        self.leads_url = leads_url
        self.api_key = api_key
        self.timeout = timeout

    async def create_lead(self, lead: LeadSubmission) -> Optional[int]:
        """
        Создаёт сделку и возвращает её id. Ошибки сети и не-2xx пробрасываются:
        решение, что с ними делать, принимает вызывающий код.
        """
        payload = build_amocrm_payload(lead).to_payload()
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                self.leads_url,
                json=payload,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
            )
        if resp.is_error:
            raise UpstreamError(
                f"amoCRM error {resp.status_code}", status_code=resp.status_code, body=resp.text
            )

        lead_id = extract_lead_id(resp.json())
        logger.info("amocrm_ok", extra={"status": resp.status_code, "lead_id": lead_id})
        return lead_id
