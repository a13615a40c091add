# services/leads.py
import time
import string
import secrets
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from models.event import ConversionRequest, ConversionUserInput, LeadSubmission
from services.errors import ValidationError
from services.request_meta import RequestMeta

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Заявка успешно отправлена! Мы свяжемся с вами в ближайшее время."

CONTENT_NAME = "Driver C+E Application"
CONTENT_CATEGORY = "Application Form"
CURRENCY = "EUR"
PREMIUM_VALUE = 500
DEFAULT_VALUE = 300

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


class ConversionCapability(Protocol):
    async def forward(self, req: ConversionRequest, meta: RequestMeta) -> Dict: ...


class CrmCapability(Protocol):
    async def create_lead(self, lead: LeadSubmission) -> Optional[int]: ...


class NotifierCapability(Protocol):
    async def notify_lead(self, lead: LeadSubmission) -> None: ...


@dataclass
class StageResult:
    name: str
    status: str  # ok | failed | skipped
    error: Optional[str] = None
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass
class LeadReport:
    event_id: str
    stages: List[StageResult] = field(default_factory=list)

    def stage(self, name: str) -> Optional[StageResult]:
        for s in self.stages:
            if s.name == name:
                return s
        return None

    @property
    def lead_id(self) -> Optional[int]:
        crm = self.stage("crm")
        return crm.data if crm and crm.ok else None

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "lead_id": self.lead_id,
            "fb_event_id": self.event_id,
            "message": SUCCESS_MESSAGE,
        }


def build_event_id(user_id: Optional[str], now_ms: Optional[int] = None) -> str:
    """
    {user_id}_Lead_{epoch_ms}_{9 символов base36}. Тот же id уходит в браузерный
    пиксель, поэтому генерируется ровно один раз на заявку.
    """
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(9))
    return f"{user_id or 'anonymous'}_Lead_{now_ms}_{suffix}"


def lead_value(package_type: Optional[str]) -> int:
    return PREMIUM_VALUE if package_type == "premium" else DEFAULT_VALUE


def build_conversion_request(lead: LeadSubmission, event_id: str, city: str = "") -> ConversionRequest:
    """
    Событие Lead для CAPI. email/phone передаются как есть, хеширует их
    services.facebook_capi перед отправкой.
    """
    event_data: Dict[str, Any] = {
        "content_name": CONTENT_NAME,
        "content_category": CONTENT_CATEGORY,
    }
    if lead.package_type:
        event_data["content_type"] = lead.package_type
    event_data.update(
        value=lead_value(lead.package_type),
        currency=CURRENCY,
        page_url=lead.page_url,
        site_language=lead.site_language,
    )

    user_data = ConversionUserInput(
        email=lead.email,
        phone=lead.phone,
        country=lead.site_language.upper() if lead.site_language else None,
        city=city or None,
        fbp=lead.fbp,
        fbc=lead.fbc,
    )
    return ConversionRequest(
        event_name="Lead",
        event_id=event_id,
        event_data=event_data,
        user_data=user_data,
        utm=dict(lead.utm),
    )


async def _run_stage(name: str, call: Callable[[], Awaitable[Any]]) -> StageResult:
    try:
        data = await call()
    except Exception as e:
        logger.exception(f"{name}_fail", extra={"error": str(e)})
        return StageResult(name=name, status="failed", error=str(e))
    return StageResult(name=name, status="ok", data=data)


class LeadPipeline:
    """
    Обработка заявки: CAPI -> amoCRM -> Telegram.
    Каждый этап изолирован: падение одного не отменяет остальные и не ломает ответ.
    crm/notifier = None означает, что интеграция не настроена.
    """

    def __init__(
        self,
        conversion: ConversionCapability,
        crm: Optional[CrmCapability] = None,
        notifier: Optional[NotifierCapability] = None,
        city_lookup: Optional[Callable[[Optional[str]], str]] = None,
    ):
        self.conversion = conversion
        self.crm = crm
        self.notifier = notifier
        self.city_lookup = city_lookup

    async def process(self, lead: LeadSubmission, meta: RequestMeta) -> LeadReport:
        if not lead.name or not lead.phone:
            raise ValidationError("Missing required fields: name, phone")

        report = LeadReport(event_id=build_event_id(lead.user_id))
        logger.info(
            "lead_received",
            extra={
                "event_id": report.event_id,
                "session_id": lead.session_id,
                "package_type": lead.package_type,
                "has_email": bool(lead.email),
                "has_whatsapp": bool(lead.whatsapp),
                "client_ip": meta.client_ip,
            },
        )

        # 1) Facebook CAPI
        city = self.city_lookup(meta.client_ip) if self.city_lookup else ""
        capi_req = build_conversion_request(lead, report.event_id, city=city)
        report.stages.append(await _run_stage("capi", lambda: self.conversion.forward(capi_req, meta)))

        # 2) amoCRM
        if self.crm is not None:
            report.stages.append(await _run_stage("crm", lambda: self.crm.create_lead(lead)))
        else:
            logger.info("crm_not_configured")
            report.stages.append(StageResult(name="crm", status="skipped"))

        # 3) Telegram
        if self.notifier is not None:
            report.stages.append(await _run_stage("telegram", lambda: self.notifier.notify_lead(lead)))
        else:
            logger.info("telegram_not_configured")
            report.stages.append(StageResult(name="telegram", status="skipped"))

        logger.info(
            "lead_processed",
            extra={
                "event_id": report.event_id,
                "lead_id": report.lead_id,
                "stages": ",".join(f"{s.name}:{s.status}" for s in report.stages),
            },
        )
        return report
