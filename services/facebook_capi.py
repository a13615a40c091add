# services/facebook_capi.py
import time
import logging
import httpx
from typing import Any, Dict, Optional

from models.capi import CapiEvent, CapiRequest, CapiUserData
from models.event import ConversionRequest
from services.config import Settings
from services.errors import ConfigurationError, UpstreamError, ValidationError
from services.pii import hash_email, hash_phone, sha256_hex
from services.request_meta import RequestMeta

logger = logging.getLogger(__name__)


def build_capi_request(
    settings: Settings,
    req: ConversionRequest,
    meta: RequestMeta,
    now: Optional[float] = None,
) -> CapiRequest:
    """
    Собирает тело запроса к /{pixel_id}/events.
    email/phone/country/city попадают в событие только в виде sha256.
    """
    ud = req.user_data
    user_data = CapiUserData(
        client_ip_address=meta.client_ip,
        client_user_agent=meta.user_agent,
        em=hash_email(ud.email),
        ph=hash_phone(ud.phone),
        fbc=ud.fbc or None,  # click id из cookie _fbc
        fbp=ud.fbp or None,  # browser id из cookie _fbp
        country=sha256_hex(ud.country),
        ct=sha256_hex(ud.city),
    )

    custom_data = {**req.event_data, **req.utm}
    custom_data = {k: v for k, v in custom_data.items() if v is not None}

    # event_data приходит с фронта как есть, page_url может быть чем угодно
    page_url = req.event_data.get("page_url")
    if not isinstance(page_url, str) or not page_url:
        page_url = meta.referer

    event = CapiEvent(
        event_name=req.event_name,
        event_time=int(now if now is not None else time.time()),
        # тот же event_id, что у браузерного пикселя: по нему Facebook дедуплицирует
        event_id=req.event_id,
        event_source_url=page_url,
        user_data=user_data,
        custom_data=custom_data,
    )
    return CapiRequest(
        data=[event],
        test_event_code=settings.facebook_test_event_code,
        access_token=settings.facebook_access_token,
    )


def _response_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


async def send_capi_event(settings: Settings, req: ConversionRequest, meta: RequestMeta) -> Dict:
    """
    Отправляет одно событие в Facebook Conversions API.
    Бросает ConfigurationError / ValidationError / UpstreamError.
    """
    if not settings.facebook_access_token:
        logger.error("capi_token_missing")
        raise ConfigurationError("Server configuration error")

    if not req.event_name or not req.event_id:
        raise ValidationError("Missing required fields: event_name, event_id")

    capi_request = build_capi_request(settings, req, meta)
    user_data = capi_request.data[0].user_data

    logger.info(
        "capi_send",
        extra={
            "event_name": req.event_name,
            "event_id": req.event_id,
            "client_ip": meta.client_ip,
            "has_email": user_data.em is not None,
            "has_phone": user_data.ph is not None,
        },
    )

    async with httpx.AsyncClient(timeout=settings.http_timeout) as client:
        resp = await client.post(
            settings.capi_events_url,
            json=capi_request.to_payload(),
            headers={"Content-Type": "application/json"},
        )

    result = _response_body(resp)
    if resp.is_error or not isinstance(result, dict) or "error" in result:
        logger.error(
            "capi_error",
            extra={"event_id": req.event_id, "status": resp.status_code, "body": result},
        )
        raise UpstreamError("Facebook API error", status_code=resp.status_code, body=result)

    logger.info(
        "capi_ok",
        extra={
            "event_name": req.event_name,
            "event_id": req.event_id,
            "events_received": result.get("events_received"),
            "fbtrace_id": result.get("fbtrace_id"),
        },
    )
    return {
        "success": True,
        "events_received": result.get("events_received"),
        "fbtrace_id": result.get("fbtrace_id"),
        "event_id": req.event_id,
    }


class ConversionForwarder:
    """Отправка события в CAPI прямо из процесса (без HTTP к самому себе)."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def forward(self, req: ConversionRequest, meta: RequestMeta) -> Dict:
        return await send_capi_event(self.settings, req, meta)


class HttpConversionForwarder:
    """
    Отправка через собственный эндпоинт /api/facebook-capi, как делал лендинг
    на Vercel. IP и User-Agent браузера пробрасываются заголовками.
    """

    def __init__(self, base_url: str, timeout: float):
        self.url = f"{base_url.rstrip('/')}/api/facebook-capi"
        self.timeout = timeout

    async def forward(self, req: ConversionRequest, meta: RequestMeta) -> Dict:
        headers = {"Content-Type": "application/json"}
        if meta.client_ip:
            headers["X-Forwarded-For"] = meta.forwarded_for or meta.client_ip
        if meta.user_agent:
            headers["User-Agent"] = meta.user_agent
        if meta.referer:
            headers["Referer"] = meta.referer

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self.url, json=req.model_dump(), headers=headers)

        result = _response_body(resp)
        if resp.is_error:
            raise UpstreamError("Facebook API error", status_code=resp.status_code, body=result)
        return result
