# main.py
from dotenv import load_dotenv
load_dotenv()

# ── logging ──────────────────────────────────────────────────────────────────
import logging
from services.logging import setup_logging

setup_logging()
logger = logging.getLogger(__name__)

# ── app imports ──────────────────────────────────────────────────────────────
import json
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from models.event import ConversionRequest, LeadSubmission
from services.amocrm import AmoCRMClient
from services.config import Settings
from services.errors import GatewayError, StorageError
from services.event_store import EventStore, build_analytics_document
from services.facebook_capi import ConversionForwarder, HttpConversionForwarder, send_capi_event
from services.geoip import GeoIPLookup
from services.leads import LeadPipeline
from services.request_meta import get_base_url, get_forwarded_ip, get_request_meta
from services.telegram import TelegramNotifier

# ── CORS ─────────────────────────────────────────────────────────────────────
# Лендинг открыт с любых доменов. Заголовки ставим сами, а не через CORSMiddleware:
# preflight должен отвечать 200 с пустым телом.
LEAD_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}
ANALYTICS_CORS_HEADERS = {
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,OPTIONS,PATCH,DELETE,POST,PUT",
    "Access-Control-Allow-Headers": (
        "X-CSRF-Token, X-Requested-With, Accept, Accept-Version, Content-Length, "
        "Content-MD5, Content-Type, Date, X-Api-Version"
    ),
}
CORS_BY_PATH = {
    "/api/facebook-capi": LEAD_CORS_HEADERS,
    "/api/submit-lead": LEAD_CORS_HEADERS,
    "/api/analytics": ANALYTICS_CORS_HEADERS,
    "/ru/api/analytics": ANALYTICS_CORS_HEADERS,
}


async def cors_headers(request: Request, call_next):
    response = await call_next(request)
    headers = CORS_BY_PATH.get(request.url.path)
    if headers:
        response.headers.update(headers)
    return response


# ── error handlers ───────────────────────────────────────────────────────────
async def gateway_error_handler(request: Request, exc: GatewayError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_content())


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 405:
        return JSONResponse(status_code=405, content={"error": "Method not allowed"}, headers=exc.headers)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("bad_request_body", extra={"path": request.url.path})
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body", "details": jsonable_encoder(exc.errors())},
    )


def internal_error(e: Exception) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": "Internal server error", "message": str(e)})


# ── dependencies ─────────────────────────────────────────────────────────────
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_event_store(request: Request) -> EventStore:
    return request.app.state.event_store


def get_lead_pipeline(request: Request) -> LeadPipeline:
    """Собираем пайплайн из того, что настроено в окружении."""
    settings: Settings = request.app.state.settings

    if settings.capi_internal_http:
        conversion = HttpConversionForwarder(get_base_url(request), settings.http_timeout)
    else:
        conversion = ConversionForwarder(settings)

    crm = None
    if settings.crm_enabled:
        crm = AmoCRMClient(settings.amocrm_leads_url, settings.amocrm_api_key, settings.http_timeout)

    notifier = None
    if settings.telegram_enabled:
        notifier = TelegramNotifier(
            api_url=settings.telegram_api_url,
            bot_token=settings.telegram_bot_token,
            chat_id=settings.telegram_chat_id,
            timezone=settings.notify_timezone,
            timeout=settings.http_timeout,
        )

    geoip: GeoIPLookup = request.app.state.geoip
    return LeadPipeline(conversion, crm, notifier, city_lookup=geoip.city if geoip.enabled else None)


router = APIRouter()


@router.get("/health")
def health_check(settings: Settings = Depends(get_settings)):
    logger.debug("health_check")
    return {
        "status": "ok",
        "integrations": {
            "capi": settings.capi_enabled,
            "crm": settings.crm_enabled,
            "telegram": settings.telegram_enabled,
            "analytics_store": bool(settings.mongodb_uri),
            "geoip": bool(settings.geoip_db_path),
        },
    }


# ========== preflight ==========
@router.options("/api/facebook-capi")
@router.options("/api/submit-lead")
@router.options("/api/analytics")
@router.options("/ru/api/analytics")
async def preflight():
    # заголовки добавит cors_headers
    return Response(status_code=200)


# ========== 1) Facebook Conversions API ==========
@router.post("/api/facebook-capi")
async def facebook_capi(data: ConversionRequest, request: Request, settings: Settings = Depends(get_settings)):
    """
    Серверное событие в Facebook CAPI. event_id совпадает с браузерным пикселем для дедупликации.
    """
    meta = get_request_meta(request)
    try:
        return await send_capi_event(settings, data, meta)
    except GatewayError:
        raise
    except Exception as e:
        logger.exception("capi_handler_error", extra={"event_id": data.event_id})
        return internal_error(e)


# ========== 2) Lead submission ==========
@router.post("/api/submit-lead")
async def submit_lead(data: LeadSubmission, request: Request, pipeline: LeadPipeline = Depends(get_lead_pipeline)):
    """
    Заявка с формы: CAPI, amoCRM, Telegram. Обязательны только name и phone,
    падение любой интеграции ответ не ломает.
    """
    meta = get_request_meta(request)
    try:
        report = await pipeline.process(data, meta)
    except GatewayError:
        raise
    except Exception as e:
        logger.exception("lead_handler_error")
        return internal_error(e)
    return report.to_response()


# ========== 3) Analytics events ==========
@router.post("/api/analytics")
@router.post("/ru/api/analytics")
async def analytics(
    request: Request,
    settings: Settings = Depends(get_settings),
    store: EventStore = Depends(get_event_store),
):
    """
    Любое событие с фронта + server_timestamp, ip_address, user_agent -> MongoDB.
    Содержимое не валидируется, ограничен только размер тела.
    """
    raw = await request.body()
    if len(raw) > settings.analytics_max_body_bytes:
        logger.warning("analytics_payload_too_large", extra={"size": len(raw)})
        return JSONResponse(status_code=413, content={"success": False, "error": "Payload too large"})

    try:
        event = json.loads(raw) if raw else {}
    except ValueError:
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid JSON body"})
    if not isinstance(event, dict):
        return JSONResponse(status_code=400, content={"success": False, "error": "Event must be a JSON object"})

    ip = get_forwarded_ip(request)
    document = build_analytics_document(event, ip, request.headers.get("user-agent"))

    try:
        inserted_id = await store.insert(document)
    except StorageError as e:
        logger.error("analytics_store_error", extra={"error": e.message})
        return JSONResponse(status_code=500, content=e.to_content())
    except Exception as e:
        logger.exception("analytics_handler_error")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    logger.info("analytics_saved", extra={"id": inserted_id, "event": event.get("event")})
    return {"success": True, "id": inserted_id}


# ── FastAPI app ─────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await app.state.event_store.close()
    app.state.geoip.close()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(title="Landing Lead Gateway", lifespan=lifespan)
    app.state.settings = settings
    app.state.event_store = EventStore(
        settings.mongodb_uri,
        settings.mongodb_db,
        settings.mongodb_collection,
        timeout_ms=settings.mongodb_timeout_ms,
    )
    app.state.geoip = GeoIPLookup(settings.geoip_db_path)

    app.middleware("http")(cors_headers)
    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(router)

    if not settings.capi_enabled:
        logger.warning("facebook_access_token_missing")
    if not settings.mongodb_uri:
        logger.warning("mongodb_uri_missing")
    logger.info(
        "app_configured",
        extra={"crm": settings.crm_enabled, "telegram": settings.telegram_enabled},
    )
    return app


app = create_app()


def run() -> None:
    """Запуск без внешнего менеджера процессов: python main.py"""
    import uvicorn

    settings = app.state.settings
    logger.info("server_start", extra={"host": settings.host, "port": settings.port})
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
