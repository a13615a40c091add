# services/request_meta.py
from dataclasses import dataclass
from typing import Optional

from fastapi import Request


@dataclass(frozen=True)
class RequestMeta:
    """То, что сервер знает о браузере помимо тела запроса."""
    client_ip: Optional[str]
    user_agent: Optional[str]
    referer: Optional[str] = None
    forwarded_for: Optional[str] = None


def get_client_ip(request: Request) -> Optional[str]:
    """
    X-Forwarded-For (первый адрес) -> X-Real-IP -> адрес соединения.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta(
        client_ip=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
        forwarded_for=request.headers.get("x-forwarded-for"),
    )


def get_base_url(request: Request) -> str:
    """Внешний адрес сервиса, как его видит браузер (за прокси Vercel/nginx)."""
    protocol = request.headers.get("x-forwarded-proto") or "https"
    host = request.headers.get("x-forwarded-host") or request.headers.get("host")
    return f"{protocol}://{host}"


def get_forwarded_ip(request: Request) -> str:
    """
    IP для аналитики: X-Forwarded-For целиком (вся цепочка прокси),
    иначе адрес соединения, иначе "unknown".
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
