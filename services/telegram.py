# services/telegram.py
import logging
import httpx
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from aiogram.utils.markdown import bold
from aiogram.utils.text_decorations import markdown_decoration

from models.event import LeadSubmission
from models.telegram import TelegramMessage
from services.errors import UpstreamError

logger = logging.getLogger(__name__)

quote = markdown_decoration.quote

# для Москвы привычная подпись, для остальных зон аббревиатура из tzdata
_TZ_LABELS = {"Europe/Moscow": "МСК"}


def tz_label(now: datetime) -> str:
    key = getattr(now.tzinfo, "key", None)
    return _TZ_LABELS.get(key) or now.tzname() or ""


def format_lead_message(lead: LeadSubmission, now: datetime) -> str:
    """
    Текст уведомления о новой заявке. Все подставляемые значения экранируются,
    иначе Telegram отклоняет сообщение с parse_mode=MarkdownV2.
    """
    lines = [
        f"🚨 {bold('Новая заявка водителя C+E')}",
        "",
        f"👤 {bold('Имя:')} {quote(lead.name)}",
        f"📱 {bold('Телефон:')} {quote(lead.phone)}",
    ]
    if lead.whatsapp:
        lines.append(f"💬 {bold('WhatsApp:')} {quote(lead.whatsapp)}")
    if lead.email:
        lines.append(f"📧 {bold('Email:')} {quote(lead.email)}")
    if lead.package_type:
        lines.append(f"📦 {bold('Пакет:')} {quote(lead.package_type)}")
    if lead.comments:
        lines.append(f"💭 {bold('Комментарий:')} {quote(lead.comments)}")

    stamp = f"{now.strftime('%d.%m.%Y, %H:%M:%S')} {tz_label(now)}".strip()
    lines += [
        "",
        f"🌍 {bold('Язык сайта:')} {quote(lead.site_language or 'ru')}",
        f"📊 {bold('UTM:')}",
        f"  {quote('- Source:')} {quote(lead.utm_value('utm_source', 'direct'))}",
        f"  {quote('- Campaign:')} {quote(lead.utm_value('utm_campaign', '-'))}",
        f"  {quote('- Medium:')} {quote(lead.utm_value('utm_medium', '-'))}",
        "",
        f"🔗 {bold('Страница:')} {quote(lead.page_url or '-')}",
        f"⏰ {quote(stamp)}",
    ]
    return "\n".join(lines)


class TelegramNotifier:
    def __init__(self, api_url: str, bot_token: str, chat_id: str, timezone: str, timeout: float):
        self.send_url = f"{api_url.rstrip('/')}/bot{bot_token}/sendMessage"
        self.chat_id = chat_id
        self.tz = ZoneInfo(timezone)
        self.timeout = timeout

    async def notify_lead(self, lead: LeadSubmission, now: Optional[datetime] = None) -> None:
        now = now or datetime.now(self.tz)
        message = TelegramMessage(chat_id=self.chat_id, text=format_lead_message(lead, now))

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                self.send_url,
                json=message.model_dump(),
                headers={"Content-Type": "application/json"},
            )
        if resp.is_error:
            raise UpstreamError(
                f"Telegram error {resp.status_code}", status_code=resp.status_code, body=resp.text
            )
        logger.info("telegram_sent", extra={"status": resp.status_code})
