# models/telegram.py
from pydantic import BaseModel
from typing import Literal


class TelegramMessage(BaseModel):
    chat_id: str
    text: str
    parse_mode: Literal["MarkdownV2"] = "MarkdownV2"
