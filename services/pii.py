# services/pii.py
"""
Хеширование персональных данных по правилам Facebook Conversions API.

Email нормализуется (trim + lower), телефон сводится к цифрам, страна и город
хешируются как есть. Если после нормализации ничего не осталось, поле не
отправляется совсем: пустой хеш Facebook считает ошибкой сопоставления.
"""
import hashlib
import re
from typing import Optional

_NON_DIGITS_RE = re.compile(r"\D")


def sha256_hex(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hash_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    return sha256_hex(email.lower().strip())


def hash_phone(phone: Optional[str]) -> Optional[str]:
    if not phone:
        return None
    return sha256_hex(_NON_DIGITS_RE.sub("", phone))
