# services/errors.py
from typing import Any, Dict, Optional


class GatewayError(Exception):
    """
    Базовая ошибка сервиса. Хендлер в main.py превращает её в JSONResponse
    со статусом status_code и телом to_content().
    """
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_content(self) -> Dict[str, Any]:
        return {"error": self.message}


class ValidationError(GatewayError):
    """Не хватает обязательного поля во входящем запросе."""
    status_code = 400


class ConfigurationError(GatewayError):
    """Не задан обязательный ключ/токен в окружении."""
    status_code = 500


class UpstreamError(GatewayError):
    """
    Сторонний API ответил ошибкой. Статус и тело ответа сохраняются как есть,
    чтобы обязательный этап мог отдать их клиенту без изменений.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        # 2xx с полем error в теле тоже ошибка, отдаём 500
        if not status_code or status_code < 400:
            status_code = 500
        super().__init__(message, status_code)
        self.body = body

    def to_content(self) -> Dict[str, Any]:
        return {"error": self.message, "details": self.body}


class StorageError(GatewayError):
    """MongoDB недоступна или вставка не удалась."""
    status_code = 500

    def to_content(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message}
