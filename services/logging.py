# services/logging.py
import logging
import os
from logging.handlers import RotatingFileHandler

# атрибуты, которые есть у любого LogRecord; всё остальное пришло через extra=
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class ExtraFormatter(logging.Formatter):
    """
    Обычный формат + поля из extra={...} в виде key=value в конце строки.
    """

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = {k: v for k, v in record.__dict__.items() if k not in _RESERVED}
        if extras:
            line += " | " + " ".join(f"{k}={v}" for k, v in sorted(extras.items()))
        return line


def setup_logging():
    fmt = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = ExtraFormatter(fmt=fmt, datefmt=datefmt)

    logger = logging.getLogger()
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    sh = logging.StreamHandler()
    sh.setLevel(os.getenv("LOG_LEVEL_CONSOLE", "INFO").upper())
    sh.setFormatter(formatter)

    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        logger.addHandler(sh)

    if os.getenv("LOG_TO_FILE", "true").lower() in ("1", "true", "yes", "on"):
        log_dir = os.getenv("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        fh = RotatingFileHandler(
            filename=os.path.join(log_dir, "app.log"),
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding="utf-8",
        )
        fh.setLevel(os.getenv("LOG_LEVEL_FILE", "INFO").upper())
        fh.setFormatter(formatter)
        if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
            logger.addHandler(fh)

    logging.getLogger("httpx").setLevel("WARNING")
    logging.getLogger("pymongo").setLevel("WARNING")
