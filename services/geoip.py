# services/geoip.py
import os
import logging
from typing import Optional

import geoip2.database
import geoip2.errors

logger = logging.getLogger(__name__)


class GeoIPLookup:
    """
    Город по IP из локальной базы GeoLite2-City. Без базы просто возвращает "".
    """

    def __init__(self, path: Optional[str] = None):
        self.reader = None
        if path and os.path.exists(path):
            try:
                self.reader = geoip2.database.Reader(path)
                logger.info("geoip_loaded", extra={"path": path})
            except (OSError, ValueError) as e:
                logger.warning("geoip_load_failed", extra={"path": path, "error": str(e)})
        else:
            logger.info("geoip_disabled", extra={"path": path})

    @property
    def enabled(self) -> bool:
        return self.reader is not None

    def city(self, ip: Optional[str]) -> str:
        if not self.reader or not ip:
            return ""
        try:
            resp = self.reader.city(ip)
            return resp.city.name or ""
        except (geoip2.errors.AddressNotFoundError, ValueError):
            return ""

    def close(self) -> None:
        if self.reader:
            self.reader.close()
            self.reader = None
