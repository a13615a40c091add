# services/event_store.py
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from services.errors import StorageError

logger = logging.getLogger(__name__)


def build_analytics_document(
    event: Dict[str, Any],
    ip_address: Optional[str],
    user_agent: Optional[str],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Событие с фронта + серверные метаданные. Серверные поля перекрывают клиентские."""
    now = now or datetime.now(timezone.utc)
    return {
        **event,
        "server_timestamp": now.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "ip_address": ip_address,
        "user_agent": user_agent,
    }


class EventStore:
    """
    Одно долгоживущее подключение к MongoDB на процесс.
    Подключаемся лениво при первой вставке; параллельные первые запросы ждут
    один и тот же connect под asyncio.Lock. Неудачное подключение не кешируется,
    следующий запрос попробует снова.
    """

    def __init__(
        self,
        uri: Optional[str],
        db_name: str,
        collection_name: str,
        timeout_ms: int = 5000,
        client_factory: Callable[..., Any] = AsyncMongoClient,
    ):
        self.uri = uri
        self.db_name = db_name
        self.collection_name = collection_name
        self.timeout_ms = timeout_ms
        self.client_factory = client_factory
        self._client = None
        self._lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.uri)

    async def _connect(self):
        if self._client is not None:
            return self._client
        async with self._lock:
            if self._client is not None:
                return self._client
            if not self.uri:
                raise StorageError("MONGODB_URI is not configured")

            client = self.client_factory(self.uri, serverSelectionTimeoutMS=self.timeout_ms)
            try:
                await client.admin.command("ping")
            except PyMongoError as e:
                await client.close()
                logger.error("mongo_connect_failed", extra={"error": str(e)})
                raise StorageError(f"MongoDB connection failed: {e}") from e

            self._client = client
            logger.info("mongo_connected", extra={"db": self.db_name})
            return client

    async def insert(self, document: Dict[str, Any]) -> str:
        client = await self._connect()
        collection = client[self.db_name][self.collection_name]
        try:
            result = await collection.insert_one(document)
        except PyMongoError as e:
            logger.error("mongo_insert_failed", extra={"error": str(e)})
            raise StorageError(f"MongoDB insert failed: {e}") from e
        return str(result.inserted_id)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
