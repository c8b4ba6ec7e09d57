"""Redis-backed key-value store."""

from typing import Optional

from redis.exceptions import OutOfMemoryError, RedisError

from forecast_sync.errors import QuotaExceededError, StorageError
from forecast_sync.storage.base import KeyValueStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="storage/redis_store")


class RedisKeyValueStore(KeyValueStore):
    """Store string values in Redis under a key prefix.

    Writes rejected because Redis reached `maxmemory` (noeviction policy)
    surface as QuotaExceededError.
    """

    def __init__(self, client, prefix: str = "forecast_sync:") -> None:
        logger.debug("Initializing RedisKeyValueStore", extra={"prefix": prefix})
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    @staticmethod
    def _decode(raw) -> str:
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return str(raw)

    def get(self, key: str) -> Optional[str]:
        try:
            raw = self.client.get(self._key(key))
        except RedisError as exc:
            raise StorageError(f"Failed to read '{key}' from Redis: {exc}") from exc
        if raw is None:
            return None
        return self._decode(raw)

    def set(self, key: str, value: str) -> None:
        try:
            self.client.set(self._key(key), value.encode("utf-8"))
        except OutOfMemoryError as exc:
            raise QuotaExceededError(f"Redis is out of memory writing '{key}'") from exc
        except RedisError as exc:
            raise StorageError(f"Failed to write '{key}' to Redis: {exc}") from exc

    def remove(self, key: str) -> None:
        try:
            self.client.delete(self._key(key))
        except RedisError as exc:
            raise StorageError(f"Failed to delete '{key}' from Redis: {exc}") from exc

    def keys(self, prefix: str = "") -> list[str]:
        try:
            raw_keys = list(self.client.scan_iter(f"{self.prefix}{prefix}*"))
        except RedisError as exc:
            raise StorageError(f"Failed to list keys from Redis: {exc}") from exc
        return [self._decode(k)[len(self.prefix):] for k in raw_keys]
