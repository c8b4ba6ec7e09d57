"""In-memory key-value store, intended for development and tests."""

import threading
from typing import Optional

from forecast_sync.errors import QuotaExceededError
from forecast_sync.storage.base import KeyValueStore, value_size

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="storage/in_memory_store")


class InMemoryKeyValueStore(KeyValueStore):
    """Thread-safe dict-backed store with an optional size quota."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        logger.debug("Initializing InMemoryKeyValueStore", extra={"quota_bytes": quota_bytes})
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def _size_without(self, key: str) -> int:
        return sum(value_size(k, v) for k, v in self._data.items() if k != key)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        """Store a value, raising QuotaExceededError if it would not fit."""
        with self._lock:
            if self.quota_bytes is not None:
                needed = self._size_without(key) + value_size(key, value)
                if needed > self.quota_bytes:
                    raise QuotaExceededError(
                        f"write of {value_size(key, value)} bytes to '{key}' exceeds quota of {self.quota_bytes} bytes"
                    )
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return [k for k in self._data if k.startswith(prefix)]

    def clear(self) -> None:
        """Remove every key."""
        with self._lock:
            self._data.clear()
