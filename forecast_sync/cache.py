"""Last-known-good forecast persisted as one versioned record in a key-value store."""
from __future__ import annotations

import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from forecast_sync.errors import (
    CacheCorruptionError,
    CacheVersionMismatchError,
    QuotaExceededError,
)
from forecast_sync.storage.base import KeyValueStore
from forecast_sync.status import UNKNOWN_AGE, format_age
from forecast_sync.time_utils import Clock, now_ms
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="forecast_cache")

CACHE_SCHEMA_VERSION = "1.0"
FORECAST_CACHE_KEY = "weatherForecastCache"


class CacheEntry(BaseModel):
    """Persisted forecast record. Serialized with camelCase `dataSource`/`version` keys."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    forecast: Any
    timestamp: int = Field(gt=0)
    data_source: str = Field(default="", alias="dataSource")
    schema_version: str = Field(alias="version")

    @field_validator("forecast")
    @classmethod
    def forecast_present(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("forecast is required")
        return v

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


def decode_entry(raw: str, expected_version: str) -> CacheEntry:
    """Parse a stored record, raising on corruption or a schema version mismatch."""
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise CacheCorruptionError(f"Failed to parse cached data: {exc}") from exc
    if not isinstance(payload, dict):
        raise CacheCorruptionError("Cached data is not an object")

    version = payload.get("version")
    if version != expected_version:
        raise CacheVersionMismatchError(version, expected_version)

    try:
        return CacheEntry.model_validate(payload)
    except ValidationError as exc:
        raise CacheCorruptionError(f"Invalid cache structure: {exc.error_count()} error(s)") from exc


class PersistentCache:
    """Save, load and clear the forecast record under a fixed key.

    Nothing here raises: storage failures become `False`/`None`, and any
    record that is corrupt or from another schema version is deleted by the
    read that finds it.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        key: str = FORECAST_CACHE_KEY,
        schema_version: str = CACHE_SCHEMA_VERSION,
        clock: Clock = now_ms,
    ) -> None:
        self.store = store
        self.key = key
        self.schema_version = schema_version
        self._clock = clock

    def save(self, forecast: Any, data_source: str, *, timestamp: Optional[int] = None) -> bool:
        """Persist a forecast stamped with `timestamp` (default: now); True only if read-back matches."""
        try:
            entry = CacheEntry(
                forecast=forecast,
                timestamp=self._clock() if timestamp is None else timestamp,
                data_source=data_source,
                schema_version=self.schema_version,
            )
            serialized = entry.to_json()
            logger.info("Attempting to save forecast data (%.1f KB)", len(serialized) / 1024)
            self.store.set(self.key, serialized)

            verification = self.store.get(self.key)
            if verification != serialized:
                logger.error("Save verification failed - data not found after save")
                return False
        except QuotaExceededError as exc:
            logger.error("Storage quota exceeded; dropping cached forecast", extra={"error": str(exc)})
            self.clear()
            return False
        except Exception as exc:
            logger.error("Failed to save to cache: %s", exc)
            return False

        logger.info("Successfully cached forecast data and verified", extra={"timestamp": entry.timestamp})
        return True

    def load(self) -> Optional[CacheEntry]:
        """Return the stored entry if present, parseable and of the current version."""
        try:
            raw = self.store.get(self.key)
        except Exception as exc:
            logger.error("Failed to read cached data: %s", exc)
            return None
        if raw is None:
            logger.debug("No cached data found for key", extra={"key": self.key})
            return None

        try:
            entry = decode_entry(raw, self.schema_version)
        except CacheVersionMismatchError as exc:
            logger.warning("Cache version mismatch, clearing cache: %s", exc)
            self.clear()
            return None
        except CacheCorruptionError as exc:
            logger.warning("%s; clearing cache", exc)
            self.clear()
            return None

        logger.info(
            "Loaded cached data (%.1f KB)",
            len(raw) / 1024,
            extra={"timestamp": entry.timestamp, "data_source": entry.data_source},
        )
        return entry

    def clear(self) -> None:
        """Best-effort delete; never raises."""
        try:
            self.store.remove(self.key)
            logger.info("Cache cleared", extra={"key": self.key})
        except Exception as exc:
            logger.error("Failed to clear cache: %s", exc)

    def age_label(self, entry: Optional[CacheEntry]) -> str:
        """Human-readable age of an entry relative to this cache's clock."""
        if entry is None:
            return UNKNOWN_AGE
        return format_age(self._clock() - entry.timestamp)
