"""Versioned multi-entry cache for hourly forecasts, keyed by location and date."""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from forecast_sync.cache import CACHE_SCHEMA_VERSION
from forecast_sync.errors import CacheCorruptionError, CacheVersionMismatchError, QuotaExceededError
from forecast_sync.storage.base import KeyValueStore
from forecast_sync.time_utils import MS_PER_DAY, MS_PER_HOUR, Clock, now_ms
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="hourly_cache")

HOURLY_CACHE_KEY = "weatherHourlyCache"
DEFAULT_MAX_AGE_MS = 7 * MS_PER_DAY


class HourlyEntry(BaseModel):
    data: Any
    timestamp: int


class HourlyCacheRecord(BaseModel):
    version: str
    entries: Dict[str, HourlyEntry] = Field(default_factory=dict)


def entry_key(location_name: str, date: str) -> str:
    """Entry key such as "mt_baker_2024-01-15"."""
    return f"{location_name}_{date}"


class HourlyForecastCache:
    """Hourly forecasts for many (location, date) pairs in one stored record."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        key: str = HOURLY_CACHE_KEY,
        schema_version: str = CACHE_SCHEMA_VERSION,
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        clock: Clock = now_ms,
    ) -> None:
        self.store = store
        self.key = key
        self.schema_version = schema_version
        self.max_age_ms = max_age_ms
        self._clock = clock

    def _load_record(self) -> Optional[HourlyCacheRecord]:
        try:
            raw = self.store.get(self.key)
        except Exception as exc:
            logger.error("Failed to load cache store: %s", exc)
            return None
        if raw is None:
            return None
        try:
            try:
                payload = json.loads(raw)
            except ValueError as exc:
                raise CacheCorruptionError(f"Failed to parse hourly cache: {exc}") from exc
            if not isinstance(payload, dict):
                raise CacheCorruptionError("Hourly cache is not an object")
            if payload.get("version") != self.schema_version:
                raise CacheVersionMismatchError(payload.get("version"), self.schema_version)
            try:
                return HourlyCacheRecord.model_validate(payload)
            except ValidationError as exc:
                raise CacheCorruptionError(f"Invalid hourly cache structure: {exc.error_count()} error(s)") from exc
        except (CacheCorruptionError, CacheVersionMismatchError) as exc:
            logger.warning("%s; clearing hourly cache", exc)
            self.clear()
            return None

    def _save_record(self, record: HourlyCacheRecord) -> bool:
        try:
            self.store.set(self.key, record.model_dump_json())
            return True
        except QuotaExceededError:
            logger.error("Storage quota exceeded, clearing old hourly entries")
            self.prune_expired()
            return False
        except Exception as exc:
            logger.error("Failed to save hourly cache store: %s", exc)
            return False

    def save(self, location_name: str, date: str, data: Any) -> bool:
        """Store hourly data for one location/date; other entries are kept."""
        record = self._load_record() or HourlyCacheRecord(version=self.schema_version)
        key = entry_key(location_name, date)
        record.entries[key] = HourlyEntry(data=data, timestamp=self._clock())
        saved = self._save_record(record)
        if saved:
            logger.info("Saved hourly data for %s", key)
        return saved

    def load(self, location_name: str, date: str) -> Any:
        """Return cached hourly data for one location/date, or None."""
        record = self._load_record()
        if record is None:
            logger.debug("No hourly cache store found")
            return None
        key = entry_key(location_name, date)
        entry = record.entries.get(key)
        if entry is None:
            logger.debug("No cached hourly data for %s", key)
            return None
        age_hours = (self._clock() - entry.timestamp) / MS_PER_HOUR
        logger.info("Found cached hourly data for %s, age: %.1f hours", key, age_hours)
        return entry.data

    def prune_expired(self) -> int:
        """Drop entries older than the max age; returns how many were removed."""
        record = self._load_record()
        if record is None:
            return 0
        now = self._clock()
        expired = [k for k, e in record.entries.items() if now - e.timestamp > self.max_age_ms]
        if not expired:
            return 0
        for k in expired:
            del record.entries[k]
        try:
            self.store.set(self.key, record.model_dump_json())
        except Exception as exc:
            logger.error("Failed to write pruned hourly cache: %s", exc)
            return 0
        logger.info("Cleared %d old hourly entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        try:
            self.store.remove(self.key)
            logger.info("Hourly cache cleared")
        except Exception as exc:
            logger.error("Failed to clear hourly cache: %s", exc)
