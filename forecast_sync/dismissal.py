"""Per-snapshot banner dismissal persisted in the key-value store."""
from __future__ import annotations

from typing import Optional

from forecast_sync.storage.base import KeyValueStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="dismissal")

DISMISSAL_KEY_PREFIX = "offlineBannerDismissed_"
DISMISSED_VALUE = "true"


class DismissalTracker:
    """Remember a banner dismissal for one cache timestamp only.

    Each call prunes dismissal keys belonging to other timestamps, so at most
    one record exists and new data always re-arms the banner.
    """

    def __init__(self, store: KeyValueStore, *, prefix: str = DISMISSAL_KEY_PREFIX) -> None:
        self.store = store
        self.prefix = prefix

    def key_for(self, cache_timestamp: Optional[int]) -> Optional[str]:
        if cache_timestamp is None:
            return None
        return f"{self.prefix}{cache_timestamp}"

    def _prune_except(self, current_key: str) -> None:
        try:
            stale_keys = [k for k in self.store.keys(self.prefix) if k != current_key]
            for k in stale_keys:
                self.store.remove(k)
        except Exception as exc:
            logger.error("Failed to cleanup old dismissal keys: %s", exc)
            return
        if stale_keys:
            logger.info("Cleaned up %d old dismissal keys", len(stale_keys))

    def is_dismissed(self, cache_timestamp: Optional[int]) -> bool:
        key = self.key_for(cache_timestamp)
        if key is None:
            return False
        self._prune_except(key)
        try:
            dismissed = self.store.get(key) == DISMISSED_VALUE
        except Exception as exc:
            logger.error("Failed to load dismissal state: %s", exc)
            return False
        if dismissed:
            logger.debug("Banner was dismissed for cache timestamp %s", cache_timestamp)
        return dismissed

    def dismiss(self, cache_timestamp: Optional[int]) -> None:
        key = self.key_for(cache_timestamp)
        if key is None:
            return
        self._prune_except(key)
        try:
            self.store.set(key, DISMISSED_VALUE)
        except Exception as exc:
            logger.error("Failed to save dismissal state: %s", exc)
            return
        logger.info("Banner dismissed for cache timestamp %s", cache_timestamp)

    def clear(self, cache_timestamp: Optional[int]) -> None:
        key = self.key_for(cache_timestamp)
        if key is None:
            return
        self._prune_except(key)
        try:
            self.store.remove(key)
        except Exception as exc:
            logger.error("Failed to clear dismissal state: %s", exc)
            return
        logger.info("Dismissal state cleared")
