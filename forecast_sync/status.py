"""Banner classification from reachability, cache age and data provenance."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

from forecast_sync.time_utils import MS_PER_DAY, MS_PER_HOUR, MS_PER_MINUTE, Clock, now_ms

if TYPE_CHECKING:
    from forecast_sync.orchestrator import SyncState

DEFAULT_STALE_THRESHOLD_MS = 5 * MS_PER_MINUTE
DEFAULT_VERY_OLD_THRESHOLD_MS = 24 * MS_PER_HOUR
UNKNOWN_AGE = "unknown"


class BannerKind(str, Enum):
    """Banner variants, listed in precedence order."""
    OFFLINE = "offline"
    STALE = "stale"
    CACHED = "cached"


@dataclass(frozen=True)
class BannerStatus:
    """Everything the presentation layer needs to render the status banner."""
    kind: BannerKind
    age_label: str
    stale_warning: bool
    very_old: bool
    cache_timestamp: Optional[int] = None
    refresh_error: Optional[str] = None


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'} ago"


def format_age(age_ms: int) -> str:
    """Bucket an elapsed duration into a human-readable label."""
    minutes = max(age_ms, 0) // MS_PER_MINUTE
    hours = minutes // 60
    days = hours // 24
    if days > 0:
        return _plural(days, "day")
    if hours > 0:
        return _plural(hours, "hour")
    if minutes > 0:
        return _plural(minutes, "minute")
    return "less than a minute ago"


class StatusEvaluator:
    """Pure status derivation; only the clock is injected.

    Precedence (first match wins): offline, stale cache, fresh cache, none.
    """

    def __init__(
        self,
        *,
        stale_threshold_ms: int = DEFAULT_STALE_THRESHOLD_MS,
        very_old_threshold_ms: int = DEFAULT_VERY_OLD_THRESHOLD_MS,
        clock: Clock = now_ms,
    ) -> None:
        self.stale_threshold_ms = stale_threshold_ms
        self.very_old_threshold_ms = very_old_threshold_ms
        self._clock = clock

    def age_ms(self, timestamp: int) -> int:
        return self._clock() - timestamp

    def is_stale(self, timestamp: Optional[int]) -> bool:
        """Strictly older than the stale threshold; unknown timestamps are not stale."""
        if timestamp is None:
            return False
        return self.age_ms(timestamp) > self.stale_threshold_ms

    def is_very_old(self, timestamp: Optional[int]) -> bool:
        if timestamp is None:
            return False
        return self.age_ms(timestamp) > self.very_old_threshold_ms

    def age_label(self, timestamp: Optional[int]) -> str:
        if timestamp is None:
            return UNKNOWN_AGE
        return format_age(self.age_ms(timestamp))

    def evaluate(
        self,
        is_online: bool,
        cache_timestamp: Optional[int],
        is_from_cache: bool,
    ) -> Optional[BannerKind]:
        if not is_online:
            return BannerKind.OFFLINE
        if is_from_cache and self.is_stale(cache_timestamp):
            return BannerKind.STALE
        if is_from_cache:
            return BannerKind.CACHED
        return None

    def describe(self, is_online: bool, state: "SyncState") -> Optional[BannerStatus]:
        """Evaluate a SyncState; None when no banner should be shown."""
        if not state.loaded or state.forecast is None:
            # The blocking loading/error screens cover this case.
            return None
        is_from_cache = state.source == "cache"
        kind = self.evaluate(is_online, state.cache_timestamp, is_from_cache)
        if kind is None:
            return None
        return BannerStatus(
            kind=kind,
            age_label=self.age_label(state.cache_timestamp),
            stale_warning=is_from_cache and self.is_stale(state.cache_timestamp),
            very_old=self.is_very_old(state.cache_timestamp),
            cache_timestamp=state.cache_timestamp,
            refresh_error=str(state.refresh_error) if state.refresh_error else None,
        )
