"""Two-phase forecast loading: paint from cache, then reconcile with the network."""
from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, List, Optional

from forecast_sync.cache import CacheEntry, PersistentCache
from forecast_sync.time_utils import Clock, now_ms
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="orchestrator")

SOURCE_CACHE = "cache"
SOURCE_NETWORK = "network"


class SyncPhase(str, Enum):
    """Orchestrator lifecycle: IDLE -> LOADING_FROM_CACHE -> REFRESHING -> READY | DEGRADED | FAILED."""
    IDLE = "idle"
    LOADING_FROM_CACHE = "loading_from_cache"
    REFRESHING = "refreshing"
    READY = "ready"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncState:
    """Snapshot of what the presentation layer should render."""
    phase: SyncPhase = SyncPhase.IDLE
    loaded: bool = False
    forecast: Any = None
    source: Optional[str] = None  # "cache" | "network"
    cache_timestamp: Optional[int] = None
    refreshing: bool = False
    refresh_error: Optional[Exception] = None
    error: Optional[Exception] = None
    data_source: Optional[str] = None
    updated_at: Optional[int] = None  # last successful network update, epoch ms

    @property
    def is_from_cache(self) -> bool:
        return self.source == SOURCE_CACHE

    @property
    def is_loading(self) -> bool:
        """No data yet and a fetch in flight: blocking loading screen."""
        return not self.loaded and self.refreshing

    @property
    def has_blocking_error(self) -> bool:
        """No data of any kind and the fetch failed: blocking error screen."""
        return self.loaded and self.forecast is None and self.error is not None


StateListener = Callable[[SyncState], None]
ForecastLoader = Callable[[str], Any]


class SyncOrchestrator:
    """Drive cache-first loading and reconcile refresh outcomes into one SyncState.

    `load_forecast(data_source)` must return the parsed payload or raise; any
    exception it raises becomes state, never propagates to the caller.

    Refreshes are numbered as they start. A result is applied only if it
    belongs to the newest refresh, so an older request that resolves late
    cannot overwrite newer data. State changes and listener notifications
    happen under one lock; listeners should return quickly.
    """

    def __init__(
        self,
        cache: PersistentCache,
        load_forecast: ForecastLoader,
        *,
        data_source: str = "real",
        clock: Clock = now_ms,
    ) -> None:
        self.cache = cache
        self.data_source = data_source
        self._load_forecast = load_forecast
        self._clock = clock
        self._state = SyncState()
        self._listeners: List[StateListener] = []
        self._lock = threading.RLock()
        self._seq = 0

    @property
    def state(self) -> SyncState:
        with self._lock:
            return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener for every state change; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, new_state: SyncState) -> SyncState:
        # Caller holds self._lock.
        self._state = new_state
        logger.debug(
            "State -> %s",
            new_state.phase.value,
            extra={"loaded": new_state.loaded, "source": new_state.source, "refreshing": new_state.refreshing},
        )
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("State listener failed")
        return new_state

    # ------------------------------------------------------------------
    # Phase 1: cache
    # ------------------------------------------------------------------

    def _load_cached(self) -> Optional[CacheEntry]:
        with self._lock:
            self._set_state(replace(self._state, phase=SyncPhase.LOADING_FROM_CACHE))
        entry = self.cache.load()
        if entry is None:
            logger.info("No cached forecast; waiting on network")
        else:
            logger.info("Rendering cached forecast", extra={"timestamp": entry.timestamp, "data_source": entry.data_source})
        return entry

    # ------------------------------------------------------------------
    # Phase 2: network
    # ------------------------------------------------------------------

    def _begin_refresh(self, entry: Optional[CacheEntry] = None) -> int:
        with self._lock:
            self._seq += 1
            seq = self._seq
            current = self._state
            if entry is not None:
                new_state = replace(
                    current,
                    phase=SyncPhase.REFRESHING,
                    loaded=True,
                    forecast=entry.forecast,
                    source=SOURCE_CACHE,
                    cache_timestamp=entry.timestamp,
                    data_source=entry.data_source,
                    refreshing=True,
                    refresh_error=None,
                    error=None,
                )
            elif current.forecast is None:
                # Retrying from the blocking error screen goes back to loading.
                new_state = replace(current, phase=SyncPhase.REFRESHING, loaded=False, refreshing=True, error=None)
            else:
                new_state = replace(current, phase=SyncPhase.REFRESHING, refreshing=True)
            self._set_state(new_state)
        logger.info("Refresh #%d started", seq, extra={"data_source": self.data_source})
        return seq

    def _apply_success(self, seq: int, payload: Any) -> SyncState:
        with self._lock:
            if seq != self._seq:
                logger.info("Discarding result of superseded refresh #%d (latest #%d)", seq, self._seq)
                return self._state
            now = self._clock()
            if not self.cache.save(payload, self.data_source, timestamp=now):
                logger.warning("Fresh forecast could not be cached; it will not survive a restart")
            logger.info("Refresh #%d succeeded", seq)
            return self._set_state(
                SyncState(
                    phase=SyncPhase.READY,
                    loaded=True,
                    forecast=payload,
                    source=SOURCE_NETWORK,
                    cache_timestamp=now,
                    refreshing=False,
                    refresh_error=None,
                    error=None,
                    data_source=self.data_source,
                    updated_at=now,
                )
            )

    def _apply_failure(self, seq: int, exc: Exception) -> SyncState:
        with self._lock:
            if seq != self._seq:
                logger.info("Discarding failure of superseded refresh #%d (latest #%d)", seq, self._seq)
                return self._state
            current = self._state
            if current.forecast is not None:
                logger.warning("Refresh #%d failed; keeping cached forecast: %s", seq, exc)
                # Data shown after a failed refresh is whatever was last persisted.
                new_state = replace(
                    current,
                    phase=SyncPhase.DEGRADED,
                    source=SOURCE_CACHE,
                    refreshing=False,
                    refresh_error=exc,
                    error=None,
                )
            else:
                logger.error("Refresh #%d failed with no cached data: %s", seq, exc)
                new_state = replace(
                    current,
                    phase=SyncPhase.FAILED,
                    loaded=True,
                    forecast=None,
                    source=SOURCE_NETWORK,
                    cache_timestamp=None,
                    refreshing=False,
                    refresh_error=None,
                    error=exc,
                )
            return self._set_state(new_state)

    def _run_refresh(self, seq: int) -> SyncState:
        try:
            payload = self._load_forecast(self.data_source)
        except Exception as exc:
            return self._apply_failure(seq, exc)
        return self._apply_success(seq, payload)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def start(self) -> SyncState:
        """Emit cached data (if any) immediately, then refresh from the network."""
        entry = self._load_cached()
        seq = self._begin_refresh(entry)
        return self._run_refresh(seq)

    def refresh(self) -> SyncState:
        """Manual refresh: fetch again without re-reading the cache."""
        seq = self._begin_refresh()
        return self._run_refresh(seq)

    def start_in_background(self) -> threading.Thread:
        """Emit cached data synchronously and run the network phase on a worker thread."""
        entry = self._load_cached()
        seq = self._begin_refresh(entry)
        return self._spawn(seq)

    def refresh_in_background(self) -> threading.Thread:
        seq = self._begin_refresh()
        return self._spawn(seq)

    def _spawn(self, seq: int) -> threading.Thread:
        worker = threading.Thread(target=self._run_refresh, args=(seq,), name=f"forecast-refresh-{seq}", daemon=True)
        worker.start()
        return worker

    def dismiss_refresh_error(self) -> SyncState:
        with self._lock:
            if self._state.refresh_error is None:
                return self._state
            return self._set_state(replace(self._state, refresh_error=None))

    def clear_cache(self) -> None:
        """Drop the persisted forecast; what is on screen stays until the next refresh."""
        self.cache.clear()
