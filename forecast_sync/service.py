"""Facade wiring storage, fetcher, cache, orchestrator and status for the presentation layer."""
from __future__ import annotations

import threading
from typing import Any, Optional

from forecast_sync import config
from forecast_sync.cache import PersistentCache
from forecast_sync.connectivity import ConnectivityMonitor
from forecast_sync.dismissal import DismissalTracker
from forecast_sync.fetcher import RetryingFetcher
from forecast_sync.forecast_client import ForecastApiClient, HourlyForecast
from forecast_sync.hourly_cache import HourlyForecastCache
from forecast_sync.orchestrator import SyncOrchestrator, SyncState
from forecast_sync.status import BannerStatus, StatusEvaluator
from forecast_sync.storage import KeyValueStore, build_store
from forecast_sync.time_utils import Clock, now_ms, seconds_to_ms
from utils.logging_utils import get_tagged_logger, mask_url, setup_logging

logger = get_tagged_logger(__name__, tag="sync_service")


def configure_logging(settings: config.Settings | None = None) -> None:
    """Apply the configured log level and job name (no-op after the first call)."""
    settings = settings or config.settings
    setup_logging(level=settings.log_level.upper(), job_name=settings.log_job_name)


class ForecastSyncService:
    """Single entry point for rendering code: state, banner decisions and user actions."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        evaluator: StatusEvaluator,
        dismissals: DismissalTracker,
        connectivity: ConnectivityMonitor,
        *,
        client: ForecastApiClient | None = None,
        hourly_cache: HourlyForecastCache | None = None,
        refresh_on_reconnect: bool = False,
    ) -> None:
        self.orchestrator = orchestrator
        self.evaluator = evaluator
        self.dismissals = dismissals
        self.connectivity = connectivity
        self.client = client
        self.hourly_cache = hourly_cache
        self._unsubscribe_connectivity = None
        if refresh_on_reconnect:
            self._unsubscribe_connectivity = connectivity.subscribe(self._on_connectivity_change)

    @property
    def state(self) -> SyncState:
        return self.orchestrator.state

    def start(self) -> SyncState:
        return self.orchestrator.start()

    def start_in_background(self) -> threading.Thread:
        return self.orchestrator.start_in_background()

    def refresh(self) -> SyncState:
        return self.orchestrator.refresh()

    def refresh_in_background(self) -> threading.Thread:
        return self.orchestrator.refresh_in_background()

    def _on_connectivity_change(self, online: bool) -> None:
        if online and not self.state.refreshing:
            logger.info("Back online; refreshing forecast")
            self.orchestrator.refresh_in_background()

    def set_online(self, online: bool) -> None:
        self.connectivity.set_online(online)

    def banner(self) -> Optional[BannerStatus]:
        """Banner to render now, or None when there is none or it was dismissed."""
        state = self.state
        status = self.evaluator.describe(self.connectivity.is_online, state)
        if status is None:
            return None
        if self.dismissals.is_dismissed(state.cache_timestamp):
            return None
        return status

    def dismiss_banner(self) -> None:
        self.dismissals.dismiss(self.state.cache_timestamp)

    def dismiss_refresh_error(self) -> SyncState:
        return self.orchestrator.dismiss_refresh_error()

    def clear_cache(self) -> None:
        self.orchestrator.clear_cache()
        if self.hourly_cache is not None:
            self.hourly_cache.clear()

    def hourly_forecast(self, location_name: str, date: str) -> Any:
        """Hourly data for one location/date: network first, cached copy on failure.

        Returns the raw hourly payload as persisted. Raises the fetch error when
        the network fails and nothing is cached.
        """
        if self.client is None:
            raise RuntimeError("No forecast client configured")
        try:
            hourly: HourlyForecast = self.client.fetch_hourly_forecast(location_name, date)
        except Exception as exc:
            cached = self.hourly_cache.load(location_name, date) if self.hourly_cache else None
            if cached is None:
                raise
            logger.warning("Hourly fetch failed; serving cached hours: %s", exc)
            return cached
        payload = {
            "location": hourly.location,
            "locationDescription": hourly.location_description,
            "date": hourly.date,
            "sunrise": hourly.sunrise,
            "sunriseEpoch": hourly.sunrise_epoch,
            "sunset": hourly.sunset,
            "sunsetEpoch": hourly.sunset_epoch,
            "hours": hourly.hours,
        }
        if self.hourly_cache is not None:
            self.hourly_cache.save(location_name, date, payload)
        return payload

    def close(self) -> None:
        if self._unsubscribe_connectivity is not None:
            self._unsubscribe_connectivity()
            self._unsubscribe_connectivity = None


def build_sync_service(
    settings: config.Settings | None = None,
    *,
    store: KeyValueStore | None = None,
    session=None,
    clock: Clock = now_ms,
    initially_online: bool = True,
) -> ForecastSyncService:
    """Instantiate the full sync stack from configuration."""
    settings = settings or config.settings
    store = store if store is not None else build_store(settings)

    fetcher = RetryingFetcher(
        session,
        timeout=settings.fetch_timeout_seconds,
        max_retries=settings.fetch_max_retries,
    )
    client = ForecastApiClient(
        settings.api_base_url,
        fetcher,
        token=settings.api_token,
        data_source=settings.data_source,
    )
    cache = PersistentCache(
        store,
        key=settings.forecast_cache_key,
        schema_version=settings.cache_schema_version,
        clock=clock,
    )
    hourly_cache = HourlyForecastCache(
        store,
        key=settings.hourly_cache_key,
        schema_version=settings.cache_schema_version,
        max_age_ms=seconds_to_ms(settings.hourly_cache_max_age_seconds),
        clock=clock,
    )
    orchestrator = SyncOrchestrator(
        cache,
        client.fetch_forecast,
        data_source=settings.data_source,
        clock=clock,
    )
    evaluator = StatusEvaluator(
        stale_threshold_ms=seconds_to_ms(settings.stale_threshold_seconds),
        very_old_threshold_ms=seconds_to_ms(settings.very_old_threshold_seconds),
        clock=clock,
    )
    dismissals = DismissalTracker(store, prefix=settings.dismissal_key_prefix)

    logger.info(
        "Forecast sync configured",
        extra={
            "api_base_url": mask_url(settings.api_base_url),
            "data_source": settings.data_source,
            "storage_backend": settings.storage_backend,
        },
    )
    return ForecastSyncService(
        orchestrator,
        evaluator,
        dismissals,
        ConnectivityMonitor(initially_online),
        client=client,
        hourly_cache=hourly_cache,
        refresh_on_reconnect=settings.refresh_on_reconnect,
    )
