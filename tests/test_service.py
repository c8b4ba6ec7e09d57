import json
import threading
import unittest
from unittest.mock import patch

import requests

from forecast_sync.cache import PersistentCache
from forecast_sync.config import Settings
from forecast_sync.errors import HttpStatusError, TransportError
from forecast_sync.orchestrator import SyncPhase
from forecast_sync.service import build_sync_service, configure_logging
from forecast_sync.status import BannerKind
from forecast_sync.storage.memory import InMemoryKeyValueStore
from forecast_sync.time_utils import MS_PER_MINUTE

NOW = 1_700_000_000_000


class DummyResp:
    def __init__(self, status_code=200, payload=None, reason="OK", content_type="application/json"):
        self.status_code = status_code
        self.reason = reason
        self.headers = {"Content-Type": content_type}
        self.encoding = "utf-8"
        body = payload if isinstance(payload, (bytes, str)) else json.dumps(payload)
        self._body = body.encode("utf-8") if isinstance(body, str) else body

    def iter_content(self, chunk_size=1):
        yield self._body

    def close(self):
        pass


class DummySession:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.urls = []
        self.lock = threading.Lock()

    def get(self, url, headers=None, timeout=None, stream=False):
        with self.lock:
            self.urls.append(url)
            outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class MutableClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def _server_error():
    return DummyResp(status_code=500, payload="upstream exploded", reason="Internal Server Error", content_type="text/plain")


def _forecast(label):
    return DummyResp(payload={"data": {"label": label}})


class TestForecastSyncService(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryKeyValueStore()
        self.clock = MutableClock(NOW)
        self.settings = Settings(
            api_base_url="http://api",
            storage_backend="memory",
            fetch_max_retries=2,
            refresh_on_reconnect=False,
        )

    def _service(self, outcomes, settings=None, initially_online=True):
        self.session = DummySession(outcomes)
        return build_sync_service(
            settings or self.settings,
            store=self.store,
            session=self.session,
            clock=self.clock,
            initially_online=initially_online,
        )

    def _seed_cache(self, forecast, age_ms):
        cache = PersistentCache(self.store, clock=lambda: NOW - age_ms)
        self.assertTrue(cache.save(forecast, "real"))

    def test_recent_cache_and_server_error_shows_cached_banner(self):
        self._seed_cache({"label": "cached"}, 2 * MS_PER_MINUTE)
        service = self._service([_server_error()])

        state = service.start()

        self.assertEqual(state.phase, SyncPhase.DEGRADED)
        self.assertEqual(state.forecast, {"label": "cached"})
        self.assertIsInstance(state.refresh_error, HttpStatusError)
        banner = service.banner()
        self.assertEqual(banner.kind, BannerKind.CACHED)
        self.assertEqual(banner.age_label, "2 minutes ago")
        self.assertFalse(banner.stale_warning)
        self.assertIn("500", banner.refresh_error)
        self.assertEqual(self.session.urls, ["http://api/forecasts/real"])

    def test_no_cache_and_server_error_is_blocking(self):
        service = self._service([_server_error()])

        state = service.start()

        self.assertTrue(state.has_blocking_error)
        self.assertIn("500", str(state.error))
        self.assertIsNone(service.banner())

    def test_old_cache_and_network_failure_shows_stale_banner(self):
        self._seed_cache({"label": "cached"}, 10 * MS_PER_MINUTE)
        service = self._service([requests.ConnectionError("unreachable")] * 3)

        state = service.start()

        self.assertIsInstance(state.refresh_error, TransportError)
        self.assertEqual(len(self.session.urls), 3)
        banner = service.banner()
        self.assertEqual(banner.kind, BannerKind.STALE)
        self.assertTrue(banner.stale_warning)
        self.assertEqual(banner.age_label, "10 minutes ago")

    def test_offline_banner_wins(self):
        self._seed_cache({"label": "cached"}, MS_PER_MINUTE)
        service = self._service([requests.ConnectionError("offline")] * 3, initially_online=False)
        service.start()
        self.assertEqual(service.banner().kind, BannerKind.OFFLINE)

    def test_fresh_network_data_has_no_banner(self):
        service = self._service([_forecast("fresh")])
        state = service.start()
        self.assertEqual(state.forecast, {"label": "fresh"})
        self.assertIsNone(service.banner())

    def test_dismissal_is_rearmed_by_new_data(self):
        self._seed_cache({"label": "cached"}, 2 * MS_PER_MINUTE)
        service = self._service([_server_error(), _forecast("fresh")])
        service.start()

        service.dismiss_banner()
        self.assertIsNone(service.banner())

        self.clock.now = NOW + MS_PER_MINUTE
        service.refresh()
        service.set_online(False)

        banner = service.banner()
        self.assertEqual(banner.kind, BannerKind.OFFLINE)
        self.assertEqual(banner.cache_timestamp, NOW + MS_PER_MINUTE)

    def test_refresh_on_reconnect(self):
        settings = Settings(api_base_url="http://api", storage_backend="memory", fetch_max_retries=0, refresh_on_reconnect=True)
        service = self._service([_forecast("first"), _forecast("second")], settings=settings)
        service.start()

        ready = threading.Event()

        def on_state(state):
            if state.phase == SyncPhase.READY and state.forecast == {"label": "second"}:
                ready.set()

        service.orchestrator.subscribe(on_state)
        service.set_online(False)
        service.set_online(True)

        self.assertTrue(ready.wait(5))
        self.assertEqual(len(self.session.urls), 2)
        service.close()

    def test_dismiss_refresh_error(self):
        self._seed_cache({"label": "cached"}, MS_PER_MINUTE)
        service = self._service([_server_error()])
        service.start()
        self.assertIsNone(service.dismiss_refresh_error().refresh_error)

    def test_clear_cache_removes_persisted_records(self):
        service = self._service([_forecast("fresh")])
        service.start()
        service.clear_cache()
        self.assertIsNone(self.store.get(self.settings.forecast_cache_key))


class TestHourlyForecast(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryKeyValueStore()
        self.settings = Settings(api_base_url="http://api", storage_backend="memory", fetch_max_retries=0)

    def _service(self, outcomes):
        self.session = DummySession(outcomes)
        return build_sync_service(self.settings, store=self.store, session=self.session, clock=lambda: NOW)

    def test_network_then_cached_fallback(self):
        payload = {
            "data": {
                "location": {"name": "mt_baker", "description": "Mt. Baker"},
                "days": [{"datetime": "2024-01-15", "sunrise": "07:50:00", "hours": [{"temp": 25}]}],
            }
        }
        service = self._service([DummyResp(payload=payload), requests.ConnectionError("offline")])

        fresh = service.hourly_forecast("mt_baker", "2024-01-15")
        cached = service.hourly_forecast("mt_baker", "2024-01-15")

        self.assertEqual(fresh["hours"], [{"temp": 25}])
        self.assertEqual(fresh["locationDescription"], "Mt. Baker")
        self.assertEqual(cached, fresh)
        self.assertEqual(self.session.urls[0], "http://api/forecasts/hourly/real?location=mt_baker")

    def test_failure_without_cache_raises(self):
        service = self._service([requests.ConnectionError("offline")])
        with self.assertRaises(TransportError):
            service.hourly_forecast("mt_baker", "2024-01-15")


class TestConfigureLogging(unittest.TestCase):
    def test_uses_configured_level_and_job_name(self):
        settings = Settings(log_level="debug", log_job_name="sync-test")
        with patch("forecast_sync.service.setup_logging") as setup:
            configure_logging(settings)
        setup.assert_called_once_with(level="DEBUG", job_name="sync-test")


if __name__ == "__main__":
    unittest.main()
