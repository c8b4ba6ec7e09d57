import threading
import time
import unittest
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import requests

from forecast_sync.errors import FetchTimeoutError, TransportError
from forecast_sync.fetcher import FetchResponse, RetryingFetcher, fetch_with_retries


class DummyResp:
    def __init__(self, status_code=200, body=b'{"data": {}}', reason="OK", headers=None, chunks=None):
        self.status_code = status_code
        self.reason = reason
        self.headers = headers if headers is not None else {"Content-Type": "application/json"}
        self.encoding = "utf-8"
        self._chunks = chunks if chunks is not None else [body]
        self.closed = False

    def iter_content(self, chunk_size=1):
        for chunk in self._chunks:
            yield chunk

    def close(self):
        self.closed = True


class DummySession:
    """Replays a scripted list of responses or exceptions, one per GET."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def get(self, url, headers=None, timeout=None, stream=False):
        self.calls.append({"url": url, "headers": headers, "timeout": timeout, "stream": stream})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class StalledResp(DummyResp):
    """Sends one chunk, then blocks until closed, like a server that stops mid-body."""

    def __init__(self, first_chunk=b'{"da'):
        super().__init__(chunks=[first_chunk])
        self._released = threading.Event()

    def iter_content(self, chunk_size=1):
        yield self._chunks[0]
        self._released.wait(5)

    def close(self):
        self.closed = True
        self._released.set()


class StalledSession:
    """GET that never produces a response until released."""

    def __init__(self):
        self.release = threading.Event()
        self.calls = 0

    def get(self, url, headers=None, timeout=None, stream=False):
        self.calls += 1
        self.release.wait(5)
        raise requests.ConnectionError("released")


class TestRetryingFetcher(unittest.TestCase):
    def test_success_on_first_attempt(self):
        resp = DummyResp(body=b'{"data": {"regions": []}}')
        session = DummySession([resp])
        fetcher = RetryingFetcher(session, timeout=5, max_retries=3)

        result = fetcher.fetch("http://api/forecasts/real", headers={"Authorization": "Bearer t"})

        self.assertIsInstance(result, FetchResponse)
        self.assertEqual(result.status_code, 200)
        self.assertEqual(result.attempts, 1)
        self.assertEqual(result.json(), {"data": {"regions": []}})
        self.assertEqual(len(session.calls), 1)
        self.assertTrue(session.calls[0]["stream"])
        self.assertEqual(session.calls[0]["timeout"], 5)
        self.assertEqual(session.calls[0]["headers"], {"Authorization": "Bearer t"})
        self.assertTrue(resp.closed)

    def test_exhausts_exactly_max_retries_plus_one_attempts(self):
        errors = [requests.ConnectionError(f"refused {i}") for i in range(4)]
        session = DummySession(errors)
        fetcher = RetryingFetcher(session, timeout=5, max_retries=3)

        with self.assertRaises(TransportError) as ctx:
            fetcher.fetch("http://api/forecasts/real")

        self.assertEqual(len(session.calls), 4)
        self.assertIn("refused 3", str(ctx.exception))

    def test_zero_retries_means_single_attempt(self):
        session = DummySession([requests.ConnectionError("down"), DummyResp()])
        fetcher = RetryingFetcher(session, timeout=5, max_retries=0)
        with self.assertRaises(TransportError):
            fetcher.fetch("http://api/x")
        self.assertEqual(len(session.calls), 1)

    def test_success_after_failures_reports_attempt(self):
        session = DummySession([
            requests.ConnectionError("reset"),
            requests.Timeout("slow"),
            DummyResp(),
        ])
        fetcher = RetryingFetcher(session, timeout=5, max_retries=6)
        result = fetcher.fetch("http://api/x")
        self.assertEqual(result.attempts, 3)
        self.assertEqual(len(session.calls), 3)

    def test_requests_timeout_maps_to_fetch_timeout(self):
        session = DummySession([requests.Timeout("read timed out")])
        fetcher = RetryingFetcher(session, timeout=2, max_retries=0)
        with self.assertRaises(FetchTimeoutError) as ctx:
            fetcher.fetch("http://api/x")
        self.assertEqual(str(ctx.exception), "Timeout after 2s")

    def test_non_2xx_is_returned_not_retried(self):
        resp = DummyResp(status_code=500, reason="Internal Server Error", body=b"boom")
        session = DummySession([resp])
        fetcher = RetryingFetcher(session, timeout=5, max_retries=6)
        result = fetcher.fetch("http://api/x")
        self.assertEqual(result.status_code, 500)
        self.assertFalse(result.ok)
        self.assertEqual(result.text, "boom")
        self.assertEqual(len(session.calls), 1)

    def test_stalled_body_times_out_and_closes_response(self):
        resp = StalledResp()
        fetcher = RetryingFetcher(DummySession([resp]), timeout=0.2, max_retries=0)

        started = time.monotonic()
        with self.assertRaises(FetchTimeoutError):
            fetcher.fetch("http://api/x")
        elapsed = time.monotonic() - started

        self.assertLess(elapsed, 1.0)
        self.assertTrue(resp.closed)

    def test_stalled_connect_times_out(self):
        session = StalledSession()
        fetcher = RetryingFetcher(session, timeout=0.2, max_retries=0)
        try:
            started = time.monotonic()
            with self.assertRaises(FetchTimeoutError):
                fetcher.fetch("http://api/x")
            self.assertLess(time.monotonic() - started, 1.0)
        finally:
            session.release.set()

    def test_timeout_then_success_retries(self):
        slow = StalledResp()
        fast = DummyResp()
        fetcher = RetryingFetcher(DummySession([slow, fast]), timeout=0.2, max_retries=1)

        result = fetcher.fetch("http://api/x")

        self.assertEqual(result.attempts, 2)
        self.assertTrue(slow.closed)
        self.assertTrue(fast.closed)

    def test_rejects_invalid_configuration(self):
        with self.assertRaises(ValueError):
            RetryingFetcher(DummySession([]), timeout=0)
        with self.assertRaises(ValueError):
            RetryingFetcher(DummySession([]), max_retries=-1)

    def test_fetch_with_retries_wrapper(self):
        session = DummySession([requests.ConnectionError("x"), DummyResp()])
        result = fetch_with_retries("http://api/x", timeout=3, max_retries=1, session=session)
        self.assertEqual(result.attempts, 2)


class TestFetchResponse(unittest.TestCase):
    def test_content_type_lookup_is_case_insensitive(self):
        resp = FetchResponse(url="u", status_code=200, headers={"content-type": "application/json; charset=utf-8"})
        self.assertEqual(resp.content_type, "application/json; charset=utf-8")

    def test_json_raises_value_error_on_malformed_body(self):
        resp = FetchResponse(url="u", status_code=200, content=b"<html>")
        with self.assertRaises(ValueError):
            resp.json()


class _SlowHandler(BaseHTTPRequestHandler):
    """`/trickle` sends headers then one body byte at a time; `/stall` never answers."""

    def do_GET(self):
        stop = self.server.stop
        if self.path == "/stall":
            stop.wait(10)
            return
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", "1000")
        self.end_headers()
        try:
            for _ in range(1000):
                if stop.wait(0.3):
                    return
                self.wfile.write(b" ")
                self.wfile.flush()
        except OSError:
            return

    def log_message(self, format, *args):
        pass


class TestRetryingFetcherAgainstSlowServer(unittest.TestCase):
    def setUp(self):
        self.server = ThreadingHTTPServer(("127.0.0.1", 0), _SlowHandler)
        self.server.daemon_threads = True
        self.server.stop = threading.Event()
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()
        host, port = self.server.server_address[:2]
        self.base_url = f"http://{host}:{port}"

    def tearDown(self):
        self.server.stop.set()
        self.server.shutdown()
        self.server.server_close()
        self.thread.join(5)

    def _assert_times_out_promptly(self, path):
        fetcher = RetryingFetcher(requests.Session(), timeout=1.0, max_retries=0)
        started = time.monotonic()
        with self.assertRaises(FetchTimeoutError):
            fetcher.fetch(f"{self.base_url}{path}")
        self.assertLess(time.monotonic() - started, 2.0)

    def test_trickling_body_is_cut_off_at_the_deadline(self):
        self._assert_times_out_promptly("/trickle")

    def test_unanswered_request_is_cut_off_at_the_deadline(self):
        self._assert_times_out_promptly("/stall")

    def test_every_attempt_gets_its_own_deadline(self):
        fetcher = RetryingFetcher(requests.Session(), timeout=0.5, max_retries=2)
        started = time.monotonic()
        with self.assertRaises(FetchTimeoutError):
            fetcher.fetch(f"{self.base_url}/trickle")
        self.assertLess(time.monotonic() - started, 3 * 0.5 + 1.0)


if __name__ == "__main__":
    unittest.main()
