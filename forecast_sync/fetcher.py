"""HTTP GET with a hard per-attempt deadline and a bounded number of retries."""
from __future__ import annotations

import json
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import requests

from forecast_sync.errors import FetchTimeoutError, TransportError
from utils.logging_utils import get_tagged_logger, mask_url, redact_headers

logger = get_tagged_logger(__name__, tag="fetcher")

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_RETRIES = 6
DEFAULT_CHUNK_SIZE = 64 * 1024


@dataclass
class FetchResponse:
    """Fully-read HTTP response. The status code is not validated here."""
    url: str
    status_code: int
    reason: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    content: bytes = b""
    encoding: Optional[str] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return ""

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding or "utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON; raises ValueError on malformed input."""
        return json.loads(self.text)


class _InFlight:
    """Bookkeeping for one attempt running on a worker thread."""

    def __init__(self) -> None:
        self.future: Future = Future()
        self.cancelled = threading.Event()
        self._lock = threading.Lock()
        self._response: requests.Response | None = None

    def hold(self, resp: requests.Response) -> bool:
        """Register the open response; False if the attempt was already abandoned."""
        with self._lock:
            if self.cancelled.is_set():
                return False
            self._response = resp
            return True

    def abandon(self) -> None:
        """Mark the attempt lost and close its response, unblocking the worker's read."""
        with self._lock:
            self.cancelled.set()
            resp = self._response
        if resp is not None:
            resp.close()


class RetryingFetcher:
    """Run one logical GET as up to `max_retries + 1` immediate attempts.

    Each attempt runs on its own worker thread and races a single deadline
    covering connect, headers and body. When the deadline wins, the caller
    gets a FetchTimeoutError right away and the attempt's response is closed,
    which tears down the connection instead of leaving the transfer running
    in the background.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_retries = max_retries
        self.chunk_size = chunk_size

    def _read(self, flight: _InFlight, url: str, timeout: float, headers: Mapping[str, str]) -> FetchResponse:
        """Worker side of an attempt: GET and stream the body until done or abandoned."""
        try:
            resp = self.session.get(url, headers=dict(headers), timeout=timeout, stream=True)
        except requests.Timeout as exc:
            raise FetchTimeoutError(timeout, url) from exc
        except requests.RequestException as exc:
            raise TransportError(f"Network error fetching {mask_url(url)}: {exc}") from exc

        try:
            if not flight.hold(resp):
                raise FetchTimeoutError(timeout, url)
            chunks: list[bytes] = []
            for chunk in resp.iter_content(chunk_size=self.chunk_size):
                if flight.cancelled.is_set():
                    raise FetchTimeoutError(timeout, url)
                if chunk:
                    chunks.append(chunk)
            return FetchResponse(
                url=url,
                status_code=resp.status_code,
                reason=resp.reason or "",
                headers=dict(resp.headers),
                content=b"".join(chunks),
                encoding=resp.encoding,
            )
        except requests.Timeout as exc:
            raise FetchTimeoutError(timeout, url) from exc
        except requests.RequestException as exc:
            raise TransportError(f"Network error reading {mask_url(url)}: {exc}") from exc
        finally:
            resp.close()

    def _run(self, flight: _InFlight, url: str, timeout: float, headers: Mapping[str, str]) -> None:
        try:
            result = self._read(flight, url, timeout, headers)
        except Exception as exc:
            if flight.cancelled.is_set():
                logger.debug("Abandoned attempt finished with %s", type(exc).__name__, extra={"url": mask_url(url)})
            flight.future.set_exception(exc)
        else:
            flight.future.set_result(result)

    def _attempt(self, url: str, timeout: float, headers: Mapping[str, str]) -> FetchResponse:
        """Perform a single attempt, raising FetchTimeoutError once `timeout` elapses."""
        flight = _InFlight()
        worker = threading.Thread(
            target=self._run,
            args=(flight, url, timeout, headers),
            name="forecast-fetch-attempt",
            daemon=True,
        )
        worker.start()
        try:
            return flight.future.result(timeout=timeout)
        except FuturesTimeoutError:
            flight.abandon()
            raise FetchTimeoutError(timeout, url) from None

    def fetch(
        self,
        url: str,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> FetchResponse:
        """Fetch `url`, retrying immediately on any attempt failure.

        Returns the first response that arrives in time, whatever its status.
        Raises the last attempt's error once every attempt has failed.
        """
        timeout = self.timeout if timeout is None else timeout
        max_retries = self.max_retries if max_retries is None else max_retries
        headers = headers or {}
        max_attempts = max_retries + 1
        safe_url = mask_url(url)

        logger.debug(
            "Starting fetch",
            extra={"url": safe_url, "timeout": timeout, "max_attempts": max_attempts, "headers": redact_headers(headers)},
        )

        attempt = 1
        while True:
            logger.info("Fetch attempt %d/%d for %s", attempt, max_attempts, safe_url)
            try:
                response = self._attempt(url, timeout, headers)
            except Exception as exc:
                logger.warning(
                    "Fetch attempt %d/%d failed: %s",
                    attempt,
                    max_attempts,
                    exc,
                    extra={"url": safe_url, "error_type": type(exc).__name__},
                )
                if attempt >= max_attempts:
                    logger.error("All %d attempts failed for %s", max_attempts, safe_url)
                    raise
                attempt += 1
                continue
            response.attempts = attempt
            logger.info(
                "Fetch succeeded on attempt %d: status %s",
                attempt,
                response.status_code,
                extra={"url": safe_url, "status_code": response.status_code},
            )
            return response




def fetch_with_retries(
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    max_retries: int = DEFAULT_MAX_RETRIES,
    headers: Mapping[str, str] | None = None,
    session: requests.Session | None = None,
) -> FetchResponse:
    """One-shot convenience wrapper around RetryingFetcher.fetch."""
    fetcher = RetryingFetcher(session, timeout=timeout, max_retries=max_retries)
    return fetcher.fetch(url, headers=headers)
