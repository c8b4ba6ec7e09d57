"""Error types raised by the fetch and storage layers."""

from __future__ import annotations


class ForecastSyncError(Exception):
    """Base error for forecast-sync operations."""


class FetchError(ForecastSyncError):
    """A remote forecast fetch failed."""


class TransportError(FetchError):
    """The request never produced a response (DNS, refused, reset, ...)."""


class FetchTimeoutError(TransportError):
    """A single fetch attempt exceeded its deadline."""

    def __init__(self, timeout: float, url: str | None = None) -> None:
        self.timeout = timeout
        self.url = url
        super().__init__(f"Timeout after {timeout:g}s")


class HttpStatusError(FetchError):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, reason: str = "", body: str = "") -> None:
        self.status_code = status_code
        self.reason = reason
        self.body = body
        message = f"HTTP {status_code}: {reason}".rstrip(": ")
        if body:
            message = f"{message}. Body: {body[:200]}"
        super().__init__(message)


class ForecastParseError(FetchError):
    """The response body was not JSON or did not have the expected shape."""


class StorageError(ForecastSyncError):
    """A key-value store operation failed."""


class QuotaExceededError(StorageError):
    """The store refused a write because it is full."""


class CacheCorruptionError(StorageError):
    """A persisted record could not be decoded."""


class CacheVersionMismatchError(StorageError):
    """A persisted record was written with a different schema version."""

    def __init__(self, found: object, expected: str) -> None:
        self.found = found
        self.expected = expected
        super().__init__(f"cached={found}, current={expected}")
