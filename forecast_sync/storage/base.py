"""Shared protocol for key-value storage backends."""

from typing import Iterable, Optional, Protocol


class KeyValueStore(Protocol):
    """Durable string key-value store (the shape of browser local storage).

    Backends raise `QuotaExceededError` when a write does not fit and
    `StorageError` for any other failure. Callers decide how to degrade.
    """

    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when the key is absent."""

    def set(self, key: str, value: str) -> None:
        """Store a fully-serialized value under `key` in a single write."""

    def remove(self, key: str) -> None:
        """Delete a key without raising if it is absent."""

    def keys(self, prefix: str = "") -> Iterable[str]:
        """List stored keys, optionally restricted to a prefix."""


def value_size(key: str, value: str) -> int:
    """Size charged against a store quota for one entry, in UTF-8 bytes."""
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))
