"""Key-value storage backends."""

from .base import KeyValueStore
from .factory import build_store
from .file import FileKeyValueStore
from .memory import InMemoryKeyValueStore
from .redis import RedisKeyValueStore

__all__ = [
    "KeyValueStore",
    "build_store",
    "FileKeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
]
