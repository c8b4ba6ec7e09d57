"""Factory helpers for choosing a key-value store at startup."""

from __future__ import annotations

import redis

from forecast_sync import config
from forecast_sync.storage.base import KeyValueStore
from forecast_sync.storage.file import FileKeyValueStore
from forecast_sync.storage.memory import InMemoryKeyValueStore
from forecast_sync.storage.redis import RedisKeyValueStore
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="storage/factory")


DEFAULT_BACKEND = "file"


def build_store(settings: config.Settings | None = None) -> KeyValueStore:
    """Instantiate the configured storage backend."""
    settings = settings or config.settings
    backend = (settings.storage_backend or DEFAULT_BACKEND).lower()

    if backend == "file":
        logger.info("Using file storage", extra={"path": settings.storage_path})
        return FileKeyValueStore(settings.storage_path, quota_bytes=settings.storage_quota_bytes)

    if backend == "memory":
        logger.info("Using in-memory storage")
        return InMemoryKeyValueStore(quota_bytes=settings.storage_quota_bytes)

    if backend == "redis":
        url = settings.storage_redis_url
        if not url:
            raise ValueError("storage_redis_url must be set for the redis storage backend")
        try:
            client = redis.Redis.from_url(url)
            client.ping()
            logger.info("Using RedisKeyValueStore", extra={"redis_url": mask_url(url)})
            return RedisKeyValueStore(client, prefix=settings.storage_redis_prefix)
        except redis.RedisError as exc:
            logger.warning("Falling back to InMemoryKeyValueStore (Redis unavailable)", extra={"error": str(exc)})
        return InMemoryKeyValueStore(quota_bytes=settings.storage_quota_bytes)

    raise ValueError(f"Unknown storage backend '{backend}'")
