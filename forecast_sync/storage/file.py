"""JSON-file key-value store for durable local persistence."""

from __future__ import annotations

import errno
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from forecast_sync.errors import QuotaExceededError, StorageError
from forecast_sync.storage.base import KeyValueStore, value_size

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="storage/file_store")


class FileKeyValueStore(KeyValueStore):
    """Persist all keys in one JSON object on disk.

    Every `set`/`remove` rewrites the whole file through a temp file and
    `os.replace`, so readers see either the old or the new document.
    """

    def __init__(self, path: str | os.PathLike[str], quota_bytes: int | None = None) -> None:
        self.path = Path(path).expanduser()
        self.quota_bytes = quota_bytes
        self._lock = threading.Lock()
        logger.debug("Initializing FileKeyValueStore", extra={"path": str(self.path), "quota_bytes": quota_bytes})

    def _read_all(self) -> dict[str, str]:
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            # Per-key corruption is detected by callers; a broken container means start over.
            logger.warning("Storage file is not valid JSON; treating as empty", extra={"path": str(self.path), "error": str(exc)})
            return {}
        except OSError as exc:
            raise StorageError(f"Failed to read {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            logger.warning("Storage file does not hold an object; treating as empty", extra={"path": str(self.path)})
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self, data: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(data, handle, sort_keys=True)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            if exc.errno in (errno.ENOSPC, errno.EDQUOT):
                raise QuotaExceededError(f"No space left writing {self.path}") from exc
            raise StorageError(f"Failed to write {self.path}: {exc}") from exc

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_all()
            if self.quota_bytes is not None:
                needed = sum(value_size(k, v) for k, v in data.items() if k != key) + value_size(key, value)
                if needed > self.quota_bytes:
                    raise QuotaExceededError(
                        f"write of {value_size(key, value)} bytes to '{key}' exceeds quota of {self.quota_bytes} bytes"
                    )
            data[key] = value
            self._write_all(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if key not in data:
                return
            del data[key]
            self._write_all(data)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return [k for k in self._read_all() if k.startswith(prefix)]
