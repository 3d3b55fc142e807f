"""
Local persistence cache.

A fixed set of logical keys over a key -> string store. Each value is
one JSON document written as an atomic unit.

Rules:
- An absent key means "unset", never an error.
- A stored value that is not valid JSON, or does not have the shape its
  key requires, is cleared and reported absent. Corrupt cache never
  blocks startup.
- Only ProfileSyncEngine writes these keys.
"""

from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from biosyn.constants import (
    CACHE_KEY_CHAT_HISTORY,
    CACHE_KEY_IDENTITY,
    CACHE_KEY_LAST_REPORT,
    CACHE_KEY_SETTINGS,
)
from biosyn.observability.logger import log_event


class CacheKey(str, Enum):
    IDENTITY = CACHE_KEY_IDENTITY
    LAST_REPORT = CACHE_KEY_LAST_REPORT
    CHAT_HISTORY = CACHE_KEY_CHAT_HISTORY
    SETTINGS = CACHE_KEY_SETTINGS


# ---------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------

class KeyValueStore(ABC):
    """Synchronous key -> opaque string persistence."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove key. Removing an absent key is a no-op."""
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    """Process-local store (tests, ephemeral runs)."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class FileStore(KeyValueStore):
    """
    One <key>.json file per key under a directory.

    Writes go to a temp file in the same directory and are moved into
    place with os.replace, so a reader sees the old or the new value,
    never a partial one.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> str | None:
        try:
            return self._path(key).read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self._path(key))
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


# ---------------------------------------------------------------------
# Shape validation
# ---------------------------------------------------------------------

def _is_identity(value: Any) -> bool:
    return isinstance(value, dict) and isinstance(value.get("email"), str) and bool(value["email"])


def _is_object(value: Any) -> bool:
    return isinstance(value, dict)


def _is_list(value: Any) -> bool:
    return isinstance(value, list)


_VALIDATORS: dict[CacheKey, Callable[[Any], bool]] = {
    CacheKey.IDENTITY: _is_identity,
    CacheKey.LAST_REPORT: _is_object,
    CacheKey.CHAT_HISTORY: _is_list,
    CacheKey.SETTINGS: _is_object,
}


# ---------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------

class LocalPersistenceCache:
    """Typed, self-healing access to the logical cache keys."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def get(self, key: CacheKey) -> Any | None:
        """Decoded value, or None if absent or corrupt (corrupt entries are cleared)."""
        raw = self._store.get(key.value)
        if raw is None:
            return None

        try:
            value = json.loads(raw)
        except ValueError:
            self._heal(key, "invalid_json")
            return None

        if not _VALIDATORS[key](value):
            self._heal(key, "invalid_shape")
            return None
        return value

    def set(self, key: CacheKey, value: Any) -> None:
        self._store.set(key.value, json.dumps(value, ensure_ascii=False))

    def remove(self, key: CacheKey) -> None:
        self._store.remove(key.value)

    def clear(self) -> None:
        """Remove every logical key."""
        for key in CacheKey:
            self._store.remove(key.value)

    def _heal(self, key: CacheKey, reason: str) -> None:
        log_event({
            "event_type": "CACHE_ENTRY_CORRUPT",
            "key": key.value,
            "reason": reason,
        })
        self._store.remove(key.value)
