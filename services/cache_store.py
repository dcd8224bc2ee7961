from __future__ import annotations

import json
import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class CacheStoreError(RuntimeError):
    pass


@dataclass
class CacheEntry:
    value: str
    expires_at_epoch: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at_epoch


class ExpiringCache(ABC):
    """Key/value store whose entries stop being returned after their expiry."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str, expires_at_epoch: float) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class MemoryCache(ExpiringCache):
    """Process-lifetime cache."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not entry.is_valid(self._clock()):
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: str, expires_at_epoch: float) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at_epoch=expires_at_epoch)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)


class FileCache(ExpiringCache):
    """
    Cache persisted as a single JSON file, so tokens survive process restarts.

    File layout:
        {"<key>": {"value": "...", "expires_at_epoch": 1700000000.0}, ...}

    An unreadable or corrupt file is treated as empty and rewritten on the
    next set().
    """

    def __init__(self, path: str, clock: Callable[[], float] = time.time) -> None:
        self._path = Path(path)
        self._clock = clock
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, CacheEntry]:
        if not self._path.exists():
            return {}

        try:
            obj = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("cache | unreadable cache file %s: %s", self._path, exc)
            return {}

        if not isinstance(obj, dict):
            return {}

        entries: Dict[str, CacheEntry] = {}
        for key, raw in obj.items():
            if not isinstance(raw, dict):
                continue
            value = raw.get("value")
            expires_at = raw.get("expires_at_epoch")
            if not isinstance(value, str) or not isinstance(expires_at, (int, float)):
                continue
            entries[key] = CacheEntry(value=value, expires_at_epoch=float(expires_at))
        return entries

    def _save(self, entries: Dict[str, CacheEntry]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            key: {"value": entry.value, "expires_at_epoch": entry.expires_at_epoch}
            for key, entry in entries.items()
        }
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as exc:
            raise CacheStoreError(f"Failed to write cache file: {self._path}") from exc
        # tokens are secrets
        try:
            os.chmod(self._path, 0o600)
        except OSError:
            logger.debug("cache | could not restrict permissions on %s", self._path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._load().get(key)
            if entry is None or not entry.is_valid(self._clock()):
                return None
            return entry.value

    def set(self, key: str, value: str, expires_at_epoch: float) -> None:
        with self._lock:
            now = self._clock()
            entries = {k: e for k, e in self._load().items() if e.is_valid(now)}
            entries[key] = CacheEntry(value=value, expires_at_epoch=expires_at_epoch)
            self._save(entries)

    def delete(self, key: str) -> None:
        with self._lock:
            entries = self._load()
            if entries.pop(key, None) is not None:
                self._save(entries)
