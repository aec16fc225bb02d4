# Overview: Process-local read-through cache with per-entry expiry for repository reads.

from __future__ import annotations

import copy
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, MutableMapping


DEFAULT_TTL_SECONDS = 900

_MISSING = object()


@dataclass
class _CacheEntry:
    value: Any
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TTLCache:
    """
    Read-through, write-invalidate side cache.

    No transactional coupling to the database: a read may be stale relative to
    a write from another process for at most the TTL. Values are deep-copied on
    the way in and out so callers cannot mutate cached state.
    """

    def __init__(self, default_ttl: int = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: MutableMapping[str, _CacheEntry] = {}
        self._lock = threading.Lock()

    def init_app(self, app) -> None:
        self.default_ttl = int(app.config.get("REPOSITORY_CACHE_TTL_SECONDS", DEFAULT_TTL_SECONDS))
        self.clear()
        app.extensions["repository_cache"] = self

    def get(self, key: str, default: Any = None) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if not entry.is_valid(now):
                del self._entries[key]
                return default
            return copy.deepcopy(entry.value)

    def contains(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return
        entry = _CacheEntry(value=copy.deepcopy(value), expires_at=self._clock() + ttl)
        with self._lock:
            self._entries[key] = entry

    def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
