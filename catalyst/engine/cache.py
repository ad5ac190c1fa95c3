"""
catalyst.engine.cache — Short-TTL read cache
=============================================

Sits between the world state store's in-memory maps and the persistence
adapter.  Entries expire ``ttl`` seconds after they were written; expired
entries are dropped lazily on read and in bulk by :meth:`TTLCache.purge`.

Keys are namespaced tuples such as ``("user", 1234)`` or
``("faction", "5f0c…")`` so one cache can front every entity type.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable
from typing import Any

_MISSING = object()


class TTLCache:
    """Thread-safe dict with per-entry expiry.

    Usage:
        cache = TTLCache(ttl=300)
        cache.set(("user", 42), user)
        cache.get(("user", 42))     # → user, or None once expired
    """

    def __init__(self, ttl: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        # key → (expires_at, value)
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key, _MISSING)
            if entry is _MISSING:
                return default
            expires_at, value = entry
            if expires_at <= now:
                del self._entries[key]
                return default
            return value

    def set(self, key: Hashable, value: Any) -> None:
        if self.ttl <= 0:
            return
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl, value)

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge(self) -> int:
        """Drop every expired entry.  Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (exp, _) in self._entries.items() if exp <= now]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING
