"""Small in-memory cache with per-entry expiry.

Used for the server-side unread counters and for the client-side
conversation list. Entries are ``key -> (value, expires_at)`` with an
absolute monotonic deadline; expired entries are dropped lazily on read.

Not thread-safe: callers live on a single event loop.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value:      V
    expires_at: float   # absolute clock() deadline

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TTLCache(Generic[K, V]):
    """Key/value cache where every entry expires ``ttl_seconds`` after it is set.

    Args:
        ttl_seconds: Default lifetime of an entry.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._store: Dict[K, _Entry[V]] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: K) -> Optional[V]:
        """Return the cached value, or None if absent or expired."""
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._store[key]
            return None
        return entry.value

    def set(self, key: K, value: V, ttl_seconds: Optional[float] = None) -> None:
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        self._store[key] = _Entry(value=value, expires_at=self._clock() + ttl)

    def has(self, key: K) -> bool:
        return self.get(key) is not None

    def invalidate(self, key: K) -> None:
        """Drop one entry (no-op if absent)."""
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for entry in self._store.values() if not entry.is_expired(now))
