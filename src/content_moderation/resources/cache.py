from __future__ import annotations

from dataclasses import dataclass
import threading
import time
from typing import Callable, Generic, Optional, TypeVar, Union

K = TypeVar("K")
V = TypeVar("V")


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: float


class TTLCache(Generic[K, V]):
    """In-memory TTL cache guarded by a lock. No size bound."""

    def __init__(self, default_ttl_seconds: float = 60, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._default_ttl = max(0.0, float(default_ttl_seconds))
        self._clock = clock
        self._lock = threading.RLock()
        self._store: dict[K, _Entry[V]] = {}

    def get(self, key: K, default: Union[V, _Missing, None] = None) -> Union[V, _Missing, None]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return default
            if entry.expires_at <= self._clock():
                self._store.pop(key, None)
                return default
            return entry.value

    def set(self, key: K, value: V, ttl_seconds: Optional[float] = None) -> None:
        """Store ``value``; a ttl of zero means the value is not kept."""
        ttl = self._default_ttl if ttl_seconds is None else max(0.0, float(ttl_seconds))
        if ttl <= 0:
            return
        with self._lock:
            self._store[key] = _Entry(value=value, expires_at=self._clock() + ttl)

    def delete(self, key: K) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def prune(self) -> int:
        with self._lock:
            now = self._clock()
            stale = [k for k, v in self._store.items() if v.expires_at <= now]
            for k in stale:
                self._store.pop(k, None)
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
