# src/ndc_qty/resilience/cache.py
from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Distinguishes "not cached" from a cached negative result such as None
CACHE_MISS = object()

DEFAULT_STALE_TTL_SECONDS = 48 * 60 * 60


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    cached_at: float


@dataclass(frozen=True)
class CacheHit(Generic[T]):
    value: T
    is_stale: bool
    age_seconds: float


class TTLCache(Generic[T]):
    """
    Bounded LRU cache with a fresh TTL and a longer stale TTL.

    - `get` only ever returns fresh entries (age <= fresh_ttl);
    - `get_with_stale` can also return entries up to stale_ttl old, flagged
      as stale, for degraded mode during upstream outages;
    - entries older than stale_ttl are purged on access.

    All bookkeeping happens under a lock, the instance is shared by every
    in-flight query of the process.
    """

    def __init__(
        self,
        max_size: int,
        fresh_ttl_seconds: float,
        stale_ttl_seconds: float = DEFAULT_STALE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if stale_ttl_seconds < fresh_ttl_seconds:
            raise ValueError("stale_ttl_seconds must not be shorter than fresh_ttl_seconds")
        self._max_size = max_size
        self._fresh_ttl = fresh_ttl_seconds
        self._stale_ttl = stale_ttl_seconds
        self._clock = clock
        self._store: "OrderedDict[str, CacheEntry[T]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = CACHE_MISS) -> Any:
        hit = self.get_with_stale(key, allow_stale=False)
        if hit is None:
            return default
        return hit.value

    def get_with_stale(self, key: str, allow_stale: bool = False) -> Optional[CacheHit[T]]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None

            age = self._clock() - entry.cached_at
            if age > self._stale_ttl:
                del self._store[key]
                return None

            is_stale = age > self._fresh_ttl
            if is_stale and not allow_stale:
                return None

            self._store.move_to_end(key)

        logger.debug("Cache entry retrieved (age=%.1fs, stale=%s)", age, is_stale)
        return CacheHit(value=entry.value, is_stale=is_stale, age_seconds=age)

    def set(self, key: str, value: T) -> None:
        with self._lock:
            if key in self._store:
                self._store.pop(key)
            elif len(self._store) >= self._max_size:
                self._store.popitem(last=False)
            self._store[key] = CacheEntry(value=value, cached_at=self._clock())

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"size": len(self._store), "max_size": self._max_size}
