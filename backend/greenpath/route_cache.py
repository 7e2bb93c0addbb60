from __future__ import annotations

import copy
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, replace
from threading import Lock

from .models import AssembledRoutes
from .settings import settings


@dataclass(frozen=True)
class CachedRoutes:
    """A cache hit: the assembled result plus how fresh it is."""

    result: AssembledRoutes
    age_s: float
    expires_in_s: float


@dataclass
class _Entry:
    stored_at: float
    result: AssembledRoutes


class RouteCacheStore:
    """Successful assembled results keyed by RequestKey, bounded by TTL and LRU.

    Only results that hold at least one route are stored, so a "no routes"
    outcome for a key is always fetched again. Keys are the rounded request
    keys from ``build_request_key``; nearby clicks share an entry.
    """

    def __init__(
        self,
        *,
        ttl_s: int,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_s = max(1, int(ttl_s))
        self._max_entries = max(1, int(max_entries))
        self._clock = clock
        self._lock = Lock()
        self._items: OrderedDict[str, _Entry] = OrderedDict()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._rejected = 0

    def _age(self, entry: _Entry) -> float:
        return max(0.0, self._clock() - entry.stored_at)

    def _live_entry(self, key: str) -> _Entry | None:
        entry = self._items.get(key)
        if entry is not None and self._age(entry) > self._ttl_s:
            del self._items[key]
            return None
        return entry

    def lookup(self, key: str) -> CachedRoutes | None:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                self._misses += 1
                return None
            self._items.move_to_end(key)
            self._hits += 1
            age = self._age(entry)
            # the feature collection is a plain dict; callers get their own copy
            result = replace(entry.result, feature_collection=copy.deepcopy(entry.result.feature_collection))
            return CachedRoutes(result=result, age_s=round(age, 3), expires_in_s=round(self._ttl_s - age, 3))

    def store(self, key: str, result: AssembledRoutes) -> bool:
        """Cache ``result`` under ``key``; returns False when it holds no routes."""
        if not result.routes:
            with self._lock:
                self._rejected += 1
            return False
        entry = _Entry(
            stored_at=self._clock(),
            result=replace(result, feature_collection=copy.deepcopy(result.feature_collection)),
        )
        with self._lock:
            self._items[key] = entry
            self._items.move_to_end(key)
            while len(self._items) > self._max_entries:
                self._items.popitem(last=False)
                self._evictions += 1
        return True

    def expires_in(self, key: str) -> float | None:
        """Seconds until ``key`` goes stale, or None when it is not cached. Not counted as a hit."""
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return None
            return round(self._ttl_s - self._age(entry), 3)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._items)
            self._items.clear()
            return cleared

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._items),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "rejected": self._rejected,
                "ttl_s": self._ttl_s,
                "max_entries": self._max_entries,
            }


ROUTE_CACHE = RouteCacheStore(
    ttl_s=settings.route_cache_ttl_s,
    max_entries=settings.route_cache_max_entries,
)


def get_cached_routes(key: str) -> CachedRoutes | None:
    return ROUTE_CACHE.lookup(key)


def cache_successful_routes(key: str, result: AssembledRoutes) -> bool:
    return ROUTE_CACHE.store(key, result)


def route_expires_in(key: str) -> float | None:
    return ROUTE_CACHE.expires_in(key)


def invalidate_route(key: str) -> bool:
    return ROUTE_CACHE.invalidate(key)


def clear_route_cache() -> int:
    return ROUTE_CACHE.clear()


def route_cache_stats() -> dict[str, int]:
    return ROUTE_CACHE.snapshot()
