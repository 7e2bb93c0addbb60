from __future__ import annotations

from greenpath.models import AssembledRoutes, Coordinate, ScoredRoute
from greenpath.route_cache import RouteCacheStore


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


def _result(best_index: int = 0, *, routes: int = 1) -> AssembledRoutes:
    scored = tuple(
        ScoredRoute(
            index=i,
            is_best=i == best_index,
            avg_pm25=12.0,
            duration_min=14.0,
            distance_km=6.0,
            geometry=(Coordinate(81.0, 26.9), Coordinate(81.2, 27.0)),
        )
        for i in range(routes)
    )
    return AssembledRoutes(
        feature_collection={"type": "FeatureCollection", "features": []},
        routes=scored,
        best_index=best_index,
    )


def test_hit_miss_and_copy_isolation() -> None:
    store = RouteCacheStore(ttl_s=60, max_entries=4)
    assert store.lookup("k") is None

    assert store.store("k", _result()) is True
    hit = store.lookup("k")
    assert hit is not None
    hit.result.feature_collection["features"].append({"mutated": True})
    again = store.lookup("k")
    assert again is not None
    assert again.result.feature_collection["features"] == []

    stats = store.snapshot()
    assert stats["hits"] == 2
    assert stats["misses"] == 1
    assert stats["size"] == 1


def test_results_without_routes_are_not_cached() -> None:
    store = RouteCacheStore(ttl_s=60, max_entries=4)
    assert store.store("k", _result(routes=0)) is False
    assert store.lookup("k") is None
    assert store.snapshot()["rejected"] == 1


def test_freshness_is_reported_per_key() -> None:
    clock = FakeClock()
    store = RouteCacheStore(ttl_s=60, max_entries=4, clock=clock)
    store.store("k", _result())
    clock.now += 15

    assert store.expires_in("k") == 45.0
    assert store.expires_in("other") is None
    hit = store.lookup("k")
    assert hit is not None
    assert hit.age_s == 15.0
    assert hit.expires_in_s == 45.0
    # expires_in is not a lookup
    assert store.snapshot()["hits"] == 1


def test_ttl_expiry() -> None:
    clock = FakeClock()
    store = RouteCacheStore(ttl_s=60, max_entries=2, clock=clock)
    store.store("a", _result())
    clock.now += 61
    assert store.lookup("a") is None
    assert store.expires_in("a") is None
    assert store.clear() == 0


def test_lru_eviction() -> None:
    store = RouteCacheStore(ttl_s=60, max_entries=2)
    store.store("a", _result(0))
    store.store("b", _result(0))
    assert store.lookup("a") is not None  # a is now most recent
    store.store("c", _result(0))

    assert store.lookup("b") is None
    assert store.lookup("a") is not None
    assert store.snapshot()["evictions"] == 1


def test_invalidate_single_key() -> None:
    store = RouteCacheStore(ttl_s=60, max_entries=4)
    store.store("a", _result())
    store.store("b", _result())
    assert store.invalidate("a") is True
    assert store.invalidate("a") is False
    assert store.lookup("a") is None
    assert store.lookup("b") is not None
