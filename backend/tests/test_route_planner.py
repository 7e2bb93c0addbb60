from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import httpx
import pytest

from greenpath.candidates import CandidateGenerator
from greenpath.directions import DirectionsClient
from greenpath.errors import ConfigurationError, ScorerError
from greenpath.geometry_signature import build_request_key
from greenpath.models import Coordinate, RouteCandidate, TransportMode
from greenpath.route_planner import NO_ROUTES_MESSAGE, RoutePlanner, RouteState
from greenpath.scorer import RouteScorerClient

A = Coordinate(lon=81.0, lat=26.9)
B = Coordinate(lon=81.2, lat=27.0)
C = Coordinate(lon=80.9, lat=26.8)


def _candidate(start: Coordinate, end: Coordinate) -> RouteCandidate:
    return RouteCandidate(geometry=(start, end), duration_s=600.0, distance_m=5_000.0)


def _scored_response(start: Coordinate, end: Coordinate, *, pm_best: float = 12.3) -> dict[str, Any]:
    line = {"type": "LineString", "coordinates": [start.as_pair(), end.as_pair()]}
    return {
        "routes": [
            {"index": 0, "is_best": True, "avg_pm2_5": pm_best, "duration_min": 14, "distance_km": 6.0, "geometry": line},
            {"index": 1, "is_best": False, "avg_pm2_5": 40.1, "duration_min": 11, "distance_km": 5.0, "geometry": line},
        ],
        "best_index": 0,
    }


class FakeGenerator:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.error: Exception | None = None
        self.empty = False

    def gate(self, start: Coordinate, end: Coordinate) -> asyncio.Event:
        event = asyncio.Event()
        self.gates[build_request_key(start, end)] = event
        return event

    async def discover(self, start: Coordinate, end: Coordinate, target_count: int = 5) -> list[RouteCandidate]:
        key = build_request_key(start, end)
        self.calls.append(key)
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        if self.error is not None:
            raise self.error
        if self.empty:
            return []
        return [_candidate(start, end)]


class FakeScorer:
    def __init__(self) -> None:
        self.calls = 0
        self.response: Any = None
        self.error: Exception | None = None

    async def score(self, start: Coordinate, end: Coordinate, candidates: Sequence[RouteCandidate]) -> Any:
        self.calls += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        if self.response is not None:
            return self.response
        return _scored_response(start, end)


def _planner() -> tuple[RoutePlanner, FakeGenerator, FakeScorer]:
    generator = FakeGenerator()
    scorer = FakeScorer()
    return RoutePlanner(generator, scorer, target_count=5), generator, scorer


@pytest.mark.anyio
async def test_success_path_sets_state_and_best_index() -> None:
    planner, _, scorer = _planner()
    assert planner.state is RouteState.IDLE

    state = await planner.plan_route(A, B)

    assert state is RouteState.SUCCESS
    assert scorer.calls == 1
    assert planner.result is not None
    assert len(planner.routes) == 2
    assert planner.selected_index == planner.result.best_index == 0
    assert planner.error is None
    assert not planner.in_flight_keys


@pytest.mark.anyio
async def test_same_key_twice_in_flight_coalesces() -> None:
    planner, generator, scorer = _planner()
    gate = generator.gate(A, B)

    first = asyncio.create_task(planner.plan_route(A, B))
    await asyncio.sleep(0)
    assert planner.state is RouteState.LOADING

    # float jitter still maps to the same request key
    second = await planner.plan_route(Coordinate(81.00001, 26.90001), B)
    assert second is RouteState.LOADING

    gate.set()
    assert await first is RouteState.SUCCESS
    assert scorer.calls == 1
    assert len(generator.calls) == 1


@pytest.mark.anyio
async def test_completed_key_is_a_cache_hit() -> None:
    planner, generator, scorer = _planner()
    await planner.plan_route(A, B)
    await planner.plan_route(A, B)
    await planner.refetch()
    assert scorer.calls == 1
    assert len(generator.calls) == 1
    assert planner.state is RouteState.SUCCESS


@pytest.mark.anyio
async def test_new_key_triggers_new_fetch() -> None:
    planner, _, scorer = _planner()
    await planner.plan_route(A, B)
    await planner.plan_route(A, C)
    assert scorer.calls == 2
    assert planner.current_key == build_request_key(A, C)


@pytest.mark.anyio
async def test_stale_response_is_discarded() -> None:
    planner, generator, scorer = _planner()
    gate = generator.gate(A, B)

    stale = asyncio.create_task(planner.plan_route(A, B))
    await asyncio.sleep(0)
    assert await planner.plan_route(A, C) is RouteState.SUCCESS
    shown = planner.result

    gate.set()
    await stale

    assert planner.result is shown
    assert planner.state is RouteState.SUCCESS
    assert planner.current_key == build_request_key(A, C)
    assert planner.routes[0].geometry[-1] == C
    assert scorer.calls == 2


@pytest.mark.anyio
async def test_stale_error_is_discarded() -> None:
    planner, generator, _ = _planner()
    gate = generator.gate(A, B)
    stale = asyncio.create_task(planner.plan_route(A, B))
    await asyncio.sleep(0)

    generator.gates.clear()
    await planner.plan_route(None, B)
    generator.error = ScorerError("late failure")
    gate.set()
    await stale

    assert planner.state is RouteState.IDLE
    assert planner.error is None


@pytest.mark.anyio
async def test_unset_endpoint_goes_idle_and_clears_results() -> None:
    planner, _, _ = _planner()
    await planner.plan_route(A, B)
    assert planner.routes

    assert await planner.plan_route(A, None) is RouteState.IDLE
    assert planner.result is None
    assert planner.routes == ()
    assert planner.current_key is None


@pytest.mark.anyio
async def test_empty_scorer_response_is_no_routes_error() -> None:
    planner, _, scorer = _planner()
    scorer.response = {"routes": [], "best_index": 0}
    assert await planner.plan_route(A, B) is RouteState.ERROR
    assert planner.error == NO_ROUTES_MESSAGE
    assert planner.error_code == "no_route_found"


@pytest.mark.anyio
async def test_no_candidates_skips_scorer() -> None:
    planner, generator, scorer = _planner()
    generator.empty = True
    assert await planner.plan_route(A, B) is RouteState.ERROR
    assert planner.error == NO_ROUTES_MESSAGE
    assert scorer.calls == 0


@pytest.mark.anyio
async def test_provider_failure_becomes_error_state_and_allows_retry() -> None:
    planner, generator, scorer = _planner()
    generator.error = ConfigurationError("Directions access token is not configured")

    assert await planner.plan_route(A, B) is RouteState.ERROR
    assert "access token" in (planner.error or "")
    assert planner.error_code == "configuration_missing"
    assert not planner.in_flight_keys

    generator.error = None
    assert await planner.refetch() is RouteState.SUCCESS
    assert scorer.calls == 1


@pytest.mark.anyio
async def test_scorer_failure_message_surfaces() -> None:
    planner, _, scorer = _planner()
    scorer.error = ScorerError("Route scorer HTTP 500")
    assert await planner.plan_route(A, B) is RouteState.ERROR
    assert planner.error == "Route scorer HTTP 500"
    assert planner.error_code == "scorer_unavailable"


@pytest.mark.anyio
async def test_select_route_and_exposure() -> None:
    planner, _, _ = _planner()
    assert planner.exposure_for_selected() is None
    await planner.plan_route(A, B)

    score = planner.exposure_for_selected(TransportMode.DRIVING)
    assert score is not None
    assert score.dose_reduction_pct > 0

    planner.select_route(1)
    assert planner.selected_index == 1
    with pytest.raises(IndexError):
        planner.select_route(7)

    snap = planner.snapshot()
    assert snap["state"] == "success"
    assert snap["best_index"] == 0
    assert snap["selected_index"] == 1
    assert len(snap["feature_collection"]["features"]) == 2


@pytest.mark.anyio
async def test_returning_to_a_pending_key_joins_its_fetch() -> None:
    planner, generator, scorer = _planner()
    gate = generator.gate(A, B)
    first = asyncio.create_task(planner.plan_route(A, B))
    await asyncio.sleep(0)

    generator.error = ScorerError("Route scorer HTTP 503")
    assert await planner.plan_route(A, C) is RouteState.ERROR
    generator.error = None

    # back to A->B while its first fetch is still pending
    assert await planner.plan_route(A, B) is RouteState.LOADING
    assert planner.error is None
    assert generator.calls.count(build_request_key(A, B)) == 1

    gate.set()
    assert await first is RouteState.SUCCESS
    assert generator.calls.count(build_request_key(A, B)) == 1
    assert scorer.calls == 1
    assert not planner.in_flight_keys


@pytest.mark.anyio
async def test_unexpected_exception_becomes_error_state() -> None:
    planner, generator, _ = _planner()
    generator.error = KeyError("duration")

    assert await planner.plan_route(A, B) is RouteState.ERROR
    assert planner.error == "'duration'"
    assert planner.error_code == "routing_failed"
    assert not planner.in_flight_keys


@pytest.mark.anyio
async def test_stale_unexpected_exception_is_discarded() -> None:
    planner, generator, _ = _planner()
    gate = generator.gate(A, B)
    stale = asyncio.create_task(planner.plan_route(A, B))
    await asyncio.sleep(0)

    generator.gates.clear()
    assert await planner.plan_route(A, C) is RouteState.SUCCESS
    generator.error = RuntimeError("late crash")
    gate.set()
    await stale

    assert planner.state is RouteState.SUCCESS
    assert planner.error is None


@pytest.mark.anyio
async def test_undecodable_scorer_body_ends_in_error_with_real_clients() -> None:
    def directions_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "code": "Ok",
                "routes": [
                    {
                        "geometry": {"type": "LineString", "coordinates": [A.as_pair(), B.as_pair()]},
                        "duration": 840.0,
                        "distance": 11_800.0,
                    }
                ],
            },
        )

    def scorer_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"not gzip at all", headers={"content-encoding": "gzip"})

    directions = DirectionsClient(
        base_url="https://directions.test",
        access_token="pk.test",
        transport=httpx.MockTransport(directions_handler),
    )
    scorer = RouteScorerClient(base_url="http://scorer.test", transport=httpx.MockTransport(scorer_handler))
    planner = RoutePlanner(CandidateGenerator(directions, offsets_deg=[]), scorer, target_count=5)
    try:
        state = await planner.plan_route(A, B)
    finally:
        await directions.aclose()
        await scorer.aclose()

    assert state is RouteState.ERROR
    assert planner.error_code == "scorer_unavailable"
    assert "DecodingError" in (planner.error or "")
    assert not planner.in_flight_keys
