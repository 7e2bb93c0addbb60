from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Sequence
from typing import Any, Protocol

from .errors import DirectionsError
from .geometry_signature import geometry_signature
from .logging_utils import error_fields, log_event
from .models import Coordinate, RouteCandidate, geometry_from_geojson

DEFAULT_TARGET_COUNT = 5


class DirectionsProvider(Protocol):
    async def fetch_routes(
        self,
        coordinates: Sequence[Coordinate],
        *,
        alternatives: bool = True,
    ) -> list[dict[str, Any]]: ...


def _clamp_coordinate(lon: float, lat: float) -> Coordinate:
    return Coordinate(lon=max(-180.0, min(180.0, lon)), lat=max(-90.0, min(90.0, lat)))


def perpendicular_waypoints(
    start: Coordinate,
    end: Coordinate,
    offsets_deg: Sequence[float],
) -> list[Coordinate]:
    """Midpoint of start/end pushed sideways by each signed offset, in order.

    Offsets are in coordinate degrees along the unit perpendicular of the
    start->end direction. Returns no waypoints when start and end coincide.
    """
    dx = end.lon - start.lon
    dy = end.lat - start.lat
    length = math.hypot(dx, dy)
    if length == 0.0:
        return []

    mid_lon = (start.lon + end.lon) / 2.0
    mid_lat = (start.lat + end.lat) / 2.0
    perp_lon = -dy / length
    perp_lat = dx / length

    return [
        _clamp_coordinate(mid_lon + perp_lon * offset, mid_lat + perp_lat * offset)
        for offset in offsets_deg
    ]


def _route_number(value: Any) -> float | None:
    if value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return max(0.0, number)


def _candidate_from_route(route: Any) -> RouteCandidate | None:
    """Provider route -> candidate, or None when the route is unusable.

    A missing duration or distance reads as 0; one that is present but not a
    finite number makes the whole route degenerate.
    """
    if not isinstance(route, dict):
        return None
    geometry = geometry_from_geojson(route.get("geometry"))
    if geometry is None:
        return None
    duration_s = _route_number(route.get("duration"))
    distance_m = _route_number(route.get("distance"))
    if duration_s is None or distance_m is None:
        return None
    return RouteCandidate(geometry=geometry, duration_s=duration_s, distance_m=distance_m)


def parse_routes(routes: Sequence[Any]) -> list[RouteCandidate]:
    candidates = [_candidate_from_route(route) for route in routes]
    return [c for c in candidates if c is not None]


class _CandidateSet:
    """Insertion-ordered candidates keyed by geometry signature."""

    def __init__(self) -> None:
        self._by_signature: dict[str, RouteCandidate] = {}

    def __len__(self) -> int:
        return len(self._by_signature)

    def add(self, candidates: Sequence[RouteCandidate]) -> int:
        added = 0
        for candidate in candidates:
            sig = geometry_signature(candidate.geometry)
            if sig in self._by_signature:
                continue
            self._by_signature[sig] = candidate
            added += 1
        return added

    def items(self) -> list[RouteCandidate]:
        return list(self._by_signature.values())


class CandidateGenerator:
    """Synthesises a diverse candidate set from a single directions provider.

    The provider normally returns only a few similar alternatives for a direct
    request, so extra candidates are forced by routing through waypoints offset
    to either side of the direct path.
    """

    def __init__(
        self,
        directions: DirectionsProvider,
        *,
        offsets_deg: Sequence[float],
        concurrency: int = 1,
    ) -> None:
        self.directions = directions
        self.offsets_deg = tuple(float(o) for o in offsets_deg)
        self.concurrency = max(1, int(concurrency))

    async def _waypoint_candidates(
        self,
        start: Coordinate,
        waypoint: Coordinate,
        end: Coordinate,
    ) -> list[RouteCandidate]:
        try:
            routes = await self.directions.fetch_routes([start, waypoint, end], alternatives=False)
            if not isinstance(routes, list):
                raise DirectionsError("Directions provider returned a non-list route payload")
            return parse_routes(routes)
        except DirectionsError as e:
            log_event(
                "waypoint_request_failed",
                level=logging.WARNING,
                waypoint=waypoint.as_pair(),
                **error_fields(e),
            )
            return []

    async def discover(
        self,
        start: Coordinate,
        end: Coordinate,
        target_count: int = DEFAULT_TARGET_COUNT,
    ) -> list[RouteCandidate]:
        """Return signature-unique candidates, direct-pair results first.

        A failing direct request propagates. Waypoint failures are treated as
        "no route from that offset". No new waypoint request is issued once
        ``target_count`` unique candidates exist; requests already in flight
        still contribute, so the result may be larger or smaller than the
        target.
        """
        found = _CandidateSet()
        direct_routes = await self.directions.fetch_routes([start, end], alternatives=True)
        direct_count = found.add(parse_routes(direct_routes))

        waypoints = perpendicular_waypoints(start, end, self.offsets_deg) if len(found) < target_count else []
        issued = 0
        for window_start in range(0, len(waypoints), self.concurrency):
            if len(found) >= target_count:
                break
            window = waypoints[window_start : window_start + self.concurrency]
            issued += len(window)
            results = await asyncio.gather(*[self._waypoint_candidates(start, wp, end) for wp in window])
            # merge in offset order, whatever order the responses landed in
            for batch in results:
                found.add(batch)

        candidates = found.items()
        log_event(
            "discovery_summary",
            start=start.as_pair(),
            end=end.as_pair(),
            target_count=target_count,
            direct_count=direct_count,
            waypoint_requests=issued,
            waypoints_available=len(waypoints),
            candidate_count=len(candidates),
        )
        return candidates
