from __future__ import annotations

from .models import Coordinate, RouteGeometry

# 4 decimal degrees is roughly 11 m at the equator.
SIGNATURE_PRECISION = 4


def _fmt(value: float) -> str:
    return f"{round(value, SIGNATURE_PRECISION):.{SIGNATURE_PRECISION}f}"


def _point_key(point: Coordinate) -> str:
    return f"{_fmt(point.lon)},{_fmt(point.lat)}"


def geometry_signature(geometry: RouteGeometry) -> str:
    """Cheap structural fingerprint of a polyline.

    Built from the first point, the point at ``n // 2``, the last point and the
    point count. This is a heuristic dedup key and not an equality test: two
    distinct routes sharing endpoints, midpoint and vertex count collide, and
    two near-identical routes with different vertex counts do not.
    """
    n = len(geometry)
    if n < 1:
        return ""
    first = geometry[0]
    mid = geometry[n // 2]
    last = geometry[-1]
    return f"{_point_key(first)}|{_point_key(mid)}|{_point_key(last)}|{n}"


def build_request_key(start: Coordinate, end: Coordinate) -> str:
    """Canonical identity of a (start, end) pair, tolerant of float jitter."""
    return "|".join(
        f"{value:.{SIGNATURE_PRECISION}f}" for value in (start.lon, start.lat, end.lon, end.lat)
    )
