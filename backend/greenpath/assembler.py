from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from .logging_utils import log_event
from .models import (
    AqiSample,
    AssembledRoutes,
    ScoredRoute,
    ScorerResponse,
    ScorerRoute,
    geometry_from_geojson,
    geometry_to_geojson,
)


def _scored_route(raw: ScorerRoute) -> ScoredRoute | None:
    geometry = geometry_from_geojson(raw.geometry)
    if geometry is None:
        return None
    return ScoredRoute(
        index=raw.index,
        is_best=raw.is_best,
        avg_pm25=raw.avg_pm2_5,
        duration_min=raw.duration_min,
        distance_km=raw.distance_km,
        geometry=geometry,
        aqi_samples=tuple(AqiSample(lat=s.lat, lon=s.lon, pm2_5=s.pm2_5) for s in raw.aqi_samples or []),
        external_nav_url=raw.google_maps_url or "",
    )


def build_feature_collection(routes: tuple[ScoredRoute, ...]) -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {
                    "isPrimary": r.is_best,
                    "routeIndex": r.index,
                    "pollution": r.avg_pm25,
                    "duration": r.duration_min,
                    "distance": r.distance_km,
                },
                "geometry": geometry_to_geojson(r.geometry),
            }
            for r in routes
        ],
    }


def assemble(response: Any) -> AssembledRoutes | None:
    """Map a scorer response into display-ready routes.

    Returns None when the response holds no routes or cannot be read. Order,
    ``index`` and ``is_best`` are taken from the scorer as-is.
    """
    if not isinstance(response, dict):
        return None
    try:
        parsed = ScorerResponse.model_validate(response)
    except ValidationError as e:
        log_event("scorer_response_invalid", error_count=e.error_count())
        return None
    if not parsed.routes:
        return None

    routes: list[ScoredRoute] = []
    for raw in parsed.routes:
        route = _scored_route(raw)
        if route is None:
            log_event("scorer_response_invalid", route_index=raw.index, detail="geometry is not a LineString")
            return None
        routes.append(route)

    scored = tuple(routes)
    if parsed.best_index is not None:
        best_index = parsed.best_index
    else:
        best_index = next((r.index for r in scored if r.is_best), 0)

    return AssembledRoutes(
        feature_collection=build_feature_collection(scored),
        routes=scored,
        best_index=best_index,
    )

