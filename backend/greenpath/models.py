from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


@dataclass(frozen=True)
class Coordinate:
    """A (longitude, latitude) pair in WGS84 degrees."""

    lon: float
    lat: float

    def __post_init__(self) -> None:
        if not (math.isfinite(self.lon) and math.isfinite(self.lat)):
            raise ValueError("coordinate components must be finite")
        if not -180.0 <= self.lon <= 180.0:
            raise ValueError(f"longitude out of range: {self.lon}")
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"latitude out of range: {self.lat}")

    @classmethod
    def from_pair(cls, pair: Sequence[float]) -> Coordinate:
        if len(pair) < 2:
            raise ValueError("coordinate pair needs two values")
        return cls(lon=float(pair[0]), lat=float(pair[1]))

    def as_pair(self) -> list[float]:
        return [self.lon, self.lat]


RouteGeometry = tuple[Coordinate, ...]


def geometry_from_geojson(obj: Any) -> RouteGeometry | None:
    """Parse a GeoJSON LineString into a RouteGeometry.

    Returns None for anything that is not a usable line: points for
    zero-length routes, missing coordinates, fewer than two points, or any
    vertex that is non-numeric, non-finite or out of range. A bad vertex
    rejects the whole line rather than being skipped, so the point count the
    signature sees is always the provider's.
    """
    if not isinstance(obj, dict) or obj.get("type") != "LineString":
        return None
    coords = obj.get("coordinates")
    if not isinstance(coords, list) or len(coords) < 2:
        return None

    out: list[Coordinate] = []
    for pt in coords:
        if not (
            isinstance(pt, (list, tuple))
            and len(pt) >= 2
            and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in pt[:2])
        ):
            return None
        try:
            out.append(Coordinate(lon=float(pt[0]), lat=float(pt[1])))
        except ValueError:
            return None
    return tuple(out)


def geometry_to_geojson(geometry: RouteGeometry) -> dict[str, Any]:
    return {"type": "LineString", "coordinates": [c.as_pair() for c in geometry]}


@dataclass(frozen=True)
class RouteCandidate:
    geometry: RouteGeometry
    duration_s: float
    distance_m: float

    def to_payload(self) -> dict[str, Any]:
        return {
            "geometry": geometry_to_geojson(self.geometry),
            "duration_s": self.duration_s,
            "distance_m": self.distance_m,
        }


@dataclass(frozen=True)
class AqiSample:
    lat: float
    lon: float
    pm2_5: float


@dataclass(frozen=True)
class ScoredRoute:
    index: int
    is_best: bool
    avg_pm25: float
    duration_min: float
    distance_km: float
    geometry: RouteGeometry
    aqi_samples: tuple[AqiSample, ...] = ()
    external_nav_url: str = ""

    def to_payload(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "is_best": self.is_best,
            "avg_pm2_5": self.avg_pm25,
            "duration_min": self.duration_min,
            "distance_km": self.distance_km,
            "geometry": geometry_to_geojson(self.geometry),
            "aqi_samples": [
                {"lat": s.lat, "lon": s.lon, "pm2_5": s.pm2_5} for s in self.aqi_samples
            ],
            "google_maps_url": self.external_nav_url,
        }


@dataclass(frozen=True)
class AssembledRoutes:
    feature_collection: dict[str, Any]
    routes: tuple[ScoredRoute, ...]
    best_index: int


class TransportMode(str, Enum):
    DRIVING = "DRIVING"
    CYCLING = "CYCLING"
    WALKING = "WALKING"


@dataclass(frozen=True)
class SegmentExposure:
    pm25: float
    duration_hours: float
    dose: float


@dataclass(frozen=True)
class ExposureScore:
    total_dose: float
    dose_reduction_pct: float
    transport_mode: TransportMode
    vulnerable_warning: bool = False
    segment_scores: tuple[SegmentExposure, ...] = field(default_factory=tuple)


# --- Scorer wire format -----------------------------------------------------


class ScorerAqiSample(BaseModel):
    lat: float
    lon: float
    pm2_5: float = Field(..., ge=0)


class ScorerRoute(BaseModel):
    index: int
    is_best: bool
    avg_pm2_5: float = Field(..., ge=0)
    duration_min: float = Field(..., ge=0)
    distance_km: float = Field(..., ge=0)
    geometry: dict[str, Any]
    aqi_samples: list[ScorerAqiSample] | None = None
    google_maps_url: str | None = None


class ScorerResponse(BaseModel):
    routes: list[ScorerRoute] | None = None
    best_index: int | None = None


# --- HTTP API ---------------------------------------------------------------


class LatLng(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)

    @field_validator("lat", "lon")
    @classmethod
    def finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("coordinate must be finite")
        return v

    def to_coordinate(self) -> Coordinate:
        return Coordinate(lon=self.lon, lat=self.lat)


class GeoJSONLineString(BaseModel):
    type: Literal["LineString"]
    coordinates: list[tuple[float, float]]  # [lon, lat]


class CandidatesRequest(BaseModel):
    start: LatLng
    end: LatLng
    target_count: int | None = Field(default=None, ge=1, le=20)


class CandidateOut(BaseModel):
    signature: str
    geometry: GeoJSONLineString
    duration_s: float
    distance_m: float


class CandidatesResponse(BaseModel):
    request_key: str
    candidates: list[CandidateOut]


class RouteRequest(BaseModel):
    start: LatLng
    end: LatLng


class AqiSampleOut(BaseModel):
    lat: float
    lon: float
    pm2_5: float


class ScoredRouteOut(BaseModel):
    index: int
    is_best: bool
    avg_pm2_5: float
    duration_min: float
    distance_km: float
    geometry: GeoJSONLineString
    aqi_samples: list[AqiSampleOut] = Field(default_factory=list)
    google_maps_url: str = ""

    def to_scored_route(self) -> ScoredRoute:
        return ScoredRoute(
            index=self.index,
            is_best=self.is_best,
            avg_pm25=self.avg_pm2_5,
            duration_min=self.duration_min,
            distance_km=self.distance_km,
            geometry=tuple(Coordinate(lon=lon, lat=lat) for lon, lat in self.geometry.coordinates),
            aqi_samples=tuple(
                AqiSample(lat=s.lat, lon=s.lon, pm2_5=s.pm2_5) for s in self.aqi_samples
            ),
            external_nav_url=self.google_maps_url,
        )


class RouteResponse(BaseModel):
    request_key: str
    best_index: int
    routes: list[ScoredRouteOut]
    feature_collection: dict[str, Any]
    cached: bool = False
    cache_age_s: float | None = None
    cache_expires_in_s: float | None = None


class ExposureRequest(BaseModel):
    route: ScoredRouteOut
    reference: ScoredRouteOut | None = None
    transport_mode: TransportMode = TransportMode.DRIVING
    is_vulnerable: bool = False
    per_segment: bool = False


class SegmentExposureOut(BaseModel):
    pm25: float
    duration_hours: float
    dose: float


class ExposureResponse(BaseModel):
    total_dose: float
    dose_reduction_pct: float
    transport_mode: TransportMode
    vulnerable_warning: bool
    segment_scores: list[SegmentExposureOut] = Field(default_factory=list)
