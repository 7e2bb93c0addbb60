from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from .assembler import assemble
from .candidates import CandidateGenerator
from .directions import DirectionsClient
from .errors import ConfigurationError, RoutingError
from .exposure import exposure_for
from .geometry_signature import build_request_key, geometry_signature
from .logging_utils import error_fields, log_context, log_event
from .metrics_store import metrics_snapshot, record_request, record_route_outcome
from .models import (
    CandidateOut,
    CandidatesRequest,
    CandidatesResponse,
    ExposureRequest,
    ExposureResponse,
    GeoJSONLineString,
    RouteRequest,
    RouteResponse,
    ScoredRouteOut,
    SegmentExposureOut,
    geometry_to_geojson,
)
from .route_cache import (
    cache_successful_routes,
    clear_route_cache,
    get_cached_routes,
    invalidate_route,
    route_cache_stats,
    route_expires_in,
)
from .route_planner import NO_ROUTES_MESSAGE
from .scorer import RouteScorerClient
from .settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.directions = DirectionsClient(
        base_url=settings.directions_base_url,
        access_token=settings.mapbox_access_token,
        profile=settings.directions_profile,
        timeout_s=settings.directions_timeout_s,
        max_attempts=settings.directions_max_attempts,
    )
    app.state.scorer = RouteScorerClient(
        base_url=settings.scorer_base_url,
        timeout_s=settings.scorer_timeout_s,
    )
    yield
    await app.state.directions.aclose()
    await app.state.scorer.aclose()


app = FastAPI(title="GreenPath Router", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    t0 = time.perf_counter()
    response = await call_next(request)
    record_request(
        f"{request.method} {request.url.path}",
        duration_ms=(time.perf_counter() - t0) * 1000,
        status_code=response.status_code,
    )
    return response


def candidate_generator(request: Request) -> CandidateGenerator:
    directions: DirectionsClient | None = getattr(request.app.state, "directions", None)
    if directions is None:
        raise HTTPException(status_code=503, detail="Directions client not initialised")
    return CandidateGenerator(
        directions,
        offsets_deg=settings.waypoint_offsets_deg,
        concurrency=settings.waypoint_concurrency,
    )


def route_scorer(request: Request) -> RouteScorerClient:
    scorer: RouteScorerClient | None = getattr(request.app.state, "scorer", None)
    if scorer is None:
        raise HTTPException(status_code=503, detail="Route scorer client not initialised")
    return scorer


GeneratorDep = Annotated[CandidateGenerator, Depends(candidate_generator)]
ScorerDep = Annotated[RouteScorerClient, Depends(route_scorer)]


def _http_error(e: RoutingError) -> HTTPException:
    status = 503 if isinstance(e, ConfigurationError) else 502
    return HTTPException(status_code=status, detail={"reason_code": e.reason_code, "message": str(e)})


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": "Backend is running. Visit /docs for the API UI.", "docs": "/docs"}


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> dict[str, object]:
    return metrics_snapshot()


@app.get("/cache/stats")
async def cache_stats() -> dict[str, int]:
    return route_cache_stats()


@app.delete("/cache")
async def cache_clear(request_key: str | None = None) -> dict[str, int]:
    if request_key is not None:
        return {"cleared": int(invalidate_route(request_key))}
    return {"cleared": clear_route_cache()}


@app.post("/candidates", response_model=CandidatesResponse)
async def candidates(req: CandidatesRequest, generator: GeneratorDep) -> CandidatesResponse:
    start = req.start.to_coordinate()
    end = req.end.to_coordinate()
    target = req.target_count or settings.candidate_target_count
    try:
        found = await generator.discover(start, end, target)
    except RoutingError as e:
        raise _http_error(e) from e

    return CandidatesResponse(
        request_key=build_request_key(start, end),
        candidates=[
            CandidateOut(
                signature=geometry_signature(c.geometry),
                geometry=GeoJSONLineString.model_validate(geometry_to_geojson(c.geometry)),
                duration_s=c.duration_s,
                distance_m=c.distance_m,
            )
            for c in found
        ],
    )


@app.post("/route", response_model=RouteResponse)
async def route(req: RouteRequest, generator: GeneratorDep, scorer: ScorerDep) -> RouteResponse:
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()
    start = req.start.to_coordinate()
    end = req.end.to_coordinate()
    key = build_request_key(start, end)

    with log_context(request_id=request_id, request_key=key):
        hit = get_cached_routes(key)
        if hit is not None:
            result = hit.result
        else:
            try:
                found = await generator.discover(start, end, settings.candidate_target_count)
                result = assemble(await scorer.score(start, end, found)) if found else None
            except RoutingError as e:
                record_route_outcome("failed")
                log_event("route_request", level=logging.WARNING, **error_fields(e))
                raise _http_error(e) from e
            if result is None:
                record_route_outcome("no_route")
                log_event("route_request", error=NO_ROUTES_MESSAGE, reason_code="no_route_found")
                raise HTTPException(status_code=404, detail={"reason_code": "no_route_found", "message": NO_ROUTES_MESSAGE})
            cache_successful_routes(key, result)

        record_route_outcome("success")
        log_event(
            "route_request",
            cached=hit is not None,
            route_count=len(result.routes),
            best_index=result.best_index,
            duration_ms=round((time.perf_counter() - t0) * 1000, 2),
        )

    return RouteResponse(
        request_key=key,
        best_index=result.best_index,
        routes=[ScoredRouteOut.model_validate(r.to_payload()) for r in result.routes],
        feature_collection=result.feature_collection,
        cached=hit is not None,
        cache_age_s=hit.age_s if hit is not None else None,
        cache_expires_in_s=hit.expires_in_s if hit is not None else route_expires_in(key),
    )


@app.post("/exposure", response_model=ExposureResponse)
async def exposure(req: ExposureRequest) -> ExposureResponse:
    try:
        route_ = req.route.to_scored_route()
        reference = req.reference.to_scored_route() if req.reference is not None else None
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    score = exposure_for(
        route_,
        reference,
        req.transport_mode,
        req.is_vulnerable,
        per_segment=req.per_segment,
    )
    return ExposureResponse(
        total_dose=score.total_dose,
        dose_reduction_pct=score.dose_reduction_pct,
        transport_mode=score.transport_mode,
        vulnerable_warning=score.vulnerable_warning,
        segment_scores=[
            SegmentExposureOut(pm25=s.pm25, duration_hours=s.duration_hours, dose=s.dose)
            for s in score.segment_scores
        ],
    )
