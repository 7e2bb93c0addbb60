from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from enum import Enum
from typing import Any, Protocol

from .assembler import assemble
from .candidates import DEFAULT_TARGET_COUNT
from .errors import RoutingError
from .exposure import exposure_for, fastest_route
from .geometry_signature import build_request_key
from .logging_utils import error_fields, log_context, log_event
from .models import AssembledRoutes, Coordinate, ExposureScore, RouteCandidate, ScoredRoute, TransportMode

NO_ROUTES_MESSAGE = "No routes found between these locations."


class RouteState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class CandidateSource(Protocol):
    async def discover(
        self,
        start: Coordinate,
        end: Coordinate,
        target_count: int = DEFAULT_TARGET_COUNT,
    ) -> list[RouteCandidate]: ...


class RouteScorer(Protocol):
    async def score(
        self,
        start: Coordinate,
        end: Coordinate,
        candidates: Sequence[RouteCandidate],
    ) -> Any: ...


class RoutePlanner:
    """Coalescing controller for one planning session.

    Gives at-most-one concurrent fetch per logical request without any lock:
    repeated triggers for the key already in flight are dropped, a trigger for
    the last successful key is a cache hit, and a completion whose key is no
    longer current is thrown away instead of being applied. In-flight requests
    are never cancelled.

    Every key with a pending fetch is tracked, not only the latest one, so
    returning to a key whose first attempt is still running joins that attempt.
    Failures never propagate to the caller; they end in ``ERROR``.

    All bookkeeping lives on the instance and is only touched from
    ``plan_route``.
    """

    def __init__(
        self,
        generator: CandidateSource,
        scorer: RouteScorer,
        *,
        target_count: int = DEFAULT_TARGET_COUNT,
    ) -> None:
        self._generator = generator
        self._scorer = scorer
        self._target_count = target_count

        self.state = RouteState.IDLE
        self.error: str | None = None
        self.error_code: str | None = None
        self.result: AssembledRoutes | None = None
        self.selected_index = 0

        self._start: Coordinate | None = None
        self._destination: Coordinate | None = None
        self._current_key: str | None = None
        self._in_flight_keys: set[str] = set()
        self._last_success_key: str | None = None

    @property
    def current_key(self) -> str | None:
        return self._current_key

    @property
    def in_flight_keys(self) -> frozenset[str]:
        return frozenset(self._in_flight_keys)

    @property
    def routes(self) -> tuple[ScoredRoute, ...]:
        return self.result.routes if self.result is not None else ()

    def _go_idle(self) -> RouteState:
        self._current_key = None
        self.state = RouteState.IDLE
        self.result = None
        self.error = None
        self.error_code = None
        self.selected_index = 0
        return self.state

    async def _fetch(self, start: Coordinate, destination: Coordinate) -> AssembledRoutes | None:
        candidates = await self._generator.discover(start, destination, self._target_count)
        if not candidates:
            return None
        response = await self._scorer.score(start, destination, candidates)
        return assemble(response)

    async def plan_route(self, start: Coordinate | None, destination: Coordinate | None) -> RouteState:
        self._start = start
        self._destination = destination
        if start is None or destination is None:
            return self._go_idle()

        key = build_request_key(start, destination)
        self._current_key = key

        with log_context(request_key=key):
            if key in self._in_flight_keys:
                # the pending attempt for this key will apply its result when it lands
                self.state = RouteState.LOADING
                self.error = None
                self.error_code = None
                log_event("route_plan_coalesced")
                return self.state
            if self._last_success_key == key and self.result is not None:
                # a different key may have errored since; the held result is still valid
                self.state = RouteState.SUCCESS
                self.error = None
                self.error_code = None
                log_event("route_plan_cache_hit")
                return self.state

            self._in_flight_keys.add(key)
            self.state = RouteState.LOADING
            self.error = None
            self.error_code = None
            log_event("route_plan_started")
            t0 = time.perf_counter()

            try:
                result = await self._fetch(start, destination)
            except RoutingError as e:
                self._fail(key, str(e) or type(e).__name__, e.reason_code, e)
            except Exception as e:
                # anything else a provider or parser throws still ends this attempt in ERROR
                self._fail(key, str(e) or type(e).__name__, "routing_failed", e)
            else:
                if self._current_key != key:
                    self._discard_stale(key)
                elif result is None:
                    self.state = RouteState.ERROR
                    self.error = NO_ROUTES_MESSAGE
                    self.error_code = "no_route_found"
                else:
                    self.result = result
                    self.selected_index = result.best_index
                    self._last_success_key = key
                    self.state = RouteState.SUCCESS
            finally:
                self._in_flight_keys.discard(key)

            log_event(
                "route_plan_finished",
                state=self.state.value,
                route_count=len(self.routes),
                error=self.error,
                duration_ms=round((time.perf_counter() - t0) * 1000, 2),
            )
            return self.state

    def _fail(self, key: str, message: str, reason_code: str, exc: BaseException) -> None:
        if self._current_key != key:
            self._discard_stale(key)
            return
        self.state = RouteState.ERROR
        self.error = message
        self.error_code = reason_code
        log_event("route_plan_failed", level=logging.WARNING, **error_fields(exc))

    def _discard_stale(self, key: str) -> None:
        log_event("route_plan_stale_discarded", request_key=key, current_key=self._current_key)

    async def refetch(self) -> RouteState:
        """Re-trigger the last endpoints; coalescing rules still apply."""
        return await self.plan_route(self._start, self._destination)

    def selected_route(self) -> ScoredRoute | None:
        return next((r for r in self.routes if r.index == self.selected_index), None)

    def select_route(self, index: int) -> None:
        if not any(r.index == index for r in self.routes):
            raise IndexError(f"no route with index {index}")
        self.selected_index = index

    def exposure_for_selected(
        self,
        mode: TransportMode = TransportMode.DRIVING,
        is_vulnerable: bool = False,
    ) -> ExposureScore | None:
        """Exposure of the selected route against the fastest route as reference."""
        route = self.selected_route()
        if route is None:
            return None
        return exposure_for(route, fastest_route(self.routes), mode, is_vulnerable)

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "request_key": self._current_key,
            "error": self.error,
            "error_code": self.error_code,
            "best_index": self.result.best_index if self.result is not None else None,
            "selected_index": self.selected_index,
            "routes": [r.to_payload() for r in self.routes],
            "feature_collection": self.result.feature_collection if self.result is not None else None,
        }
