from __future__ import annotations

REASON_CODES: frozenset[str] = frozenset(
    {
        "routing_failed",
        "configuration_missing",
        "directions_unavailable",
        "directions_no_route",
        "scorer_unavailable",
        "scorer_invalid_response",
        "no_route_found",
    }
)


class RoutingError(RuntimeError):
    """Base error for everything that can go wrong while planning a route."""

    reason_code: str = "routing_failed"

    def __init__(self, message: str, *, reason_code: str | None = None) -> None:
        super().__init__(message)
        if reason_code is not None:
            self.reason_code = normalize_reason_code(reason_code)


class ConfigurationError(RoutingError):
    """A required credential or setting is absent. Never retried."""

    reason_code = "configuration_missing"


class DirectionsError(RoutingError):
    reason_code = "directions_unavailable"


class DirectionsRetryableError(DirectionsError):
    """A directions error that is likely transient and safe to retry."""

    pass


class ScorerError(RoutingError):
    reason_code = "scorer_unavailable"


def normalize_reason_code(reason_code: str, *, default: str = "routing_failed") -> str:
    code = str(reason_code or "").strip()
    if code in REASON_CODES:
        return code
    return default
