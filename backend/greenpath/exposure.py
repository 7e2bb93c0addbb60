"""Cumulative Exposure Model.

Inhaled dose follows the EPA exposure equation, ``dose = C * BR * T``:
concentration (µg/m³) times breathing rate (m³/h) times time (h).
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from .models import ExposureScore, ScoredRoute, SegmentExposure, TransportMode

# m³/hour, EPA reference values
BREATHING_RATES: dict[TransportMode, float] = {
    TransportMode.DRIVING: 0.6,
    TransportMode.CYCLING: 2.5,
    TransportMode.WALKING: 1.5,
}

VULNERABLE_PM25_THRESHOLD = 100.0

# Used when the default route is unknown or has no usable PM2.5 or duration: assume it is ~20% worse.
UNKNOWN_REFERENCE_DOSE_FACTOR = 1.2


def breathing_rate(mode: TransportMode) -> float:
    return BREATHING_RATES[TransportMode(mode)]


def segment_dose(pm25: float, duration_hours: float, mode: TransportMode) -> float:
    return round(pm25 * breathing_rate(mode) * duration_hours, 2)


def route_dose(avg_pm25: float, duration_minutes: float, mode: TransportMode = TransportMode.DRIVING) -> float:
    """Single-segment approximation for when only the average PM2.5 is known."""
    return segment_dose(avg_pm25, duration_minutes / 60.0, mode)


def dose_reduction_pct(candidate_dose: float, reference_dose: float) -> float:
    """Percent of dose saved versus the reference. Negative means dirtier."""
    if reference_dose == 0:
        return 0.0
    return round(((reference_dose - candidate_dose) / reference_dose) * 100.0, 1)


def is_vulnerable_warning(avg_pm25: float, is_vulnerable: bool) -> bool:
    return bool(is_vulnerable) and avg_pm25 > VULNERABLE_PM25_THRESHOLD


def segment_exposures(route: ScoredRoute, mode: TransportMode = TransportMode.DRIVING) -> list[SegmentExposure]:
    """Per-sample doses, with the route duration split evenly across its AQI samples."""
    samples = route.aqi_samples
    if not samples:
        return []
    hours_each = (route.duration_min / 60.0) / len(samples)
    return [
        SegmentExposure(
            pm25=s.pm2_5,
            duration_hours=hours_each,
            dose=segment_dose(s.pm2_5, hours_each, mode),
        )
        for s in samples
    ]


def total_dose(segments: Iterable[SegmentExposure]) -> float:
    return round(sum(seg.dose for seg in segments), 2)


def fastest_route(routes: Sequence[ScoredRoute]) -> ScoredRoute | None:
    """Pick the comparison baseline: shortest duration, first one on ties."""
    best: ScoredRoute | None = None
    for route in routes:
        if best is None or route.duration_min < best.duration_min:
            best = route
    return best


def exposure_for(
    route: ScoredRoute,
    reference: ScoredRoute | None,
    mode: TransportMode = TransportMode.DRIVING,
    is_vulnerable: bool = False,
    *,
    per_segment: bool = False,
) -> ExposureScore:
    """Score ``route`` for ``mode``, with dose reduction measured against ``reference``.

    The reference is normally the fastest route. When there is none, or its
    average PM2.5 or duration is not positive, its dose is estimated as
    ``UNKNOWN_REFERENCE_DOSE_FACTOR`` times this route's dose.
    """
    mode = TransportMode(mode)
    dose = route_dose(route.avg_pm25, route.duration_min, mode)
    if reference is None or reference.avg_pm25 <= 0 or reference.duration_min <= 0:
        reference_dose = dose * UNKNOWN_REFERENCE_DOSE_FACTOR
    else:
        reference_dose = route_dose(reference.avg_pm25, reference.duration_min, mode)

    return ExposureScore(
        total_dose=dose,
        dose_reduction_pct=dose_reduction_pct(dose, reference_dose),
        transport_mode=mode,
        vulnerable_warning=is_vulnerable_warning(route.avg_pm25, is_vulnerable),
        segment_scores=tuple(segment_exposures(route, mode)) if per_segment else (),
    )
