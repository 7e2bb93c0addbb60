from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, Sequence

from greenpath.candidates import CandidateGenerator
from greenpath.directions import DirectionsClient
from greenpath.models import Coordinate, TransportMode
from greenpath.route_planner import RoutePlanner, RouteState
from greenpath.scorer import RouteScorerClient
from greenpath.settings import settings


def _coordinate(value: str) -> Coordinate:
    try:
        lon_s, lat_s = value.split(",", 1)
        return Coordinate(lon=float(lon_s), lat=float(lat_s))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected LON,LAT but got {value!r}: {e}") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Plan the least-polluting route between two points and print the result as JSON."
    )
    parser.add_argument("--start", type=_coordinate, required=True, help="LON,LAT")
    parser.add_argument("--end", type=_coordinate, required=True, help="LON,LAT")
    parser.add_argument("--target-count", type=int, default=settings.candidate_target_count)
    parser.add_argument(
        "--mode",
        choices=[m.value for m in TransportMode],
        default=TransportMode.DRIVING.value,
    )
    parser.add_argument("--vulnerable", action="store_true")
    parser.add_argument("--out-file", default=None)
    return parser


def summarize(planner: RoutePlanner, *, mode: TransportMode, is_vulnerable: bool) -> dict[str, Any]:
    summary = planner.snapshot()
    score = planner.exposure_for_selected(mode, is_vulnerable)
    summary["exposure"] = (
        None
        if score is None
        else {
            "total_dose": score.total_dose,
            "dose_reduction_pct": score.dose_reduction_pct,
            "transport_mode": score.transport_mode.value,
            "vulnerable_warning": score.vulnerable_warning,
        }
    )
    return summary


async def run_plan(args: argparse.Namespace, planner: RoutePlanner | None = None) -> dict[str, Any]:
    directions: DirectionsClient | None = None
    scorer: RouteScorerClient | None = None
    if planner is None:
        directions = DirectionsClient(
            base_url=settings.directions_base_url,
            access_token=settings.mapbox_access_token,
            profile=settings.directions_profile,
            timeout_s=settings.directions_timeout_s,
            max_attempts=settings.directions_max_attempts,
        )
        scorer = RouteScorerClient(base_url=settings.scorer_base_url, timeout_s=settings.scorer_timeout_s)
        generator = CandidateGenerator(
            directions,
            offsets_deg=settings.waypoint_offsets_deg,
            concurrency=settings.waypoint_concurrency,
        )
        planner = RoutePlanner(generator, scorer, target_count=args.target_count)

    try:
        await planner.plan_route(args.start, args.end)
    finally:
        if directions is not None:
            await directions.aclose()
        if scorer is not None:
            await scorer.aclose()

    summary = summarize(planner, mode=TransportMode(args.mode), is_vulnerable=args.vulnerable)
    if args.out_file:
        out = Path(args.out_file)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(summary, indent=2), encoding="utf-8")
    return summary


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    summary = asyncio.run(run_plan(args))
    print(json.dumps(summary, indent=2))
    return 0 if summary["state"] == RouteState.SUCCESS.value else 1


if __name__ == "__main__":
    raise SystemExit(main())
