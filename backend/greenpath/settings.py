from __future__ import annotations

import math
import os
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _running_in_docker() -> bool:
    """Best-effort check for container execution.

    Used only to pick sensible defaults. Environment variables always win.
    """
    return Path("/.dockerenv").exists() or os.environ.get("RUNNING_IN_DOCKER") == "1"


def _default_scorer_base_url() -> str:
    # In docker-compose, the scoring backend is reachable by service name "scorer".
    return "http://scorer:8000" if _running_in_docker() else "http://localhost:8000"


# Signed perpendicular offsets (degrees) for waypoint perturbation, alternating
# left/right of the direct path. Tuned for a medium-sized city.
DEFAULT_WAYPOINT_OFFSETS_DEG: tuple[float, ...] = (
    0.01,
    -0.01,
    0.015,
    -0.015,
    0.02,
    -0.02,
    0.025,
    -0.025,
)


class Settings(BaseSettings):
    """Validated settings (env-driven), keeping config out of code for easy extension."""

    model_config = SettingsConfigDict(
        # Support both "repo root/.env" (docker compose) and "backend/.env" (local dev)
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Directions provider (Mapbox Directions API layout)
    mapbox_access_token: str = Field(default="", alias="MAPBOX_ACCESS_TOKEN")
    directions_base_url: str = Field(default="https://api.mapbox.com", alias="DIRECTIONS_BASE_URL")
    directions_profile: str = Field(default="driving", alias="DIRECTIONS_PROFILE")
    directions_timeout_s: float = Field(default=30.0, ge=1.0, le=120.0, alias="DIRECTIONS_TIMEOUT_S")
    directions_max_attempts: int = Field(default=1, ge=1, le=8, alias="DIRECTIONS_MAX_ATTEMPTS")

    # External route scorer (samples PM2.5 along each candidate)
    scorer_base_url: str = Field(default_factory=_default_scorer_base_url, alias="SCORER_BASE_URL")
    scorer_timeout_s: float = Field(default=30.0, ge=1.0, le=120.0, alias="SCORER_TIMEOUT_S")

    # Candidate discovery
    candidate_target_count: int = Field(default=5, ge=1, le=20, alias="CANDIDATE_TARGET_COUNT")
    waypoint_offsets_deg: list[float] = Field(
        default_factory=lambda: list(DEFAULT_WAYPOINT_OFFSETS_DEG),
        alias="WAYPOINT_OFFSETS_DEG",
    )
    waypoint_concurrency: int = Field(default=1, ge=1, le=8, alias="WAYPOINT_CONCURRENCY")

    route_cache_ttl_s: int = Field(default=600, alias="ROUTE_CACHE_TTL_S")
    route_cache_max_entries: int = Field(default=256, alias="ROUTE_CACHE_MAX_ENTRIES")

    out_dir: str = Field(default="/app/out", alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("waypoint_offsets_deg")
    @classmethod
    def _finite_offsets(cls, v: list[float]) -> list[float]:
        if not v:
            raise ValueError("WAYPOINT_OFFSETS_DEG must contain at least one offset")
        for offset in v:
            if not math.isfinite(offset):
                raise ValueError("waypoint offsets must be finite")
        return v


settings = Settings()
