from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx

from .errors import ScorerError
from .models import Coordinate, RouteCandidate

SCORE_ROUTES_PATH = "/score-routes"


class RouteScorerClient:
    """Client for the remote backend that samples PM2.5 along each candidate.

    Ranking belongs entirely to the backend; this client only ships candidates
    and hands back the decoded JSON.
    """

    def __init__(
        self,
        *,
        base_url: str,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s, connect=5.0),
            headers={"accept": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def score(
        self,
        start: Coordinate,
        end: Coordinate,
        candidates: Sequence[RouteCandidate],
    ) -> Any:
        payload = {
            "start": {"lat": start.lat, "lon": start.lon},
            "end": {"lat": end.lat, "lon": end.lon},
            "candidates": [c.to_payload() for c in candidates],
        }
        try:
            resp = await self._client.post(f"{self.base_url}{SCORE_ROUTES_PATH}", json=payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ScorerError(f"Route scorer HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            msg = str(e).strip() or repr(e)
            raise ScorerError(f"Route scorer request failed: {type(e).__name__}: {msg}") from e

        try:
            return resp.json()
        except ValueError as e:
            raise ScorerError(
                "Route scorer returned a non-JSON body",
                reason_code="scorer_invalid_response",
            ) from e
