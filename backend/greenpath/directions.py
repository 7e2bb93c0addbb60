from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any, Final

import httpx

from .errors import ConfigurationError, DirectionsError, DirectionsRetryableError
from .logging_utils import log_event
from .models import Coordinate

_RETRYABLE_STATUS: Final[set[int]] = {408, 425, 429, 500, 502, 503, 504}


def _format_directions_error(resp: httpx.Response) -> str:
    """Best-effort decode of provider JSON error payloads."""
    try:
        data = resp.json()
        if isinstance(data, dict):
            code = data.get("code")
            message = data.get("message")
            if code and message:
                return f"Directions {resp.status_code} {code}: {message}"
            if code:
                return f"Directions {resp.status_code} {code}"
            if message:
                return f"Directions {resp.status_code}: {message}"
    except ValueError:
        # fall through to text
        pass

    body = (resp.text or "").strip().replace("\n", " ")
    if len(body) > 240:
        body = body[:240] + "..."
    if body:
        return f"Directions {resp.status_code}: {body}"
    return f"Directions HTTP {resp.status_code}"


class DirectionsClient:
    """Async client for a Mapbox-style directions API.

    Coordinates go out as ``lon,lat;lon,lat[;lon,lat]`` and geometries come
    back as GeoJSON LineStrings.
    """

    def __init__(
        self,
        *,
        base_url: str,
        access_token: str,
        profile: str = "driving",
        timeout_s: float = 30.0,
        max_attempts: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.profile = profile
        self.max_attempts = max(1, int(max_attempts))

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s, connect=5.0),
            headers={"accept": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_routes(
        self,
        coordinates: Sequence[Coordinate],
        *,
        alternatives: bool = True,
    ) -> list[dict[str, Any]]:
        """Fetch routes through ``coordinates`` in order.

        Returns the provider's raw route objects (``geometry``, ``duration`` in
        seconds, ``distance`` in metres). Raises ConfigurationError when no
        access token is configured, DirectionsError for everything else.
        """
        if not self.access_token:
            raise ConfigurationError("Directions access token is not configured (MAPBOX_ACCESS_TOKEN)")
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required to compute a route.")

        coords = ";".join(f"{c.lon},{c.lat}" for c in coordinates)
        url = f"{self.base_url}/directions/v5/mapbox/{self.profile}/{coords}"
        params = {
            "alternatives": "true" if alternatives else "false",
            "geometries": "geojson",
            "overview": "full",
            "steps": "false",
            "access_token": self.access_token,
        }

        last_err: Exception | None = None
        for attempt in range(self.max_attempts):
            try:
                resp = await self._client.get(url, params=params)

                # Fast-fail on most 4xx: these are usually request errors
                # (bad token, bad coordinates, etc.)
                if 400 <= resp.status_code < 500 and resp.status_code not in _RETRYABLE_STATUS:
                    raise DirectionsError(_format_directions_error(resp))

                if resp.status_code in _RETRYABLE_STATUS:
                    raise DirectionsRetryableError(_format_directions_error(resp))

                resp.raise_for_status()
                try:
                    data = resp.json()
                except ValueError as e:
                    raise DirectionsError("Directions response was not valid JSON") from e

                if not isinstance(data, dict) or data.get("code") != "Ok":
                    code = data.get("code") if isinstance(data, dict) else None
                    message = data.get("message") if isinstance(data, dict) else None
                    raise DirectionsError(
                        f"Directions error code={code} message={message}",
                        reason_code="directions_no_route",
                    )

                routes = data.get("routes", [])
                if not isinstance(routes, list) or not routes:
                    raise DirectionsError("Directions provider returned no routes", reason_code="directions_no_route")

                return routes

            except DirectionsRetryableError as e:
                last_err = e
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_err = e
            except httpx.HTTPStatusError as e:
                raise DirectionsError(str(e)) from e
            except httpx.HTTPError as e:
                # decoding failures, redirect loops: the body is unusable, retrying will not help
                msg = str(e).strip() or repr(e)
                raise DirectionsError(f"Directions request failed: {type(e).__name__}: {msg}") from e

            if attempt < self.max_attempts - 1:
                log_event(
                    "directions_retry",
                    attempt=attempt + 1,
                    max_attempts=self.max_attempts,
                    error=str(last_err),
                )
                await asyncio.sleep(min(0.25 * (2**attempt), 2.0))

        # httpx exceptions can stringify to "" (e.g. some timeouts), so include the type.
        if last_err is None:
            detail = "unknown error"
        else:
            msg = str(last_err).strip()
            detail = f"{type(last_err).__name__}: {msg}" if msg else f"{type(last_err).__name__}: {last_err!r}"

        raise DirectionsError(
            f"Directions request failed after {self.max_attempts} attempt(s) (base={self.base_url}): {detail}"
        )
