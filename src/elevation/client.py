from __future__ import annotations

import logging
import math
from typing import Any

import httpx

from tile_fetch.keys import redact_url, with_params

logger = logging.getLogger(__name__)

FALLBACK_ELEVATION_M = 0.0


class ElevationLookupError(RuntimeError):
    pass


def parse_elevation_response(payload: Any) -> float:
    """Extract the first sample from an elevation API JSON body."""

    if not isinstance(payload, dict):
        raise ElevationLookupError("elevation response must be an object")
    status = payload.get("status", "OK")
    if status != "OK":
        message = payload.get("error_message") or status
        raise ElevationLookupError(f"elevation service returned {message}")
    results = payload.get("results")
    if not isinstance(results, list) or not results:
        raise ElevationLookupError("elevation response has no results")
    first = results[0]
    value = first.get("elevation") if isinstance(first, dict) else None
    if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
        raise ElevationLookupError(f"invalid elevation value: {value!r}")
    return float(value)


class ElevationClient:
    """Ground height lookup used to center the region sphere.

    ``lookup`` never raises: any failure is logged and the sphere falls back to
    the ellipsoid surface.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        url: str,
        api_key: str = "",
        timeout_s: float = 10.0,
    ) -> None:
        self._client = client
        self._url = url
        self._api_key = api_key
        self._timeout = httpx.Timeout(timeout_s)

    def _request_url(self, lat: float, lng: float) -> str:
        return with_params(
            self._url,
            {"locations": f"{lat:.8f},{lng:.8f}", "key": self._api_key or None},
        )

    async def lookup(self, lat: float, lng: float) -> float:
        url = self._request_url(lat, lng)
        safe_url = redact_url(url)
        try:
            resp = await self._client.get(url, timeout=self._timeout)
            resp.raise_for_status()
            elevation = parse_elevation_response(resp.json())
        except (httpx.HTTPError, ValueError, ElevationLookupError) as exc:
            logger.warning(
                "elevation_lookup_failed",
                extra={"url": safe_url, "error": str(exc), "fallback_m": FALLBACK_ELEVATION_M},
            )
            return FALLBACK_ELEVATION_M

        logger.info("elevation_resolved", extra={"lat": lat, "lng": lng, "elevation_m": elevation})
        return elevation
