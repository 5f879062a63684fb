"""HTTP client for interacting with OSRM services."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

import httpx

from ...config import Settings, settings as default_settings
from .errors import ProviderUnavailable
from .models import LegMeasurement, RouteGeometry
from .provider import Coordinate, decode_polyline

logger = logging.getLogger(__name__)


class OSRMClient:
    """Route provider backed by the OSRM ``route`` endpoint.

    OSRM has no traffic model, so ``duration_in_traffic_s`` always equals the
    free-flow duration and ``departure_time`` is ignored.
    """

    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        config: Settings | None = None,
    ) -> None:
        config = config or default_settings
        self.base_url = (base_url or config.osrm_base_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.profile = profile or config.osrm_profile
        self.timeout = timeout if timeout is not None else config.provider_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else config.provider_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else config.provider_backoff_seconds
        self._transport = transport

    def _get_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            transport=self._transport,
        )

    async def _route_request(self, coordinates: list[Coordinate], params: dict) -> dict:
        coordinate_str = ";".join(f"{lon},{lat}" for lat, lon in coordinates)
        url = f"{self.base_url}/route/v1/{self.profile}/{coordinate_str}"

        async with self._get_client() as client:
            attempt = 0
            while True:
                try:
                    response = await client.get(url, params=params)
                    response.raise_for_status()
                    data = response.json()
                    if data.get("code") != "Ok" or not data.get("routes"):
                        error_msg = data.get("message", data.get("code", "Unknown OSRM route error"))
                        raise ProviderUnavailable(f"OSRM route request failed: {error_msg}")
                    return data
                except ProviderUnavailable:
                    raise
                except (httpx.TimeoutException, httpx.NetworkError) as exc:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning(f"OSRM request failed after {self.max_retries} retries: {exc}")
                        raise ProviderUnavailable(
                            f"Failed to reach OSRM service at {self.base_url}: {exc}"
                        ) from exc
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM network error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                    await asyncio.sleep(wait_time)
                except (httpx.HTTPError, ValueError) as exc:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise ProviderUnavailable(f"OSRM route request failed: {exc}") from exc
                    await asyncio.sleep(self.backoff_seconds * attempt)

    async def distance_and_duration(
        self, origin: Coordinate, destination: Coordinate, departure_time: Optional[datetime] = None
    ) -> LegMeasurement:
        data = await self._route_request([origin, destination], {"overview": "false"})
        route = data["routes"][0]
        duration = float(route["duration"])
        return LegMeasurement(
            distance_m=float(route["distance"]),
            duration_s=duration,
            duration_in_traffic_s=duration,
        )

    async def route(
        self, origin: Coordinate, destination: Coordinate, departure_time: Optional[datetime] = None
    ) -> RouteGeometry:
        params = {
            "overview": "full",
            "geometries": "polyline",
            "steps": "false",
        }
        data = await self._route_request([origin, destination], params)
        route = data["routes"][0]
        duration = float(route["duration"])
        try:
            points = decode_polyline(route.get("geometry") or "")
        except ValueError as exc:
            raise ProviderUnavailable(f"Undecodable OSRM route geometry: {exc}") from exc
        return RouteGeometry(
            points=points,
            distance_m=float(route["distance"]),
            duration_s=duration,
            duration_in_traffic_s=duration,
        )

    async def check_health(self) -> bool:
        """Probe OSRM with a minimal two-point route (Paris area)."""
        try:
            await self.distance_and_duration((48.8566, 2.3522), (48.8606, 2.3376))
        except ProviderUnavailable:
            return False
        return True
