"""HTTP client for the Google Directions API (traffic-aware durations)."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from ...config import Settings, settings as default_settings
from .errors import ProviderUnavailable
from .models import LegMeasurement, RouteGeometry
from .provider import Coordinate, decode_polyline

logger = logging.getLogger(__name__)

# Statuses worth retrying; anything else is a definitive answer from the API.
_RETRYABLE_STATUSES = {"OVER_QUERY_LIMIT", "UNKNOWN_ERROR"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GoogleDirectionsClient:
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = _utcnow,
        config: Settings | None = None,
    ) -> None:
        config = config or default_settings
        self.api_key = api_key or config.google_maps_api_key
        if not self.api_key:
            raise ValueError("Google Maps API key is not configured.")
        self.base_url = base_url or config.google_directions_url
        self.timeout = timeout if timeout is not None else config.provider_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else config.provider_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else config.provider_backoff_seconds
        self._transport = transport
        self._clock = clock

    def _build_params(
        self, origin: Coordinate, destination: Coordinate, departure_time: Optional[datetime]
    ) -> dict:
        params = {
            "origin": f"{origin[0]},{origin[1]}",
            "destination": f"{destination[0]},{destination[1]}",
            "mode": "driving",
            "units": "metric",
            "key": self.api_key,
        }
        if departure_time is not None:
            # The API rejects departures in the past.
            now = self._clock()
            if departure_time.tzinfo is None:
                departure_time = departure_time.replace(tzinfo=timezone.utc)
            effective = max(departure_time, now)
            params["departure_time"] = str(int(effective.timestamp()))
            params["traffic_model"] = "best_guess"
        return params

    async def _directions(
        self, origin: Coordinate, destination: Coordinate, departure_time: Optional[datetime]
    ) -> dict:
        params = self._build_params(origin, destination, departure_time)
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=10.0), transport=self._transport
        ) as client:
            attempt = 0
            while True:
                try:
                    response = await client.get(self.base_url, params=params)
                    response.raise_for_status()
                    data = response.json()
                    status = data.get("status")
                    if status == "OK" and data.get("routes"):
                        return data
                    if status in _RETRYABLE_STATUSES:
                        raise httpx.HTTPError(f"Directions status {status}")
                    raise ProviderUnavailable(
                        f"Google Directions request failed: {status} {data.get('error_message', '')}".strip()
                    )
                except ProviderUnavailable:
                    raise
                except (httpx.HTTPError, ValueError) as exc:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning(f"Google Directions failed after {self.max_retries} retries: {exc}")
                        raise ProviderUnavailable(f"Google Directions unavailable: {exc}") from exc
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"Directions error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                    await asyncio.sleep(wait_time)

    @staticmethod
    def _leg_values(data: dict) -> tuple[float, float, float]:
        try:
            leg = data["routes"][0]["legs"][0]
            distance = float(leg["distance"]["value"])
            duration = float(leg["duration"]["value"])
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ProviderUnavailable(f"Malformed Directions response: {exc}") from exc
        in_traffic = leg.get("duration_in_traffic", {}).get("value")
        return distance, duration, float(in_traffic) if in_traffic is not None else duration

    async def distance_and_duration(
        self, origin: Coordinate, destination: Coordinate, departure_time: Optional[datetime] = None
    ) -> LegMeasurement:
        data = await self._directions(origin, destination, departure_time)
        distance, duration, in_traffic = self._leg_values(data)
        return LegMeasurement(distance_m=distance, duration_s=duration, duration_in_traffic_s=in_traffic)

    async def route(
        self, origin: Coordinate, destination: Coordinate, departure_time: Optional[datetime] = None
    ) -> RouteGeometry:
        data = await self._directions(origin, destination, departure_time)
        distance, duration, in_traffic = self._leg_values(data)
        encoded = data["routes"][0].get("overview_polyline", {}).get("points", "")
        try:
            points = decode_polyline(encoded) if encoded else []
        except ValueError as exc:
            raise ProviderUnavailable(f"Undecodable route geometry: {exc}") from exc
        if len(points) < 2:
            raise ProviderUnavailable("Google Directions returned no usable route geometry.")
        return RouteGeometry(
            points=points,
            distance_m=distance,
            duration_s=duration,
            duration_in_traffic_s=in_traffic,
        )

    async def check_health(self) -> bool:
        try:
            await self.distance_and_duration((48.8566, 2.3522), (48.8606, 2.3376))
        except ProviderUnavailable:
            return False
        return True
