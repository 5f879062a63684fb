"""Routing provider capability shared by the OSRM and Google clients."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from ...config import Settings, settings as default_settings
from .models import LegMeasurement, RouteGeometry, TrafficStatus

Coordinate = tuple[float, float]

HEAVY_TRAFFIC_RATIO = 1.1
CONGESTED_TRAFFIC_RATIO = 1.3

TRAFFIC_COLORS: dict[str, str] = {
    "fluid": "#2196F3",
    "heavy": "#FF9800",
    "congested": "#F44336",
}


class RouteProvider(Protocol):
    """Driving distance and traffic-aware duration between two coordinates.

    ``departure_time=None`` asks for a simplified request without a traffic
    model. Implementations raise ``ProviderUnavailable`` on failure and own
    their timeout policy.
    """

    async def distance_and_duration(
        self, origin: Coordinate, destination: Coordinate, departure_time: Optional[datetime]
    ) -> LegMeasurement:
        ...

    async def route(
        self, origin: Coordinate, destination: Coordinate, departure_time: Optional[datetime]
    ) -> RouteGeometry:
        ...

    async def check_health(self) -> bool:
        ...


def classify_traffic(duration_s: float, duration_in_traffic_s: float) -> TrafficStatus:
    """Bucket the slowdown caused by traffic on a leg."""

    if duration_s <= 0:
        return "fluid"
    ratio = duration_in_traffic_s / duration_s
    if ratio > CONGESTED_TRAFFIC_RATIO:
        return "congested"
    if ratio > HEAVY_TRAFFIC_RATIO:
        return "heavy"
    return "fluid"


def decode_polyline(polyline: str, precision: int = 5) -> list[Coordinate]:
    """Decode an encoded polyline string to a list of (lat, lon) coordinates.

    OSRM and Google both use this encoding for route geometry.
    """
    coordinates: list[Coordinate] = []
    factor = 10 ** precision
    index = 0
    lat = 0
    lon = 0

    def _next_value() -> int:
        nonlocal index
        shift = 0
        result = 0
        while True:
            if index >= len(polyline):
                raise ValueError("Truncated polyline string.")
            b = ord(polyline[index]) - 63
            index += 1
            result |= (b & 0x1F) << shift
            shift += 5
            if b < 0x20:
                break
        return ~(result >> 1) if (result & 1) else (result >> 1)

    while index < len(polyline):
        lat += _next_value()
        lon += _next_value()
        coordinates.append((lat / factor, lon / factor))

    return coordinates


def build_route_provider(config: Settings | None = None) -> RouteProvider:
    """Instantiate the provider selected by ``routing_provider``."""
    config = config or default_settings
    if config.routing_provider == "google":
        from .google_client import GoogleDirectionsClient

        return GoogleDirectionsClient(config=config)

    from .osrm_client import OSRMClient

    return OSRMClient(config=config)
