"""Travel time and distance estimation between tour sites."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from ...config import Settings, settings as default_settings
from ...models.domain import Site
from ..geospatial import haversine_km, time_from_distance
from .errors import InvalidCoordinates
from .models import LegEstimate, RouteLeg
from .provider import TRAFFIC_COLORS, RouteProvider, classify_traffic

logger = logging.getLogger(__name__)


def _require_coordinates(*sites: Site) -> list[tuple[float, float]]:
    coordinates = [site.coordinates for site in sites]
    missing = [site.site_id for site, coords in zip(sites, coordinates) if coords is None]
    if missing:
        raise InvalidCoordinates(missing)
    return coordinates  # type: ignore[return-value]


class TravelEstimator:
    """Single source of truth for time and distance between two sites.

    Provider failures surface as ``ProviderUnavailable``; the straight-line
    estimate is only produced through :meth:`estimate_leg`, which callers
    invoke explicitly when they accept degraded data.
    """

    def __init__(self, provider: RouteProvider, *, config: Settings | None = None) -> None:
        config = config or default_settings
        self.provider = provider
        self.average_speed_kmh = config.fallback_average_speed_kmh

    async def leg(self, origin: Site, destination: Site, departure_time: Optional[datetime]) -> LegEstimate:
        """Measure one leg; ``departure_time=None`` sends the simplified request."""
        start, end = _require_coordinates(origin, destination)
        if start == end:
            return LegEstimate(distance_km=0.0, duration_s=0.0, travel_time_s=0.0)

        measurement = await self.provider.distance_and_duration(start, end, departure_time)
        if measurement.duration_s > 0 and measurement.duration_in_traffic_s / measurement.duration_s > 1.1:
            logger.info(
                f"Traffic on {origin.site_id} -> {destination.site_id}: "
                f"{measurement.duration_s / 60:.0f} min -> {measurement.duration_in_traffic_s / 60:.0f} min "
                f"({classify_traffic(measurement.duration_s, measurement.duration_in_traffic_s)})"
            )
        return LegEstimate(
            distance_km=measurement.distance_m / 1000.0,
            duration_s=measurement.duration_s,
            travel_time_s=max(0.0, measurement.duration_in_traffic_s),
        )

    async def travel_time(self, origin: Site, destination: Site, departure_time: Optional[datetime]) -> float:
        """Traffic-aware driving time in seconds."""
        return (await self.leg(origin, destination, departure_time)).travel_time_s

    async def distance(self, origin: Site, destination: Site) -> float:
        """Driving distance in kilometres."""
        return (await self.leg(origin, destination, None)).distance_km

    def estimate_leg(self, origin: Site, destination: Site) -> LegEstimate:
        """Straight-line estimate at the configured average speed (degraded)."""
        (lat1, lon1), (lat2, lon2) = _require_coordinates(origin, destination)
        distance_km = haversine_km(lat1, lon1, lat2, lon2)
        seconds = time_from_distance(distance_km, self.average_speed_kmh)
        return LegEstimate(distance_km=distance_km, duration_s=seconds, travel_time_s=seconds, estimated=True)

    async def route_legs(
        self,
        sites: Sequence[Site],
        departure_times: Sequence[datetime],
    ) -> list[RouteLeg]:
        """Road geometry and traffic status for each consecutive pair of sites.

        ``departure_times[i]`` is when the vehicle leaves ``sites[i]``. Any
        failing leg fails the whole summary.
        """
        if len(departure_times) < max(0, len(sites) - 1):
            raise ValueError("One departure time is required per leg.")

        legs: list[RouteLeg] = []
        for index in range(len(sites) - 1):
            origin, destination = sites[index], sites[index + 1]
            start, end = _require_coordinates(origin, destination)
            departure = departure_times[index]
            geometry = await self.provider.route(start, end, departure)
            status = classify_traffic(geometry.duration_s, geometry.duration_in_traffic_s)
            legs.append(
                RouteLeg(
                    origin_ref=origin.site_id,
                    destination_ref=destination.site_id,
                    distance_km=geometry.distance_m / 1000.0,
                    duration_s=geometry.duration_s,
                    travel_time_s=geometry.duration_in_traffic_s,
                    traffic_status=status,
                    traffic_color=TRAFFIC_COLORS[status],
                    start_time=departure,
                    end_time=departure + timedelta(seconds=geometry.duration_in_traffic_s),
                    points=geometry.points,
                )
            )
        logger.info(
            f"Route summary computed: {len(legs)} legs, "
            f"{sum(leg.distance_km for leg in legs):.1f} km, "
            f"{sum(leg.travel_time_s for leg in legs) / 60:.0f} min"
        )
        return legs
