"""Geospatial helper functions."""

from __future__ import annotations

import math

EARTH_RADIUS_KM = 6371.0
DEFAULT_AVERAGE_SPEED_KMH = 50.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def time_from_distance(distance_km: float, average_speed_kmh: float = DEFAULT_AVERAGE_SPEED_KMH) -> float:
    """Estimate driving time in seconds for a distance at a constant average speed.

    This is a degraded estimate: callers must only use it after the routing
    provider failed and the user opted into approximate times.
    """

    if average_speed_kmh <= 0:
        raise ValueError("Average speed must be positive.")
    return distance_km / average_speed_kmh * 3600.0


def valid_coordinates(latitude: float | None, longitude: float | None) -> bool:
    """Return True when both values are finite numbers inside WGS84 bounds."""

    if latitude is None or longitude is None:
        return False
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0
