"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Literal, Optional

from ...models.domain import Site, TourStop

TrafficStatus = Literal["fluid", "heavy", "congested"]


@dataclass(slots=True, frozen=True)
class LegMeasurement:
    distance_m: float
    duration_s: float
    duration_in_traffic_s: float


@dataclass(slots=True, frozen=True)
class RouteGeometry:
    points: List[tuple[float, float]]
    distance_m: float
    duration_s: float
    duration_in_traffic_s: float


@dataclass(slots=True, frozen=True)
class LegEstimate:
    distance_km: float
    duration_s: float
    travel_time_s: float
    estimated: bool = False


@dataclass(slots=True, frozen=True)
class RouteLeg:
    origin_ref: str
    destination_ref: str
    distance_km: float
    duration_s: float
    travel_time_s: float
    traffic_status: TrafficStatus
    traffic_color: str
    start_time: datetime
    end_time: datetime
    points: List[tuple[float, float]]


@dataclass(slots=True, frozen=True)
class Waypoint:
    """A stop handed to the optimizer: a per-occurrence key, its site and dwell."""

    key: str
    site: Site
    dwell_minutes: int


@dataclass(slots=True)
class OptimizationResult:
    order: List[str]
    arrival_times: dict[str, datetime]
    total_distance_km: float
    total_duration_s: float
    estimated: bool = False


@dataclass(slots=True)
class RecalculationResult:
    stops: List[TourStop]
    failed_index: Optional[int] = None
    error: Optional[Exception] = None
    estimated_indices: List[int] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.failed_index is None
