"""Domain models for sites and delivery tours."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional

from ..services.geospatial import valid_coordinates

ScheduleStatus = Literal["confirmed", "estimated", "stale", "manual"]


@dataclass(slots=True, frozen=True)
class Site:
    """A physical location a vehicle can visit."""

    site_id: str
    name: str
    address: str = ""
    postal_code: str = ""
    city: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    pole: Optional[str] = None

    @property
    def coordinates(self) -> Optional[tuple[float, float]]:
        if not valid_coordinates(self.latitude, self.longitude):
            return None
        return float(self.latitude), float(self.longitude)


@dataclass(slots=True, frozen=True)
class TourStop:
    """One scheduled occurrence of a site within a tour.

    ``instance_id`` identifies this occurrence; ``stop_ref`` points at the
    underlying :class:`Site`. The same site may appear several times in a
    tour, so the two must never be used interchangeably.
    """

    instance_id: str
    stop_ref: str
    order: int
    arrival_time: datetime
    dwell_minutes: int = 5
    schedule_status: ScheduleStatus = "confirmed"


@dataclass(slots=True, frozen=True)
class Tour:
    """An ordered sequence of stops visited by one vehicle."""

    tour_id: str
    name: str
    pole: str
    start_time: datetime
    planned_end_time: Optional[datetime] = None
    stops: tuple[TourStop, ...] = field(default_factory=tuple)
    schedule_error: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def end_time(self) -> Optional[datetime]:
        if self.stops:
            return self.stops[-1].arrival_time
        return self.planned_end_time

    def index_of(self, instance_id: str) -> int:
        for index, stop in enumerate(self.stops):
            if stop.instance_id == instance_id:
                return index
        raise KeyError(instance_id)

    def occurrences_of(self, stop_ref: str) -> list[TourStop]:
        return [stop for stop in self.stops if stop.stop_ref == stop_ref]
