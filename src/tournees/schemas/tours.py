"""Tour request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from ..models.domain import Site, Tour
from ..services.routing.models import OptimizationResult, RouteLeg


class SiteModel(BaseModel):
    site_id: str
    name: str
    address: str = ""
    postal_code: str = ""
    city: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    pole: Optional[str] = None
    has_coordinates: bool

    @classmethod
    def from_domain(cls, site: Site) -> "SiteModel":
        return cls(
            site_id=site.site_id,
            name=site.name,
            address=site.address,
            postal_code=site.postal_code,
            city=site.city,
            latitude=site.latitude,
            longitude=site.longitude,
            pole=site.pole,
            has_coordinates=site.coordinates is not None,
        )


class TourStopModel(BaseModel):
    instance_id: str
    stop_ref: str
    order: int
    arrival_time: datetime
    dwell_minutes: int
    schedule_status: Literal["confirmed", "estimated", "stale", "manual"]


class TourModel(BaseModel):
    tour_id: str
    name: str
    pole: str
    start_time: datetime
    end_time: Optional[datetime] = None
    schedule_error: Optional[str] = None
    created_by: Optional[str] = None
    stops: List[TourStopModel]

    @classmethod
    def from_domain(cls, tour: Tour) -> "TourModel":
        return cls(
            tour_id=tour.tour_id,
            name=tour.name,
            pole=tour.pole,
            start_time=tour.start_time,
            end_time=tour.end_time,
            schedule_error=tour.schedule_error,
            created_by=tour.created_by,
            stops=[
                TourStopModel(
                    instance_id=stop.instance_id,
                    stop_ref=stop.stop_ref,
                    order=stop.order,
                    arrival_time=stop.arrival_time,
                    dwell_minutes=stop.dwell_minutes,
                    schedule_status=stop.schedule_status,
                )
                for stop in tour.stops
            ],
        )


class CreateTourRequest(BaseModel):
    name: str = Field(..., min_length=1)
    pole: str = Field(..., min_length=1, description="Organisational grouping the tour belongs to.")
    start_time: datetime = Field(..., description="Arrival time at the first stop.")
    planned_end_time: Optional[datetime] = None
    created_by: Optional[str] = None


class AddStopRequest(BaseModel):
    site_id: str
    dwell_minutes: Optional[int] = Field(default=None, ge=0, description="Defaults to 5 minutes.")
    allow_fallback: bool = False


class MoveStopRequest(BaseModel):
    position: int = Field(..., ge=1, description="New 1-based position of the stop.")
    allow_fallback: bool = False


class ReorderRequest(BaseModel):
    instance_ids: List[str]
    allow_fallback: bool = False


class DwellUpdateRequest(BaseModel):
    dwell_minutes: int = Field(..., ge=0)
    allow_fallback: bool = False


class ArrivalUpdateRequest(BaseModel):
    arrival_time: datetime
    allow_fallback: bool = False


class OptimizeRequest(BaseModel):
    allow_fallback: bool = Field(
        default=False,
        description="Use the straight-line heuristic if real travel times are unavailable.",
    )


class RecalculateRequest(BaseModel):
    from_position: int = Field(default=2, ge=1, description="1-based position to recompute from.")
    allow_fallback: bool = False


class OptimizationSummaryModel(BaseModel):
    order: List[str]
    total_distance_km: float
    total_duration_min: float
    estimated: bool
    applied: bool

    @classmethod
    def from_result(cls, result: OptimizationResult, applied: bool) -> "OptimizationSummaryModel":
        return cls(
            order=result.order,
            total_distance_km=result.total_distance_km,
            total_duration_min=result.total_duration_s / 60.0,
            estimated=result.estimated,
            applied=applied,
        )


class OptimizeResponse(BaseModel):
    tour: TourModel
    optimization: OptimizationSummaryModel


class RouteLegModel(BaseModel):
    origin_ref: str
    destination_ref: str
    distance_km: float
    duration_min: float
    travel_time_min: float
    traffic_status: Literal["fluid", "heavy", "congested"]
    traffic_color: str
    start_time: datetime
    end_time: datetime
    points: List[tuple[float, float]]

    @classmethod
    def from_domain(cls, leg: RouteLeg) -> "RouteLegModel":
        return cls(
            origin_ref=leg.origin_ref,
            destination_ref=leg.destination_ref,
            distance_km=leg.distance_km,
            duration_min=leg.duration_s / 60.0,
            travel_time_min=leg.travel_time_s / 60.0,
            traffic_status=leg.traffic_status,
            traffic_color=leg.traffic_color,
            start_time=leg.start_time,
            end_time=leg.end_time,
            points=leg.points,
        )


class TourRouteResponse(BaseModel):
    tour_id: str
    total_distance_km: float
    total_travel_time_min: float
    legs: List[RouteLegModel]
