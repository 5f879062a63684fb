"""Serializers for tours."""

from __future__ import annotations

import csv
import io
from datetime import datetime
from typing import Mapping, Optional

from ...models.domain import Site, Tour, TourStop


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def tour_to_json(tour: Tour) -> dict:
    return {
        "tour_id": tour.tour_id,
        "name": tour.name,
        "pole": tour.pole,
        "start_time": _iso(tour.start_time),
        "end_time": _iso(tour.end_time),
        "planned_end_time": _iso(tour.planned_end_time),
        "schedule_error": tour.schedule_error,
        "created_by": tour.created_by,
        "created_at": _iso(tour.created_at),
        "stops": [
            {
                "instance_id": stop.instance_id,
                "stop_ref": stop.stop_ref,
                "order": stop.order,
                "arrival_time": _iso(stop.arrival_time),
                "dwell_minutes": stop.dwell_minutes,
                "schedule_status": stop.schedule_status,
            }
            for stop in tour.stops
        ],
    }


def tour_from_json(data: dict) -> Tour:
    stops = sorted(
        (
            TourStop(
                instance_id=item["instance_id"],
                stop_ref=item["stop_ref"],
                order=int(item["order"]),
                arrival_time=_parse(item["arrival_time"]),
                dwell_minutes=int(item.get("dwell_minutes", 5)),
                schedule_status=item.get("schedule_status", "confirmed"),
            )
            for item in data.get("stops", [])
        ),
        key=lambda stop: stop.order,
    )
    return Tour(
        tour_id=data["tour_id"],
        name=data["name"],
        pole=data.get("pole", ""),
        start_time=_parse(data["start_time"]),
        planned_end_time=_parse(data.get("planned_end_time")),
        stops=tuple(stops),
        schedule_error=data.get("schedule_error"),
        created_by=data.get("created_by"),
        created_at=_parse(data.get("created_at")),
    )


def tour_to_csv(tour: Tour, sites: Mapping[str, Site] | None = None) -> str:
    buffer = io.StringIO()
    fieldnames = [
        "tour_id",
        "order",
        "instance_id",
        "site_id",
        "site_name",
        "arrival_time",
        "dwell_minutes",
        "schedule_status",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    sites = sites or {}
    for stop in tour.stops:
        site = sites.get(stop.stop_ref)
        writer.writerow(
            {
                "tour_id": tour.tour_id,
                "order": stop.order,
                "instance_id": stop.instance_id,
                "site_id": stop.stop_ref,
                "site_name": site.name if site else "",
                "arrival_time": _iso(stop.arrival_time),
                "dwell_minutes": stop.dwell_minutes,
                "schedule_status": stop.schedule_status,
            }
        )
    return buffer.getvalue()
