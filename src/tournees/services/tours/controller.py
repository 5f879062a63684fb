"""Tour editing operations and the schedule upkeep each one triggers."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Sequence

from ...config import Settings, settings as default_settings
from ...data.sites_repository import SiteDirectory
from ...models.domain import Site, Tour, TourStop
from ..routing.errors import OptimizationUnavailable, StopNotFound
from ..routing.estimator import TravelEstimator
from ..routing.models import OptimizationResult, Waypoint
from ..routing.optimizer import TourOrderOptimizer
from ..routing.schedule import ScheduleRecalculator, departure_from

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OptimizedTour:
    tour: Tour
    result: OptimizationResult
    applied: bool = True


def normalize_dwell(value: Any, default: int) -> int:
    """Coerce a dwell time to non-negative whole minutes, or the default."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number or number < 0 or not number.is_integer():
        return default
    return int(number)


def renumber(stops: Iterable[TourStop]) -> tuple[TourStop, ...]:
    """Dense 1-based ``order`` following list position."""
    return tuple(
        stop if stop.order == position else replace(stop, order=position)
        for position, stop in enumerate(stops, start=1)
    )


def _new_instance_id() -> str:
    return uuid.uuid4().hex


class TourMutationController:
    """Applies user edits to a tour and keeps arrival times consistent.

    Every method takes the current :class:`Tour` and returns a new one; the
    input is never modified. Optimization failures raise and leave the caller
    with the tour it passed in. Manual edits always succeed, with downstream
    times marked ``stale`` when they could not be recomputed.
    """

    def __init__(
        self,
        sites: SiteDirectory,
        estimator: TravelEstimator,
        *,
        recalculator: ScheduleRecalculator | None = None,
        optimizer: TourOrderOptimizer | None = None,
        config: Settings | None = None,
        id_factory: Callable[[], str] = _new_instance_id,
    ) -> None:
        config = config or default_settings
        self.sites = sites
        self.estimator = estimator
        self.recalculator = recalculator or ScheduleRecalculator(estimator)
        self.optimizer = optimizer or TourOrderOptimizer(estimator)
        self.default_dwell_minutes = config.default_dwell_minutes
        self._id_factory = id_factory

    def new_tour(
        self,
        *,
        name: str,
        pole: str,
        start_time: datetime,
        planned_end_time: Optional[datetime] = None,
        created_by: Optional[str] = None,
        tour_id: Optional[str] = None,
    ) -> Tour:
        return Tour(
            tour_id=tour_id or self._id_factory(),
            name=name,
            pole=pole,
            start_time=start_time,
            planned_end_time=planned_end_time,
            created_by=created_by,
            created_at=datetime.now(timezone.utc),
        )

    async def add_stop(
        self,
        tour: Tour,
        site_id: str,
        dwell_minutes: Any = None,
        *,
        allow_fallback: bool = False,
    ) -> Tour:
        """Append an occurrence of ``site_id``; the same site may be added twice."""
        site = self.sites.resolve(site_id)
        dwell = normalize_dwell(dwell_minutes, self.default_dwell_minutes)
        if tour.stops:
            arrival = departure_from(tour.stops[-1])
        else:
            arrival = tour.start_time
        stop = TourStop(
            instance_id=self._id_factory(),
            stop_ref=site.site_id,
            order=len(tour.stops) + 1,
            arrival_time=arrival,
            dwell_minutes=dwell,
        )
        stops = tour.stops + (stop,)
        logger.info(f"Tour {tour.tour_id}: added site {site.site_id} as stop {stop.order} ({stop.instance_id})")
        if len(stops) == 1:
            return replace(tour, stops=stops)
        return await self._recalculate(tour, stops, len(stops) - 1, allow_fallback)

    async def remove_stop(self, tour: Tour, instance_id: str, *, allow_fallback: bool = False) -> Tour:
        """Remove one occurrence and renumber; recompute only what depended on it."""
        index = self._index(tour, instance_id)
        remaining = list(tour.stops[:index] + tour.stops[index + 1:])
        logger.info(f"Tour {tour.tour_id}: removed stop {index + 1} ({instance_id})")
        if not remaining:
            return replace(tour, stops=(), schedule_error=None)
        if index == 0:
            remaining[0] = replace(remaining[0], arrival_time=tour.start_time)
        stops = renumber(remaining)
        if index >= len(stops):
            return replace(tour, stops=stops)
        return await self._recalculate(tour, stops, max(1, index), allow_fallback)

    async def move_stop(
        self, tour: Tour, instance_id: str, new_index: int, *, allow_fallback: bool = False
    ) -> Tour:
        """Move one occurrence to a 0-based position (drag and drop)."""
        index = self._index(tour, instance_id)
        if not 0 <= new_index < len(tour.stops):
            raise ValueError(f"Position {new_index} is outside the tour (0..{len(tour.stops) - 1}).")
        ids = [stop.instance_id for stop in tour.stops]
        ids.insert(new_index, ids.pop(index))
        return await self.reorder(tour, ids, allow_fallback=allow_fallback)

    async def reorder(
        self, tour: Tour, instance_ids: Sequence[str], *, allow_fallback: bool = False
    ) -> Tour:
        """Apply a full new order and recompute every arrival after the first."""
        by_id = {stop.instance_id: stop for stop in tour.stops}
        if len(instance_ids) != len(by_id) or set(instance_ids) != set(by_id):
            raise ValueError("New order must list every stop of the tour exactly once.")
        ordered = [by_id[instance_id] for instance_id in instance_ids]
        if ordered and ordered[0].arrival_time != tour.start_time:
            ordered[0] = replace(ordered[0], arrival_time=tour.start_time)
        stops = renumber(ordered)
        return await self._recalculate(tour, stops, 1, allow_fallback)

    async def edit_dwell(
        self, tour: Tour, instance_id: str, dwell_minutes: Any, *, allow_fallback: bool = False
    ) -> Tour:
        index = self._index(tour, instance_id)
        dwell = normalize_dwell(dwell_minutes, self.default_dwell_minutes)
        stops = list(tour.stops)
        stops[index] = replace(stops[index], dwell_minutes=dwell)
        return await self._recalculate(tour, tuple(stops), index + 1, allow_fallback)

    async def edit_arrival(
        self, tour: Tour, instance_id: str, arrival_time: datetime, *, allow_fallback: bool = False
    ) -> Tour:
        """Overwrite one arrival time and propagate from its successor onward."""
        index = self._index(tour, instance_id)
        stops = list(tour.stops)
        stops[index] = replace(stops[index], arrival_time=arrival_time, schedule_status="manual")
        if index == 0:
            tour = replace(tour, start_time=arrival_time)
        return await self._recalculate(tour, tuple(stops), index + 1, allow_fallback)

    async def recalculate(self, tour: Tour, from_index: int = 1, *, allow_fallback: bool = False) -> Tour:
        if from_index < 0:
            raise ValueError("from_index must be non-negative.")
        return await self._recalculate(tour, tour.stops, from_index, allow_fallback)

    async def optimize(self, tour: Tour, *, allow_fallback: bool = False) -> OptimizedTour:
        """Reorder interior stops; first and last stay where they are.

        The optimizer's arrival times are applied as-is. Without
        ``allow_fallback`` an ``OptimizationUnavailable`` propagates; with it,
        the straight-line heuristic is used and stops are marked ``estimated``.
        """
        stops = tour.stops
        sites = self.sites.resolve_many(stop.stop_ref for stop in stops)
        waypoints = [
            Waypoint(key=stop.instance_id, site=sites[stop.stop_ref], dwell_minutes=stop.dwell_minutes)
            for stop in stops
        ]
        departure = stops[0].arrival_time if stops else tour.start_time
        try:
            result = await self.optimizer.optimize(waypoints, departure)
        except OptimizationUnavailable:
            if not allow_fallback:
                raise
            result = await self.optimizer.optimize_straight_line(waypoints, departure)

        by_id = {stop.instance_id: stop for stop in stops}
        status = "estimated" if result.estimated else "confirmed"
        reordered = []
        for position, key in enumerate(result.order):
            stop = by_id[key]
            reordered.append(
                replace(
                    stop,
                    arrival_time=stop.arrival_time if position == 0 else result.arrival_times[key],
                    schedule_status=stop.schedule_status if position == 0 else status,
                )
            )
        optimized = replace(tour, stops=renumber(reordered), schedule_error=None)
        return OptimizedTour(tour=optimized, result=result)

    def sites_for(self, tour: Tour) -> list[Site]:
        return [self.sites.resolve(stop.stop_ref) for stop in tour.stops]

    def _index(self, tour: Tour, instance_id: str) -> int:
        try:
            return tour.index_of(instance_id)
        except KeyError as exc:
            raise StopNotFound(f"Stop '{instance_id}' is not part of tour '{tour.tour_id}'") from exc

    def known_sites(self, stops: Iterable[TourStop]) -> dict[str, Site]:
        known: dict[str, Site] = {}
        for stop in stops:
            if stop.stop_ref in known:
                continue
            try:
                known[stop.stop_ref] = self.sites.resolve(stop.stop_ref)
            except StopNotFound:
                logger.warning(f"Site {stop.stop_ref} no longer exists; its legs cannot be timed")
        return known

    async def _recalculate(
        self, tour: Tour, stops: Sequence[TourStop], from_index: int, allow_fallback: bool
    ) -> Tour:
        result = await self.recalculator.recalculate(
            stops, self.known_sites(stops), from_index, allow_fallback=allow_fallback
        )
        if not result.complete:
            message = (
                f"Arrival times from stop {result.failed_index + 1} onward could not be recomputed: "
                f"{result.error}"
            )
        elif any(stop.schedule_status == "stale" for stop in result.stops):
            message = tour.schedule_error
        else:
            message = None
        return replace(tour, stops=renumber(result.stops), schedule_error=message)
