"""Visit order optimization for a tour with fixed first and last stops.

The interior stops are ordered with a nearest-neighbour heuristic on real,
traffic-aware travel times. Each candidate leg is queried at the time the
vehicle would actually leave the current stop in the tentative tour, so
time-of-day traffic is reflected in the choice. Tours hold tens of stops,
which keeps the O(N^2) provider queries affordable; optimality is not a goal.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Sequence

from .errors import ConsistencyViolation, InvalidCoordinates, OptimizationUnavailable, RoutingError
from .estimator import TravelEstimator
from .models import LegEstimate, OptimizationResult, Waypoint

logger = logging.getLogger(__name__)

LegMeasure = Callable[[Waypoint, Waypoint, datetime], Awaitable[LegEstimate]]


def _leave_time(arrival: datetime, waypoint: Waypoint) -> datetime:
    return arrival + timedelta(minutes=waypoint.dwell_minutes)


class TourOrderOptimizer:
    def __init__(self, estimator: TravelEstimator) -> None:
        self.estimator = estimator

    async def optimize(self, waypoints: Sequence[Waypoint], departure_time: datetime) -> OptimizationResult:
        """Reorder interior stops using real travel times.

        Raises ``InvalidCoordinates`` before any provider call when a stop
        cannot be located, and ``OptimizationUnavailable`` when any travel
        time query fails. Real and estimated legs are never mixed.
        """

        async def measure(origin: Waypoint, destination: Waypoint, leave: datetime) -> LegEstimate:
            return await self.estimator.leg(origin.site, destination.site, leave)

        try:
            return await self._solve(waypoints, departure_time, measure, estimated=False)
        except (InvalidCoordinates, ConsistencyViolation):
            raise
        except RoutingError as exc:
            logger.warning(f"Optimization aborted, travel time unavailable: {exc}")
            raise OptimizationUnavailable(
                f"Could not obtain real travel times for every leg: {exc}"
            ) from exc

    async def optimize_straight_line(
        self, waypoints: Sequence[Waypoint], departure_time: datetime
    ) -> OptimizationResult:
        """Degraded heuristic on straight-line distance at a constant speed."""

        async def measure(origin: Waypoint, destination: Waypoint, leave: datetime) -> LegEstimate:
            return self.estimator.estimate_leg(origin.site, destination.site)

        logger.warning(f"Using straight-line fallback to order {len(waypoints)} stops")
        return await self._solve(waypoints, departure_time, measure, estimated=True)

    async def _solve(
        self,
        waypoints: Sequence[Waypoint],
        departure_time: datetime,
        measure: LegMeasure,
        *,
        estimated: bool,
    ) -> OptimizationResult:
        stops = list(waypoints)
        keys = [waypoint.key for waypoint in stops]
        if len(set(keys)) != len(keys):
            raise ValueError("Waypoint keys must be unique per tour occurrence.")

        if len(stops) <= 1:
            return OptimizationResult(
                order=keys,
                arrival_times={key: departure_time for key in keys},
                total_distance_km=0.0,
                total_duration_s=0.0,
                estimated=estimated,
            )

        missing = [waypoint.site.site_id for waypoint in stops if waypoint.site.coordinates is None]
        if missing:
            raise InvalidCoordinates(missing)

        logger.info(f"Optimizing {len(stops)} stops departing at {departure_time.isoformat()}")

        cache: dict[tuple[int, int, datetime], LegEstimate] = {}

        async def leg(from_index: int, to_index: int, leave: datetime) -> LegEstimate:
            cache_key = (from_index, to_index, leave)
            if cache_key not in cache:
                cache[cache_key] = await measure(stops[from_index], stops[to_index], leave)
            return cache[cache_key]

        last_index = len(stops) - 1
        order = [0]
        if len(stops) > 2:
            unvisited = list(range(1, last_index))
            current = 0
            clock = departure_time
            while unvisited:
                leave = _leave_time(clock, stops[current])
                best_index = None
                best_leg = None
                for candidate in unvisited:
                    candidate_leg = await leg(current, candidate, leave)
                    # Strict comparison keeps the first candidate on ties.
                    if best_leg is None or candidate_leg.travel_time_s < best_leg.travel_time_s:
                        best_index, best_leg = candidate, candidate_leg
                order.append(best_index)
                unvisited.remove(best_index)
                clock = leave + timedelta(seconds=best_leg.travel_time_s)
                current = best_index
        order.append(last_index)

        arrival_times: dict[str, datetime] = {keys[0]: departure_time}
        total_distance_km = 0.0
        total_duration_s = 0.0
        arrival = departure_time
        for position in range(len(order) - 1):
            from_index, to_index = order[position], order[position + 1]
            leave = _leave_time(arrival, stops[from_index])
            step = await leg(from_index, to_index, leave)
            arrival = leave + timedelta(seconds=step.travel_time_s)
            arrival_times[keys[to_index]] = arrival
            total_distance_km += step.distance_km
            total_duration_s += step.travel_time_s

        result = OptimizationResult(
            order=[keys[index] for index in order],
            arrival_times=arrival_times,
            total_distance_km=total_distance_km,
            total_duration_s=total_duration_s,
            estimated=estimated,
        )
        verify_result(keys, result)
        logger.info(
            f"Optimization complete - {len(result.order)} stops, {total_distance_km:.1f} km, "
            f"{total_duration_s / 60:.0f} min{' (estimated)' if estimated else ''}"
        )
        return result


def verify_result(input_keys: Sequence[str], result: OptimizationResult) -> None:
    """Raise ``ConsistencyViolation`` if the result lost stops or moved an endpoint."""
    problems: list[str] = []
    if len(result.order) != len(input_keys):
        problems.append(f"{len(result.order)} stops in result, {len(input_keys)} expected")
    if Counter(result.order) != Counter(input_keys):
        problems.append("stop multiset changed")
    if input_keys and result.order:
        if result.order[0] != input_keys[0]:
            problems.append("first stop moved")
        if result.order[-1] != input_keys[-1]:
            problems.append("last stop moved")
    if set(result.arrival_times) != set(input_keys):
        problems.append("arrival times do not cover every stop")
    if problems:
        logger.error(f"Optimizer consistency violation: {'; '.join(problems)}. input={list(input_keys)} output={result.order}")
        raise ConsistencyViolation("; ".join(problems))
