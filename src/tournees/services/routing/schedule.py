"""Forward propagation of arrival times along an ordered tour."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Mapping, Sequence

from ...models.domain import Site, TourStop
from .errors import InvalidCoordinates, ProviderUnavailable, RoutingError, StopNotFound
from .estimator import TravelEstimator
from .models import RecalculationResult

logger = logging.getLogger(__name__)


def departure_from(stop: TourStop) -> datetime:
    return stop.arrival_time + timedelta(minutes=stop.dwell_minutes)


class ScheduleRecalculator:
    """Recompute arrival times from a given position forward in one pass.

    The first stop's arrival time is authoritative and never rewritten, and
    stops before ``from_index`` are left untouched. A leg that fails is retried
    once with the simplified provider request. If it still fails, propagation
    stops there: that stop and everything after it keep their previous time
    and are marked ``stale``, unless the caller passed ``allow_fallback`` in
    which case the leg uses the straight-line estimate and is marked
    ``estimated``. A stale stop is never used as an anchor: when the stops
    just before ``from_index`` are stale, the pass starts at the first of them.
    """

    def __init__(self, estimator: TravelEstimator) -> None:
        self.estimator = estimator

    async def recalculate(
        self,
        stops: Sequence[TourStop],
        sites: Mapping[str, Site],
        from_index: int = 1,
        *,
        allow_fallback: bool = False,
    ) -> RecalculationResult:
        updated = list(stops)
        result = RecalculationResult(stops=updated)
        start = min(max(1, from_index), len(updated))
        while start > 1 and updated[start - 1].schedule_status == "stale":
            start -= 1

        for index in range(start, len(updated)):
            previous, current = updated[index - 1], updated[index]
            leave = departure_from(previous)
            status = "confirmed"
            try:
                origin = _resolve(sites, previous.stop_ref)
                destination = _resolve(sites, current.stop_ref)
                travel_s = await self._travel_time(origin, destination, leave)
            except ProviderUnavailable as exc:
                if not allow_fallback:
                    return self._fail(result, index, exc)
                try:
                    travel_s = self.estimator.estimate_leg(origin, destination).travel_time_s
                except InvalidCoordinates as coords_exc:
                    return self._fail(result, index, coords_exc)
                logger.warning(
                    f"Leg {previous.stop_ref} -> {current.stop_ref} estimated from straight-line distance"
                )
                status = "estimated"
                result.estimated_indices.append(index)
            except (InvalidCoordinates, StopNotFound) as exc:
                return self._fail(result, index, exc)

            updated[index] = replace(
                current,
                arrival_time=leave + timedelta(seconds=travel_s),
                schedule_status=status,
            )

        return result

    async def _travel_time(self, origin: Site, destination: Site, leave: datetime) -> float:
        try:
            return await self.estimator.travel_time(origin, destination, leave)
        except ProviderUnavailable as exc:
            logger.warning(
                f"Travel time {origin.site_id} -> {destination.site_id} failed ({exc}); "
                f"retrying with simplified request"
            )
            return await self.estimator.travel_time(origin, destination, None)

    @staticmethod
    def _fail(result: RecalculationResult, index: int, error: RoutingError) -> RecalculationResult:
        for position in range(index, len(result.stops)):
            result.stops[position] = replace(result.stops[position], schedule_status="stale")
        result.failed_index = index
        result.error = error
        logger.warning(
            f"Schedule recalculation stopped at position {index + 1}: {error}. "
            f"{len(result.stops) - index} arrival time(s) marked stale"
        )
        return result


def _resolve(sites: Mapping[str, Site], stop_ref: str) -> Site:
    try:
        return sites[stop_ref]
    except KeyError as exc:
        raise StopNotFound(f"Site '{stop_ref}' not found") from exc
