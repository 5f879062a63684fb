import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest

from src.tournees.models.domain import Site
from src.tournees.services.geospatial import haversine_km, time_from_distance
from src.tournees.services.routing.errors import InvalidCoordinates, ProviderUnavailable, StopNotFound
from src.tournees.services.routing.estimator import TravelEstimator
from src.tournees.services.routing.schedule import ScheduleRecalculator, departure_from
from tests.fakes import T0, ScriptedProvider, make_site, make_stop, matrix_travel

S1, S2, S3, S4 = (make_site(f"S{i}", 2.0 + i / 10) for i in range(1, 5))
SITES = {site.site_id: site for site in (S1, S2, S3, S4)}


def _stops(*refs: str, dwell: int = 5):
    return [make_stop(f"i{index}", ref, index + 1, T0, dwell) for index, ref in enumerate(refs)]


def _recalculator(provider: ScriptedProvider) -> ScheduleRecalculator:
    return ScheduleRecalculator(TravelEstimator(provider))


def test_scenario_a_fixed_ten_minute_legs() -> None:
    result = asyncio.run(_recalculator(ScriptedProvider()).recalculate(_stops("S1", "S2", "S3"), SITES))

    assert result.complete
    assert [stop.arrival_time for stop in result.stops] == [
        T0,
        T0 + timedelta(minutes=15),
        T0 + timedelta(minutes=30),
    ]
    assert all(stop.schedule_status == "confirmed" for stop in result.stops)


def test_legs_are_queried_at_departure_from_previous_stop() -> None:
    provider = ScriptedProvider()

    asyncio.run(_recalculator(provider).recalculate(_stops("S1", "S2", "S3"), SITES))

    assert [departure for _, _, departure in provider.calls] == [
        T0 + timedelta(minutes=5),
        T0 + timedelta(minutes=20),
    ]


def test_first_stop_is_never_rewritten() -> None:
    stops = _stops("S1", "S2", "S3")
    stops[0] = replace(stops[0], arrival_time=T0 + timedelta(hours=2), schedule_status="manual")

    result = asyncio.run(_recalculator(ScriptedProvider()).recalculate(stops, SITES, from_index=0))

    assert result.stops[0] == stops[0]
    assert result.stops[1].arrival_time == T0 + timedelta(hours=2, minutes=15)


def test_stops_before_from_index_are_untouched() -> None:
    stops = _stops("S1", "S2", "S3", "S4")
    stops[1] = replace(stops[1], arrival_time=T0 + timedelta(minutes=40), schedule_status="manual")
    provider = ScriptedProvider()

    result = asyncio.run(_recalculator(provider).recalculate(stops, SITES, from_index=2))

    assert result.stops[:2] == stops[:2]
    assert result.stops[2].arrival_time == T0 + timedelta(minutes=55)
    assert result.stops[3].arrival_time == T0 + timedelta(minutes=70)
    assert len(provider.calls) == 2


def test_scenario_d_failed_leg_marks_downstream_stale() -> None:
    def fail(origin, destination, departure):
        return origin == S2.coordinates and destination == S3.coordinates

    stops = _stops("S1", "S2", "S3", "S4")
    previous_s3 = stops[2].arrival_time
    provider = ScriptedProvider(fail=fail)

    result = asyncio.run(_recalculator(provider).recalculate(stops, SITES))

    assert not result.complete
    assert result.failed_index == 2
    assert isinstance(result.error, ProviderUnavailable)
    assert result.stops[1].arrival_time == T0 + timedelta(minutes=15)
    assert result.stops[1].schedule_status == "confirmed"
    assert [stop.schedule_status for stop in result.stops[2:]] == ["stale", "stale"]
    assert result.stops[2].arrival_time == previous_s3
    # One traffic-aware attempt and one simplified retry for the failing leg.
    failing = [call for call in provider.calls if call[0] == S2.coordinates]
    assert [departure for _, _, departure in failing] == [T0 + timedelta(minutes=20), None]

def test_stale_stops_are_not_used_as_anchors() -> None:
    stops = _stops("S1", "S2", "S3", "S4")
    stops[2] = replace(stops[2], arrival_time=T0 + timedelta(minutes=20), schedule_status="stale")
    stops[3] = replace(stops[3], schedule_status="stale")
    provider = ScriptedProvider()

    result = asyncio.run(_recalculator(provider).recalculate(stops, SITES, from_index=3))

    assert result.complete
    assert result.stops[:2] == stops[:2]
    assert result.stops[2].arrival_time == T0 + timedelta(minutes=15)
    assert result.stops[3].arrival_time == T0 + timedelta(minutes=30)
    assert [stop.schedule_status for stop in result.stops[2:]] == ["confirmed", "confirmed"]


def test_stale_anchor_still_failing_keeps_successors_stale() -> None:
    def fail(origin, destination, departure):
        return origin == S2.coordinates and destination == S3.coordinates

    stops = _stops("S1", "S2", "S3", "S4")
    stops[2] = replace(stops[2], schedule_status="stale")

    result = asyncio.run(_recalculator(ScriptedProvider(fail=fail)).recalculate(stops, SITES, from_index=3))

    assert result.failed_index == 2
    assert [stop.schedule_status for stop in result.stops] == ["confirmed", "confirmed", "stale", "stale"]



def test_simplified_retry_recovers_the_leg() -> None:
    provider = ScriptedProvider(fail=lambda o, d, dep: dep is not None)

    result = asyncio.run(_recalculator(provider).recalculate(_stops("S1", "S2", "S3"), SITES))

    assert result.complete
    assert result.stops[2].arrival_time == T0 + timedelta(minutes=30)
    assert all(stop.schedule_status == "confirmed" for stop in result.stops)
    assert [departure for _, _, departure in provider.calls] == [
        T0 + timedelta(minutes=5),
        None,
        T0 + timedelta(minutes=20),
        None,
    ]


def test_opt_in_fallback_estimates_and_flags_the_leg() -> None:
    def fail(origin, destination, departure):
        return origin == S2.coordinates

    result = asyncio.run(
        _recalculator(ScriptedProvider(fail=fail)).recalculate(
            _stops("S1", "S2", "S3"), SITES, allow_fallback=True
        )
    )

    expected_s = time_from_distance(haversine_km(*S2.coordinates, *S3.coordinates))
    assert result.complete
    assert result.estimated_indices == [2]
    assert result.stops[1].schedule_status == "confirmed"
    assert result.stops[2].schedule_status == "estimated"
    assert result.stops[2].arrival_time == T0 + timedelta(minutes=20) + timedelta(seconds=expected_s)


def test_invalid_coordinates_are_not_retried() -> None:
    nowhere = Site(site_id="NOWHERE", name="Unknown")
    sites = dict(SITES, NOWHERE=nowhere)
    provider = ScriptedProvider()

    result = asyncio.run(
        _recalculator(provider).recalculate(_stops("S1", "NOWHERE", "S3"), sites, allow_fallback=True)
    )

    assert result.failed_index == 1
    assert isinstance(result.error, InvalidCoordinates)
    assert [stop.schedule_status for stop in result.stops] == ["confirmed", "stale", "stale"]
    assert provider.calls == []


def test_unknown_site_fails_the_leg() -> None:
    result = asyncio.run(_recalculator(ScriptedProvider()).recalculate(_stops("S1", "GONE"), SITES))

    assert result.failed_index == 1
    assert isinstance(result.error, StopNotFound)


def test_scenario_e_dwell_edit_shifts_successor() -> None:
    recalculator = _recalculator(ScriptedProvider())
    first = asyncio.run(recalculator.recalculate(_stops("S1", "S2", "S3"), SITES)).stops

    edited = list(first)
    edited[1] = replace(edited[1], dwell_minutes=20)
    second = asyncio.run(recalculator.recalculate(edited, SITES, from_index=2)).stops

    assert second[0].arrival_time == first[0].arrival_time
    assert second[1].arrival_time == first[1].arrival_time
    assert second[2].arrival_time - first[2].arrival_time == timedelta(minutes=15)


def test_recalculation_is_idempotent() -> None:
    table = {("S1", "S2"): 437.0, ("S2", "S3"): 1290.5, ("S3", "S4"): 61.0}
    recalculator = _recalculator(ScriptedProvider(matrix_travel([S1, S2, S3, S4], table)))

    once = asyncio.run(recalculator.recalculate(_stops("S1", "S2", "S3", "S4"), SITES)).stops
    twice = asyncio.run(recalculator.recalculate(once, SITES)).stops

    assert [stop.arrival_time for stop in twice] == [stop.arrival_time for stop in once]


@pytest.mark.parametrize("dwell", [0, 5, 45])
def test_schedule_is_monotonic(dwell: int) -> None:
    table = {("S1", "S3"): 0.0, ("S3", "S2"): 120.0, ("S2", "S4"): 3000.0, ("S4", "S1"): 15.0}
    recalculator = _recalculator(ScriptedProvider(matrix_travel([S1, S2, S3, S4], table)))

    stops = asyncio.run(
        recalculator.recalculate(_stops("S1", "S3", "S2", "S4", "S1", dwell=dwell), SITES)
    ).stops

    for current, following in zip(stops, stops[1:]):
        assert following.arrival_time >= departure_from(current)
