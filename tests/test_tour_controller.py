import asyncio
import itertools
from datetime import timedelta

import pytest

from src.tournees.config import Settings
from src.tournees.data.sites_repository import SiteDirectory
from src.tournees.models.domain import Tour
from src.tournees.services.routing.errors import OptimizationUnavailable, StopNotFound
from src.tournees.services.routing.estimator import TravelEstimator
from src.tournees.services.tours.controller import TourMutationController, normalize_dwell
from tests.fakes import T0, ScriptedProvider, make_site, matrix_travel

S1, S2, S3, S4 = (make_site(f"S{i}", 2.0 + i / 10) for i in range(1, 5))
ALL_SITES = [S1, S2, S3, S4]


def _controller(provider: ScriptedProvider | None = None) -> TourMutationController:
    counter = itertools.count(1)
    return TourMutationController(
        SiteDirectory.from_sites(ALL_SITES, ttl_seconds=3600),
        TravelEstimator(provider or ScriptedProvider()),
        config=Settings(default_dwell_minutes=5),
        id_factory=lambda: f"id{next(counter)}",
    )


def _run(coroutine):
    return asyncio.run(coroutine)


def _build(controller: TourMutationController, *refs: str, dwell=None) -> Tour:
    tour = controller.new_tour(name="Morning", pole="P1", start_time=T0)
    for ref in refs:
        tour = _run(controller.add_stop(tour, ref, dwell))
    return tour


def _orders(tour: Tour) -> list[int]:
    return [stop.order for stop in tour.stops]


def _arrivals(tour: Tour) -> list:
    return [stop.arrival_time for stop in tour.stops]


def test_first_stop_arrives_at_tour_start() -> None:
    provider = ScriptedProvider()
    tour = _build(_controller(provider), "S1")

    assert _arrivals(tour) == [T0]
    assert tour.stops[0].dwell_minutes == 5
    assert provider.calls == []


def test_added_stop_is_timed_from_last_departure() -> None:
    controller = _controller()
    tour = _build(controller, "S1")

    tour = _run(controller.add_stop(tour, "S2", 12))

    assert _orders(tour) == [1, 2]
    assert tour.stops[1].arrival_time == T0 + timedelta(minutes=15)
    assert tour.stops[1].dwell_minutes == 12
    assert tour.end_time == T0 + timedelta(minutes=15)
    assert tour.schedule_error is None


def test_adding_unknown_site_is_rejected() -> None:
    controller = _controller()
    tour = _build(controller, "S1")

    with pytest.raises(StopNotFound):
        _run(controller.add_stop(tour, "NOPE"))


def test_order_stays_dense_through_every_edit() -> None:
    controller = _controller()
    tour = _build(controller, "S1", "S2", "S3", "S4", "S2")
    assert _orders(tour) == [1, 2, 3, 4, 5]

    tour = _run(controller.remove_stop(tour, tour.stops[1].instance_id))
    assert _orders(tour) == [1, 2, 3, 4]

    tour = _run(controller.move_stop(tour, tour.stops[3].instance_id, 1))
    assert _orders(tour) == [1, 2, 3, 4]

    ids = [stop.instance_id for stop in tour.stops]
    tour = _run(controller.reorder(tour, [ids[0], ids[3], ids[1], ids[2]]))
    assert _orders(tour) == [1, 2, 3, 4]

    tour = _run(controller.remove_stop(tour, tour.stops[-1].instance_id))
    tour = _run(controller.add_stop(tour, "S1"))
    assert _orders(tour) == [1, 2, 3, 4]
    assert len({stop.instance_id for stop in tour.stops}) == 4


def test_scenario_c_removing_second_stop_recalculates_from_new_second() -> None:
    table = {("S1", "S2"): 600.0, ("S2", "S3"): 600.0, ("S3", "S4"): 600.0, ("S1", "S3"): 1200.0}
    provider = ScriptedProvider(matrix_travel(ALL_SITES, table))
    controller = _controller(provider)
    tour = _build(controller, "S1", "S2", "S3", "S4")
    assert _arrivals(tour) == [T0 + timedelta(minutes=m) for m in (0, 15, 30, 45)]
    provider.calls.clear()

    tour = _run(controller.remove_stop(tour, tour.stops[1].instance_id))

    assert [stop.stop_ref for stop in tour.stops] == ["S1", "S3", "S4"]
    assert _orders(tour) == [1, 2, 3]
    assert _arrivals(tour) == [T0, T0 + timedelta(minutes=25), T0 + timedelta(minutes=40)]
    assert provider.calls[0] == (S1.coordinates, S3.coordinates, T0 + timedelta(minutes=5))


def test_removing_last_stop_needs_no_recalculation() -> None:
    provider = ScriptedProvider()
    controller = _controller(provider)
    tour = _build(controller, "S1", "S2", "S3")
    before = _arrivals(tour)
    provider.calls.clear()

    tour = _run(controller.remove_stop(tour, tour.stops[-1].instance_id))

    assert _arrivals(tour) == before[:2]
    assert provider.calls == []


def test_removing_first_stop_anchors_successor_at_start() -> None:
    controller = _controller()
    tour = _build(controller, "S1", "S2", "S3")

    tour = _run(controller.remove_stop(tour, tour.stops[0].instance_id))

    assert [stop.stop_ref for stop in tour.stops] == ["S2", "S3"]
    assert _arrivals(tour) == [T0, T0 + timedelta(minutes=15)]


def test_duplicate_sites_get_independent_occurrences() -> None:
    controller = _controller()
    tour = _build(controller, "S1", "S2", "S3", "S2")

    first, second = tour.occurrences_of("S2")
    assert first.instance_id != second.instance_id
    assert first.stop_ref == second.stop_ref == "S2"

    moved = _run(controller.move_stop(tour, second.instance_id, 1))
    assert [stop.instance_id for stop in moved.stops][1] == second.instance_id
    assert [stop.instance_id for stop in moved.stops][2] == first.instance_id

    removed = _run(controller.remove_stop(tour, first.instance_id))
    assert [stop.stop_ref for stop in removed.stops] == ["S1", "S3", "S2"]
    assert removed.stops[2].instance_id == second.instance_id


def test_scenario_e_dwell_edit_through_controller() -> None:
    controller = _controller()
    tour = _build(controller, "S1", "S2", "S3")
    before = _arrivals(tour)

    tour = _run(controller.edit_dwell(tour, tour.stops[1].instance_id, 20))

    after = _arrivals(tour)
    assert after[:2] == before[:2]
    assert after[2] - before[2] == timedelta(minutes=15)
    assert tour.stops[1].dwell_minutes == 20


def test_manual_arrival_is_kept_and_propagated() -> None:
    controller = _controller()
    tour = _build(controller, "S1", "S2", "S3")
    manual = T0 + timedelta(hours=1)

    tour = _run(controller.edit_arrival(tour, tour.stops[1].instance_id, manual))

    assert tour.stops[1].arrival_time == manual
    assert tour.stops[1].schedule_status == "manual"
    assert tour.stops[2].arrival_time == manual + timedelta(minutes=15)
    assert tour.stops[0].arrival_time == T0


def test_editing_first_arrival_moves_tour_start() -> None:
    controller = _controller()
    tour = _build(controller, "S1", "S2")
    later = T0 + timedelta(minutes=30)

    tour = _run(controller.edit_arrival(tour, tour.stops[0].instance_id, later))

    assert tour.start_time == later
    assert _arrivals(tour) == [later, later + timedelta(minutes=15)]


def test_failed_recalculation_keeps_edit_and_flags_stale_times() -> None:
    def fail(origin, destination, departure):
        return destination == S3.coordinates

    controller = _controller(ScriptedProvider(fail=fail))
    tour = _build(controller, "S1", "S2")

    tour = _run(controller.add_stop(tour, "S3"))

    assert [stop.stop_ref for stop in tour.stops] == ["S1", "S2", "S3"]
    assert tour.stops[2].schedule_status == "stale"
    assert "stop 3" in tour.schedule_error

    tour = _run(controller.recalculate(tour, 1, allow_fallback=True))
    assert [stop.schedule_status for stop in tour.stops] == ["confirmed", "confirmed", "estimated"]
    assert tour.schedule_error is None

def test_stop_added_after_a_stale_stop_is_not_confirmed() -> None:
    def fail(origin, destination, departure):
        return origin == S2.coordinates and destination == S3.coordinates

    controller = _controller(ScriptedProvider(fail=fail))

    tour = _build(controller, "S1", "S2", "S3", "S4")

    assert [stop.schedule_status for stop in tour.stops] == ["confirmed", "confirmed", "stale", "stale"]
    assert "stop 3" in tour.schedule_error



def test_unknown_instance_and_bad_positions_are_rejected() -> None:
    controller = _controller()
    tour = _build(controller, "S1", "S2")

    with pytest.raises(StopNotFound):
        _run(controller.edit_dwell(tour, "missing", 10))
    with pytest.raises(ValueError):
        _run(controller.move_stop(tour, tour.stops[0].instance_id, 5))
    with pytest.raises(ValueError):
        _run(controller.reorder(tour, [tour.stops[0].instance_id]))


def test_optimize_applies_optimizer_arrival_times() -> None:
    table = {
        ("S1", "S2"): 600.0,
        ("S1", "S3"): 1200.0,
        ("S2", "S3"): 600.0,
        ("S3", "S4"): 600.0,
    }
    controller = _controller(ScriptedProvider(matrix_travel(ALL_SITES, table)))
    tour = _build(controller, "S1", "S3", "S2", "S4")

    outcome = _run(controller.optimize(tour))

    optimized = outcome.tour
    assert [stop.stop_ref for stop in optimized.stops] == ["S1", "S2", "S3", "S4"]
    assert _orders(optimized) == [1, 2, 3, 4]
    assert optimized.stops[0] == tour.stops[0]
    for stop in optimized.stops:
        assert stop.arrival_time == outcome.result.arrival_times[stop.instance_id]
    assert _arrivals(optimized) == [T0 + timedelta(minutes=m) for m in (0, 15, 30, 45)]
    assert optimized.schedule_error is None


def test_optimize_failure_leaves_tour_untouched_unless_fallback_requested() -> None:
    controller = _controller()
    tour = _build(controller, "S1", "S3", "S2", "S4")
    controller.estimator.provider.fail = lambda o, d, dep: True

    with pytest.raises(OptimizationUnavailable):
        _run(controller.optimize(tour))

    outcome = _run(controller.optimize(tour, allow_fallback=True))
    assert outcome.result.estimated is True
    assert [stop.stop_ref for stop in outcome.tour.stops] == ["S1", "S2", "S3", "S4"]
    assert [stop.schedule_status for stop in outcome.tour.stops] == ["confirmed", "estimated", "estimated", "estimated"]
    assert [stop.stop_ref for stop in tour.stops] == ["S1", "S3", "S2", "S4"]


@pytest.mark.parametrize(
    "value, expected",
    [(None, 5), (0, 0), (15, 15), ("20", 20), (-3, 5), (2.5, 5), ("abc", 5), (True, 5), (float("nan"), 5)],
)
def test_normalize_dwell(value, expected) -> None:
    assert normalize_dwell(value, 5) == expected
