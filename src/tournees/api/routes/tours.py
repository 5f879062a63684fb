"""Tour editing endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ...schemas.tours import (
    AddStopRequest,
    ArrivalUpdateRequest,
    CreateTourRequest,
    DwellUpdateRequest,
    MoveStopRequest,
    OptimizationSummaryModel,
    OptimizeRequest,
    OptimizeResponse,
    RecalculateRequest,
    ReorderRequest,
    RouteLegModel,
    TourModel,
    TourRouteResponse,
)
from ...services.outputs.tour_formatter import tour_to_csv, tour_to_json
from ...services.routing.errors import (
    ConsistencyViolation,
    InvalidCoordinates,
    OptimizationInProgress,
    OptimizationUnavailable,
    ProviderUnavailable,
    StopNotFound,
)
from ...services.routing.schedule import departure_from
from ...services.tours.session import TourNotFound, TourSession, TourSessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tours", tags=["tours"])


def get_store(request: Request) -> TourSessionStore:
    return request.app.state.tour_sessions


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, HTTPException):
        return exc
    if isinstance(exc, (StopNotFound, TourNotFound)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidCoordinates):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(exc), "site_ids": list(exc.site_ids)},
        )
    if isinstance(exc, OptimizationInProgress):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, (ProviderUnavailable, OptimizationUnavailable)):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{exc} Retry later, or request the approximate fallback (allow_fallback=true).",
        )
    if isinstance(exc, ConsistencyViolation):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Optimization produced an inconsistent tour and was rejected: {exc}",
        )
    if isinstance(exc, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logger.exception(f"Unexpected error handling tour request: {exc}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to process tour request: {exc}",
    )


def _session(store: TourSessionStore, tour_id: str) -> TourSession:
    try:
        return store.get(tour_id)
    except Exception as exc:
        raise _http_error(exc) from exc


@router.post("", response_model=TourModel, status_code=status.HTTP_201_CREATED)
def create_tour(payload: CreateTourRequest, store: TourSessionStore = Depends(get_store)) -> TourModel:
    tour = store.controller.new_tour(
        name=payload.name,
        pole=payload.pole,
        start_time=payload.start_time,
        planned_end_time=payload.planned_end_time,
        created_by=payload.created_by,
    )
    store.open(tour)
    logger.info(f"Created tour {tour.tour_id} ({tour.name}) for pole {tour.pole}")
    return TourModel.from_domain(tour)


@router.get("", response_model=list[str])
def list_tours(store: TourSessionStore = Depends(get_store)) -> list[str]:
    return store.tour_ids()


@router.get("/{tour_id}", response_model=TourModel)
def get_tour(tour_id: str, store: TourSessionStore = Depends(get_store)) -> TourModel:
    return TourModel.from_domain(_session(store, tour_id).tour)


@router.post("/{tour_id}/stops", response_model=TourModel)
async def add_stop(tour_id: str, payload: AddStopRequest, store: TourSessionStore = Depends(get_store)) -> TourModel:
    session = _session(store, tour_id)
    try:
        tour = await session.add_stop(payload.site_id, payload.dwell_minutes, allow_fallback=payload.allow_fallback)
    except Exception as exc:
        raise _http_error(exc) from exc
    return TourModel.from_domain(tour)


@router.delete("/{tour_id}/stops/{instance_id}", response_model=TourModel)
async def remove_stop(
    tour_id: str, instance_id: str, allow_fallback: bool = False, store: TourSessionStore = Depends(get_store)
) -> TourModel:
    session = _session(store, tour_id)
    try:
        tour = await session.remove_stop(instance_id, allow_fallback=allow_fallback)
    except Exception as exc:
        raise _http_error(exc) from exc
    return TourModel.from_domain(tour)


@router.post("/{tour_id}/stops/{instance_id}/move", response_model=TourModel)
async def move_stop(
    tour_id: str, instance_id: str, payload: MoveStopRequest, store: TourSessionStore = Depends(get_store)
) -> TourModel:
    session = _session(store, tour_id)
    try:
        tour = await session.move_stop(instance_id, payload.position - 1, allow_fallback=payload.allow_fallback)
    except Exception as exc:
        raise _http_error(exc) from exc
    return TourModel.from_domain(tour)


@router.put("/{tour_id}/order", response_model=TourModel)
async def reorder(tour_id: str, payload: ReorderRequest, store: TourSessionStore = Depends(get_store)) -> TourModel:
    session = _session(store, tour_id)
    try:
        tour = await session.reorder(payload.instance_ids, allow_fallback=payload.allow_fallback)
    except Exception as exc:
        raise _http_error(exc) from exc
    return TourModel.from_domain(tour)


@router.patch("/{tour_id}/stops/{instance_id}/dwell", response_model=TourModel)
async def edit_dwell(
    tour_id: str, instance_id: str, payload: DwellUpdateRequest, store: TourSessionStore = Depends(get_store)
) -> TourModel:
    session = _session(store, tour_id)
    try:
        tour = await session.edit_dwell(instance_id, payload.dwell_minutes, allow_fallback=payload.allow_fallback)
    except Exception as exc:
        raise _http_error(exc) from exc
    return TourModel.from_domain(tour)


@router.patch("/{tour_id}/stops/{instance_id}/arrival", response_model=TourModel)
async def edit_arrival(
    tour_id: str, instance_id: str, payload: ArrivalUpdateRequest, store: TourSessionStore = Depends(get_store)
) -> TourModel:
    session = _session(store, tour_id)
    try:
        tour = await session.edit_arrival(instance_id, payload.arrival_time, allow_fallback=payload.allow_fallback)
    except Exception as exc:
        raise _http_error(exc) from exc
    return TourModel.from_domain(tour)


@router.post("/{tour_id}/optimize", response_model=OptimizeResponse)
async def optimize(
    tour_id: str, payload: OptimizeRequest | None = None, store: TourSessionStore = Depends(get_store)
) -> OptimizeResponse:
    session = _session(store, tour_id)
    payload = payload or OptimizeRequest()
    try:
        outcome = await session.optimize(allow_fallback=payload.allow_fallback)
    except Exception as exc:
        raise _http_error(exc) from exc
    return OptimizeResponse(
        tour=TourModel.from_domain(outcome.tour),
        optimization=OptimizationSummaryModel.from_result(outcome.result, outcome.applied),
    )


@router.post("/{tour_id}/recalculate", response_model=TourModel)
async def recalculate(
    tour_id: str, payload: RecalculateRequest | None = None, store: TourSessionStore = Depends(get_store)
) -> TourModel:
    session = _session(store, tour_id)
    payload = payload or RecalculateRequest()
    try:
        tour = await session.recalculate(payload.from_position - 1, allow_fallback=payload.allow_fallback)
    except Exception as exc:
        raise _http_error(exc) from exc
    return TourModel.from_domain(tour)


@router.get("/{tour_id}/route", response_model=TourRouteResponse)
async def route_summary(tour_id: str, store: TourSessionStore = Depends(get_store)) -> TourRouteResponse:
    """Road geometry and traffic status per leg, for map display."""
    session = _session(store, tour_id)
    tour = session.tour
    try:
        sites = store.controller.sites_for(tour)
        departures = [departure_from(stop) for stop in tour.stops[:-1]]
        legs = await store.controller.estimator.route_legs(sites, departures)
    except Exception as exc:
        raise _http_error(exc) from exc
    return TourRouteResponse(
        tour_id=tour.tour_id,
        total_distance_km=sum(leg.distance_km for leg in legs),
        total_travel_time_min=sum(leg.travel_time_s for leg in legs) / 60.0,
        legs=[RouteLegModel.from_domain(leg) for leg in legs],
    )


@router.post("/{tour_id}/save", status_code=status.HTTP_200_OK)
def save_tour(tour_id: str, store: TourSessionStore = Depends(get_store)) -> dict:
    try:
        saved_id = store.save(tour_id)
    except Exception as exc:
        raise _http_error(exc) from exc
    return {"success": True, "tour_id": saved_id}


@router.post("/{tour_id}/export", status_code=status.HTTP_200_OK)
def export_tour(tour_id: str, store: TourSessionStore = Depends(get_store)) -> dict:
    """Write a JSON summary and a CSV of stops to a timestamped output directory."""
    session = _session(store, tour_id)
    storage = store.storage
    if storage is None:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="No storage configured.")
    tour = session.tour
    sites = store.controller.known_sites(tour.stops)
    run_dir = storage.make_run_directory(prefix=f"tour_{tour.tour_id}")
    storage.write_json(run_dir / "summary.json", tour_to_json(tour))
    storage.write_csv(run_dir / "stops.csv", tour_to_csv(tour, sites))
    return {"success": True, "path": str(run_dir)}
