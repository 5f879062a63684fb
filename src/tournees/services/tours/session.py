"""Per-tour editing sessions: serialises edits and discards superseded results."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from ...models.domain import Tour
from ...persistence.filesystem import FileStorage
from ..routing.errors import OptimizationInProgress
from .controller import OptimizedTour, TourMutationController

logger = logging.getLogger(__name__)


class TourNotFound(LookupError):
    """No session or saved file exists for the requested tour id."""


class TourSession:
    """Holds the current state of one tour being edited.

    Edits run one at a time, each reading ``tour`` after the previous edit
    has committed. Optimization runs outside that queue on a snapshot and
    its result is dropped if any edit was committed while it was awaiting
    the routing provider.
    """

    def __init__(self, tour: Tour, controller: TourMutationController) -> None:
        self._tour = tour
        self.controller = controller
        self.revision = 0
        self._optimizing = False
        self._lock = asyncio.Lock()

    @property
    def tour(self) -> Tour:
        return self._tour

    @property
    def optimizing(self) -> bool:
        return self._optimizing

    def _commit_optimized(self, updated: Tour, started_revision: int) -> bool:
        if self.revision != started_revision:
            logger.warning(
                f"Tour {self._tour.tour_id}: discarding optimization result, "
                f"tour changed while it was running (revision {started_revision} -> {self.revision})"
            )
            return False
        self._tour = updated
        self.revision += 1
        return True

    async def _run(self, action: str, operation: Callable[[Tour], Awaitable[Tour]]) -> Tour:
        async with self._lock:
            self._tour = await operation(self._tour)
            self.revision += 1
            logger.debug(f"Tour {self._tour.tour_id}: {action} committed as revision {self.revision}")
            return self._tour

    async def add_stop(self, site_id: str, dwell_minutes: Any = None, *, allow_fallback: bool = False) -> Tour:
        return await self._run(
            "add_stop",
            lambda tour: self.controller.add_stop(tour, site_id, dwell_minutes, allow_fallback=allow_fallback),
        )

    async def remove_stop(self, instance_id: str, *, allow_fallback: bool = False) -> Tour:
        return await self._run(
            "remove_stop",
            lambda tour: self.controller.remove_stop(tour, instance_id, allow_fallback=allow_fallback),
        )

    async def move_stop(self, instance_id: str, new_index: int, *, allow_fallback: bool = False) -> Tour:
        return await self._run(
            "move_stop",
            lambda tour: self.controller.move_stop(tour, instance_id, new_index, allow_fallback=allow_fallback),
        )

    async def reorder(self, instance_ids: list[str], *, allow_fallback: bool = False) -> Tour:
        return await self._run(
            "reorder",
            lambda tour: self.controller.reorder(tour, instance_ids, allow_fallback=allow_fallback),
        )

    async def edit_dwell(self, instance_id: str, dwell_minutes: Any, *, allow_fallback: bool = False) -> Tour:
        return await self._run(
            "edit_dwell",
            lambda tour: self.controller.edit_dwell(tour, instance_id, dwell_minutes, allow_fallback=allow_fallback),
        )

    async def edit_arrival(self, instance_id: str, arrival_time, *, allow_fallback: bool = False) -> Tour:
        return await self._run(
            "edit_arrival",
            lambda tour: self.controller.edit_arrival(tour, instance_id, arrival_time, allow_fallback=allow_fallback),
        )

    async def recalculate(self, from_index: int = 1, *, allow_fallback: bool = False) -> Tour:
        return await self._run(
            "recalculate",
            lambda tour: self.controller.recalculate(tour, from_index, allow_fallback=allow_fallback),
        )

    async def optimize(self, *, allow_fallback: bool = False) -> OptimizedTour:
        if self._optimizing:
            raise OptimizationInProgress(f"Tour {self._tour.tour_id} is already being optimized.")
        self._optimizing = True
        try:
            started = self.revision
            outcome = await self.controller.optimize(self._tour, allow_fallback=allow_fallback)
            async with self._lock:
                applied = self._commit_optimized(outcome.tour, started)
            return OptimizedTour(tour=self._tour, result=outcome.result, applied=applied)
        finally:
            self._optimizing = False


class TourSessionStore:
    """In-memory sessions keyed by tour id, backed by file persistence."""

    def __init__(self, controller: TourMutationController, storage: Optional[FileStorage] = None) -> None:
        self.controller = controller
        self.storage = storage
        self._sessions: dict[str, TourSession] = {}

    def open(self, tour: Tour) -> TourSession:
        session = TourSession(tour, self.controller)
        self._sessions[tour.tour_id] = session
        return session

    def get(self, tour_id: str) -> TourSession:
        session = self._sessions.get(tour_id)
        if session is not None:
            return session
        if self.storage is None:
            raise TourNotFound(f"Tour '{tour_id}' not found")
        try:
            tour = self.storage.load_tour(tour_id)
        except FileNotFoundError as exc:
            raise TourNotFound(f"Tour '{tour_id}' not found") from exc
        return self.open(tour)

    def tour_ids(self) -> list[str]:
        ids = set(self._sessions)
        if self.storage is not None:
            ids.update(self.storage.list_tour_ids())
        return sorted(ids)

    def save(self, tour_id: str) -> str:
        if self.storage is None:
            raise RuntimeError("No storage configured for tours.")
        return self.storage.save_tour(self.get(tour_id).tour)
