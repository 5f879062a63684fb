"""Error kinds raised by the routing and scheduling engine."""

from __future__ import annotations

from typing import Iterable


class RoutingError(Exception):
    """Base class for tour routing failures."""


class InvalidCoordinates(RoutingError, ValueError):
    """A site lacks usable latitude/longitude. Never retried."""

    def __init__(self, site_ids: Iterable[str], message: str | None = None) -> None:
        self.site_ids = tuple(site_ids)
        super().__init__(
            message or f"Sites without usable coordinates: {', '.join(self.site_ids) or 'unknown'}"
        )


class StopNotFound(RoutingError, LookupError):
    """A site or tour stop reference could not be resolved."""


class ProviderUnavailable(RoutingError):
    """The routing provider failed or could not be reached."""


class OptimizationUnavailable(RoutingError):
    """The optimizer could not build a complete result from real travel times."""


class ConsistencyViolation(RoutingError):
    """An optimizer result broke a tour invariant (lost stops, moved endpoints)."""


class OptimizationInProgress(RoutingError):
    """An optimization for the same tour is still outstanding."""
