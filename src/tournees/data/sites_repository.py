"""Site reference data: CSV loading and a time-bounded lookup cache."""

from __future__ import annotations

import csv
import logging
import time
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from ..config import settings
from ..models.domain import Site
from ..services.routing.errors import StopNotFound

logger = logging.getLogger(__name__)

SiteLoader = Callable[[], Iterable[Site]]


def _coerce_float(value: Optional[str]) -> Optional[float]:
    if value is None or value.strip() == "":
        return None
    try:
        return float(value.strip().replace(",", "."))
    except ValueError:
        return None


def _first(row: dict, *keys: str) -> str:
    for key in keys:
        value = row.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def load_sites_csv(source: Optional[Path] = None) -> tuple[Site, ...]:
    """Load sites from the configured CSV file.

    Rows without coordinates are kept: they can be listed and added to a
    tour, but every distance-based operation rejects them until corrected.
    """

    csv_path = source or settings.sites_file
    if not csv_path.exists():
        raise FileNotFoundError(f"Sites file not found: {csv_path}")

    sites: list[Site] = []
    with csv_path.open(mode="r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        if not reader.fieldnames:
            raise ValueError(f"Sites file '{csv_path}' is missing a header row.")
        for row in reader:
            site_id = _first(row, "id", "site_id", "siteId")
            if not site_id:
                continue
            site = Site(
                site_id=site_id,
                name=_first(row, "nom", "name") or site_id,
                address=_first(row, "adresse", "address"),
                postal_code=_first(row, "codePostal", "postal_code"),
                city=_first(row, "ville", "city"),
                latitude=_coerce_float(row.get("latitude")),
                longitude=_coerce_float(row.get("longitude")),
                pole=_first(row, "pole") or None,
            )
            if site.coordinates is None:
                logger.warning(f"Site {site_id} has no usable coordinates")
            sites.append(site)
    return tuple(sites)


class SiteDirectory:
    """Site lookup with a time-based cache.

    Built once at application start and passed to whoever needs site lookups.
    """

    def __init__(
        self,
        loader: SiteLoader,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self.ttl_seconds = settings.site_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._sites: dict[str, Site] = {}
        self._loaded_at: Optional[float] = None

    @classmethod
    def from_sites(cls, sites: Sequence[Site], ttl_seconds: float | None = None) -> "SiteDirectory":
        snapshot = tuple(sites)
        return cls(lambda: snapshot, ttl_seconds=ttl_seconds)

    def _expired(self) -> bool:
        if self._loaded_at is None:
            return True
        return self._clock() - self._loaded_at >= self.ttl_seconds

    def refresh(self) -> None:
        sites = list(self._loader())
        self._sites = {site.site_id: site for site in sites}
        self._loaded_at = self._clock()
        logger.info(f"Loaded {len(self._sites)} sites")

    def _ensure_fresh(self) -> None:
        if self._expired():
            self.refresh()

    def all(self) -> list[Site]:
        self._ensure_fresh()
        return list(self._sites.values())

    def by_pole(self, pole: str) -> list[Site]:
        return [site for site in self.all() if site.pole == pole]

    def resolve(self, site_id: str) -> Site:
        self._ensure_fresh()
        site = self._sites.get(site_id)
        if site is None:
            raise StopNotFound(f"Site '{site_id}' not found")
        return site

    def resolve_many(self, site_ids: Iterable[str]) -> dict[str, Site]:
        return {site_id: self.resolve(site_id) for site_id in set(site_ids)}
