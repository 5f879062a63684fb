"""Site reference data endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status

from ...schemas.tours import SiteModel

router = APIRouter(prefix="/sites", tags=["sites"])


@router.get("", response_model=list[SiteModel])
def list_sites(request: Request, pole: Optional[str] = Query(default=None)) -> list[SiteModel]:
    directory = request.app.state.sites
    try:
        sites = directory.by_pole(pole) if pole else directory.all()
    except (FileNotFoundError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [SiteModel.from_domain(site) for site in sites]


@router.post("/refresh", status_code=status.HTTP_200_OK)
def refresh_sites(request: Request) -> dict:
    """Reload site data without waiting for the cache to expire."""
    directory = request.app.state.sites
    try:
        directory.refresh()
    except (FileNotFoundError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"success": True, "count": len(directory.all())}
