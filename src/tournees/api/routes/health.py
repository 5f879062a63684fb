"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request, status

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


@router.get("/health/routing", status_code=status.HTTP_200_OK)
async def health_routing(request: Request) -> dict:
    """Check that the configured routing provider answers a minimal request."""
    provider = request.app.state.route_provider
    name = type(provider).__name__
    try:
        healthy = await provider.check_health()
        return {"service": name, "healthy": healthy}
    except Exception as e:
        return {"service": name, "healthy": False, "error": str(e)}
