"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


def _get_mapbox_health_check():
    """Lazy import to avoid startup failures."""
    from ...services.routing.mapbox_client import check_health as mapbox_health_check
    return mapbox_health_check


@router.get("/health/mapbox", status_code=status.HTTP_200_OK)
def health_mapbox() -> dict:
    """Check Mapbox matrix service health."""
    mapbox_health_check = _get_mapbox_health_check()
    return {"service": "mapbox", "healthy": mapbox_health_check()}
