"""Delivery planning endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status

from ...persistence.jobs import JobNotFoundError, StopNotFoundError
from ...schemas.delivery import (
    CreateDeliveryRequest,
    DeliveryJobResponse,
    OptimizeMatrixRequest,
    OptimizeMatrixResponse,
    RecomputeDeliveryRequest,
)
from ...services.routing import service as delivery_service
from ...services.routing.mapbox_client import ProviderLimitError, RoutingProviderError

router = APIRouter(prefix="/deliveries", tags=["deliveries"])

logger = logging.getLogger(__name__)


def _to_http_error(exc: Exception, action: str) -> HTTPException:
    if isinstance(exc, (JobNotFoundError, StopNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ProviderLimitError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, RoutingProviderError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logger.exception("Error while trying to %s: %s", action, exc)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}: {exc}",
    )


@router.post("", response_model=DeliveryJobResponse, status_code=status.HTTP_201_CREATED)
def create(payload: CreateDeliveryRequest) -> DeliveryJobResponse:
    try:
        return delivery_service.create_delivery(payload)
    except Exception as exc:
        raise _to_http_error(exc, "create delivery job") from exc


@router.post("/optimize", response_model=OptimizeMatrixResponse, status_code=status.HTTP_200_OK)
def optimize(payload: OptimizeMatrixRequest) -> OptimizeMatrixResponse:
    """Sequence a caller-supplied cost matrix."""
    try:
        return delivery_service.optimize_matrix(payload)
    except Exception as exc:
        raise _to_http_error(exc, "optimize route") from exc


@router.get("/{job_id}", response_model=DeliveryJobResponse, status_code=status.HTTP_200_OK)
def get_job(job_id: str) -> DeliveryJobResponse:
    try:
        return delivery_service.get_delivery(job_id)
    except Exception as exc:
        raise _to_http_error(exc, "load delivery job") from exc


@router.post("/{job_id}/recompute", response_model=DeliveryJobResponse, status_code=status.HTTP_200_OK)
def recompute(job_id: str, payload: RecomputeDeliveryRequest | None = None) -> DeliveryJobResponse:
    """Re-plan the stops of a job that are still outstanding."""
    try:
        return delivery_service.recompute_delivery(job_id, payload or RecomputeDeliveryRequest())
    except Exception as exc:
        raise _to_http_error(exc, "recompute delivery job") from exc


@router.post(
    "/{job_id}/stops/{stop_id}/delivered",
    response_model=DeliveryJobResponse,
    status_code=status.HTTP_200_OK,
)
def delivered(job_id: str, stop_id: str) -> DeliveryJobResponse:
    try:
        return delivery_service.mark_delivered(job_id, stop_id)
    except Exception as exc:
        raise _to_http_error(exc, "mark stop delivered") from exc
