"""Delivery planning request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ..services.routing.models import DurationUnit


class DepotModel(BaseModel):
    code: str
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class OrderModel(BaseModel):
    order_id: str
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class CreateDeliveryRequest(BaseModel):
    depot: DepotModel
    orders: List[OrderModel] = Field(..., min_length=1)
    freeze_first: bool = Field(
        default=False,
        description="Rotate the optimized tour so the depot is the first stop.",
    )
    start_time: Optional[datetime] = Field(
        default=None,
        description="Departure time used for ETAs. Defaults to now (UTC).",
    )


class RecomputeDeliveryRequest(BaseModel):
    freeze_first: bool = False
    start_time: Optional[datetime] = None


class LegModel(BaseModel):
    distance_meters: float
    duration_sec: float
    geometry: Optional[dict] = None
    fallback: bool = False


class DeliveryStopModel(BaseModel):
    stop_id: str
    order_id: str
    sequence: int
    latitude: float
    longitude: float
    status: str
    eta: Optional[str] = None
    leg: Optional[LegModel] = None


class DeliveryJobResponse(BaseModel):
    job_id: str
    status: str
    algorithm: str
    depot: DepotModel
    totals: dict
    tour: List[int]
    route: List[str] = Field(
        default_factory=list,
        description="Visiting order as depot/stop ids, aligned with the latest tour.",
    )
    stops: List[DeliveryStopModel]
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class OptimizeMatrixRequest(BaseModel):
    """Run the sequencing heuristics on a caller-supplied matrix."""

    durations: List[List[float]]
    distances: List[List[float]]
    keys: Optional[List[str]] = Field(
        default=None,
        description="Waypoint identifiers, one per matrix row. Defaults to row numbers.",
    )
    start_index: int = Field(default=0, ge=0)
    freeze_first: bool = False
    include_return_edge: Optional[bool] = None
    duration_unit: Optional[DurationUnit] = None


class OptimizeMatrixResponse(BaseModel):
    tour: List[int]
    ordered_keys: List[str]
    total_distance: float
    total_duration: float
    return_distance: float
    return_duration: float
    include_return_edge: bool
