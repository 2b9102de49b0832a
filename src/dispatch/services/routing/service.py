"""Delivery planning orchestration service."""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Sequence

from ...config import settings
from ...models.domain import (
    JOB_COMPLETED,
    JOB_IN_PROGRESS,
    JOB_PLANNED,
    STOP_DELIVERED,
    Depot,
    DeliveryJob,
    DeliveryStop,
)
from ...persistence.jobs import JobRepository, StopNotFoundError, job_locks
from ...schemas.delivery import (
    CreateDeliveryRequest,
    DeliveryJobResponse,
    OptimizeMatrixRequest,
    OptimizeMatrixResponse,
    RecomputeDeliveryRequest,
)
from .eta import compute_etas
from .heuristics import optimize_route
from .legs import fetch_legs
from .mapbox_client import MapboxClient, RoutingProviderError, build_coordinate_list
from .models import CostMatrix, Leg, OptimizationResult

ALGORITHM_NAME = "nearest-neighbor-2opt"
DEPOT_KEY = "depot"

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _PlannedStop:
    key: str
    sequence: int
    leg: Leg
    eta: datetime


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _run_heuristics(matrix: CostMatrix, *, freeze_first: bool, start: int = 0, include_return_edge: bool | None = None) -> OptimizationResult:
    return optimize_route(
        matrix,
        start=start,
        freeze_first_stop=freeze_first,
        max_sweeps=settings.two_opt_max_sweeps,
        threshold_seconds=settings.two_opt_threshold_seconds,
        closed_cycle=settings.two_opt_closed_cycle,
        include_return_edge=settings.include_return_edge if include_return_edge is None else include_return_edge,
    )


def _totals(result: OptimizationResult, matrix: CostMatrix) -> dict:
    unit = matrix.unit
    return {
        "distance_meters": result.total_distance,
        "duration_sec": unit.to_seconds(result.total_duration),
        "return_distance_meters": result.return_distance,
        "return_duration_sec": unit.to_seconds(result.return_duration),
        "include_return_edge": result.include_return_edge,
    }


def _mapbox_client() -> MapboxClient:
    try:
        return MapboxClient()
    except ValueError as exc:
        logger.error("Mapbox client initialization failed: %s", exc)
        raise RoutingProviderError("Mapbox is not configured. Please check the DISPATCH_MAPBOX_TOKEN setting.") from exc


def _plan_route(
    depot: Depot,
    stops: Sequence[DeliveryStop],
    *,
    freeze_first: bool,
    start_time: datetime,
    first_sequence: int = 1,
) -> tuple[OptimizationResult, CostMatrix, list[str], list[_PlannedStop]]:
    """Fetch a matrix, sequence the stops, fetch legs and derive ETAs.

    Matrix provider errors propagate unchanged; leg failures degrade to
    placeholder legs.
    """
    client = _mapbox_client()
    keys = [DEPOT_KEY, *(stop.stop_id for stop in stops)]
    coordinates = build_coordinate_list(
        (depot.latitude, depot.longitude),
        [(stop.latitude, stop.longitude) for stop in stops],
    )
    location_by_key = dict(zip(keys, coordinates))

    table = client.table(coordinates)
    matrix = CostMatrix.from_table(table, keys, unit=settings.duration_unit)
    result = _run_heuristics(matrix, freeze_first=freeze_first)

    ordered_keys = [matrix.key_at(row) for row in result.tour]
    legs = fetch_legs(client, [location_by_key[key] for key in ordered_keys])
    etas = compute_etas(legs, start_time, service_minutes=settings.service_minutes)

    planned: list[_PlannedStop] = []
    stop_keys = [key for key in ordered_keys if key != DEPOT_KEY]
    # The depot leads the tour, so leg k arrives at ordered_keys[k + 1].
    for offset, (key, leg, eta) in enumerate(zip(ordered_keys[1:], legs, etas)):
        if key == DEPOT_KEY:
            continue
        planned.append(_PlannedStop(key=key, sequence=first_sequence + offset, leg=leg, eta=eta))
    if len(planned) != len(stop_keys):
        raise RuntimeError(
            f"Route plan covers {len(planned)} of {len(stop_keys)} stops; the depot must lead the tour."
        )
    return result, matrix, ordered_keys, planned


def _apply_plan(job: DeliveryJob, planned: Sequence[_PlannedStop]) -> None:
    stops_by_id = {stop.stop_id: stop for stop in job.stops}
    for item in planned:
        stop = stops_by_id[item.key]
        stop.sequence = item.sequence
        stop.eta = item.eta.isoformat()
        stop.leg = asdict(item.leg)


def _to_response(job: DeliveryJob) -> DeliveryJobResponse:
    payload = asdict(job)
    payload["stops"] = sorted(payload["stops"], key=lambda stop: stop["sequence"])
    return DeliveryJobResponse(**payload)


def create_delivery(payload: CreateDeliveryRequest, repository: JobRepository | None = None) -> DeliveryJobResponse:
    repository = repository or JobRepository()
    seen: set[str] = set()
    for order in payload.orders:
        if order.order_id in seen:
            raise ValueError(f"Order '{order.order_id}' appears more than once in the request.")
        seen.add(order.order_id)

    depot = Depot(code=payload.depot.code, latitude=payload.depot.latitude, longitude=payload.depot.longitude)
    stops = [
        DeliveryStop(
            stop_id=uuid.uuid4().hex,
            order_id=order.order_id,
            sequence=index,
            latitude=order.latitude,
            longitude=order.longitude,
        )
        for index, order in enumerate(payload.orders, start=1)
    ]
    job_id = uuid.uuid4().hex
    logger.info("Planning delivery job %s with %d stops from depot %s", job_id, len(stops), depot.code)

    with job_locks.hold(job_id):
        result, matrix, ordered_keys, planned = _plan_route(
            depot,
            stops,
            freeze_first=payload.freeze_first,
            start_time=payload.start_time or _now(),
        )
        timestamp = _now().isoformat()
        job = DeliveryJob(
            job_id=job_id,
            depot=depot,
            status=JOB_PLANNED,
            algorithm=ALGORITHM_NAME,
            totals=_totals(result, matrix),
            stops=stops,
            tour=result.tour,
            route=ordered_keys,
            created_at=timestamp,
            updated_at=timestamp,
        )
        _apply_plan(job, planned)
        repository.save(job)

    return _to_response(job)


def recompute_delivery(
    job_id: str,
    payload: RecomputeDeliveryRequest,
    repository: JobRepository | None = None,
) -> DeliveryJobResponse:
    """Re-plan the stops of a job that have not been delivered yet.

    A fresh matrix is built from the depot and the outstanding stops only;
    delivered stops keep their sequence and outstanding ones are numbered
    after the highest delivered sequence.
    """
    repository = repository or JobRepository()
    with job_locks.hold(job_id):
        job = repository.get(job_id)
        outstanding = job.outstanding_stops()
        if not outstanding:
            raise ValueError(f"No remaining stops to optimize for job '{job_id}'.")

        # Stops can be delivered out of order, so number after the highest delivered sequence.
        last_delivered = max((stop.sequence for stop in job.stops if stop.status == STOP_DELIVERED), default=0)
        logger.info("Recomputing delivery job %s with %d outstanding stops", job_id, len(outstanding))
        result, matrix, ordered_keys, planned = _plan_route(
            job.depot,
            outstanding,
            freeze_first=payload.freeze_first,
            start_time=payload.start_time or _now(),
            first_sequence=last_delivered + 1,
        )
        _apply_plan(job, planned)
        job.totals = _totals(result, matrix)
        job.tour = result.tour
        job.route = ordered_keys
        job.updated_at = _now().isoformat()
        repository.save(job)

    return _to_response(job)


def mark_delivered(job_id: str, stop_id: str, repository: JobRepository | None = None) -> DeliveryJobResponse:
    repository = repository or JobRepository()
    with job_locks.hold(job_id):
        job = repository.get(job_id)
        stop = next((stop for stop in job.stops if stop.stop_id == stop_id), None)
        if stop is None:
            raise StopNotFoundError(f"Delivery stop '{stop_id}' not found in job '{job_id}'.")

        stop.status = STOP_DELIVERED
        job.status = JOB_IN_PROGRESS if job.outstanding_stops() else JOB_COMPLETED
        job.updated_at = _now().isoformat()
        repository.save(job)
        logger.info("Stop %s of job %s delivered; job is %s", stop_id, job_id, job.status)

    return _to_response(job)


def get_delivery(job_id: str, repository: JobRepository | None = None) -> DeliveryJobResponse:
    repository = repository or JobRepository()
    return _to_response(repository.get(job_id))


def optimize_matrix(payload: OptimizeMatrixRequest) -> OptimizeMatrixResponse:
    """Sequence a caller-supplied matrix without contacting any provider."""
    keys = payload.keys if payload.keys is not None else [str(i) for i in range(len(payload.durations))]
    matrix = CostMatrix.from_table(
        {"durations": payload.durations, "distances": payload.distances},
        keys,
        unit=payload.duration_unit or settings.duration_unit,
    )
    if matrix.size and payload.start_index >= matrix.size:
        raise ValueError(f"Start index {payload.start_index} is outside the cost matrix (size {matrix.size}).")

    result = _run_heuristics(
        matrix,
        freeze_first=payload.freeze_first,
        start=payload.start_index,
        include_return_edge=payload.include_return_edge,
    )
    return OptimizeMatrixResponse(
        tour=result.tour,
        ordered_keys=[matrix.key_at(row) for row in result.tour],
        total_distance=result.total_distance,
        total_duration=result.total_duration,
        return_distance=result.return_distance,
        return_duration=result.return_duration,
        include_return_edge=result.include_return_edge,
    )
