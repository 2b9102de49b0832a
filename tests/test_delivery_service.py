from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from src.dispatch.persistence.filesystem import FileStorage
from src.dispatch.persistence.jobs import JobNotFoundError, JobRepository, StopNotFoundError
from src.dispatch.schemas.delivery import (
    CreateDeliveryRequest,
    DepotModel,
    OptimizeMatrixRequest,
    OrderModel,
    RecomputeDeliveryRequest,
)
from src.dispatch.services.routing import service as routing_service
from src.dispatch.services.routing.mapbox_client import RoutingProviderError
from src.dispatch.services.routing.models import Leg, MatrixValidationError

START = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
DEPOT = DepotModel(code="KITCHEN", latitude=0.0, longitude=0.0)


def _seconds(a, b) -> int:
    return round(abs(a[0] - b[0]) * 10000 + abs(a[1] - b[1]) * 10000)


class DummyMapbox:
    """Travel time is 10000 seconds per degree; distance is ten meters per second."""

    def __init__(self, fail_table: bool = False, fail_route: bool = False):
        self.fail_table = fail_table
        self.fail_route = fail_route
        self.table_calls: list[list] = []

    def table(self, coordinates):
        self.table_calls.append(list(coordinates))
        if self.fail_table:
            raise RoutingProviderError("Matrix API failed: Service Unavailable")
        durations = [[_seconds(a, b) for b in coordinates] for a in coordinates]
        return {
            "durations": durations,
            "distances": [[value * 10 for value in row] for row in durations],
        }

    def route_legs(self, coordinates):
        if self.fail_route:
            raise RoutingProviderError("Directions API failed")
        return [
            Leg(distance_meters=_seconds(a, b) * 10, duration_sec=_seconds(a, b))
            for a, b in zip(coordinates, coordinates[1:])
        ]

    def directions(self, origin, destination):
        return Leg(distance_meters=_seconds(origin, destination) * 10, duration_sec=_seconds(origin, destination))


@pytest.fixture
def repository(tmp_path: Path) -> JobRepository:
    return JobRepository(FileStorage(root=tmp_path))


@pytest.fixture
def mapbox(monkeypatch) -> DummyMapbox:
    dummy = DummyMapbox()
    monkeypatch.setattr(routing_service, "MapboxClient", lambda: dummy)
    return dummy


def _create(repository, freeze_first: bool = False):
    request = CreateDeliveryRequest(
        depot=DEPOT,
        orders=[
            OrderModel(order_id="far", latitude=0.0, longitude=0.03),
            OrderModel(order_id="near", latitude=0.0, longitude=0.01),
        ],
        freeze_first=freeze_first,
        start_time=START,
    )
    return routing_service.create_delivery(request, repository=repository)


def test_create_delivery_sequences_stops_by_travel_time(mapbox, repository):
    response = _create(repository)

    assert response.status == "Planned"
    assert response.algorithm == "nearest-neighbor-2opt"
    assert response.tour == [0, 2, 1]
    assert [stop.order_id for stop in response.stops] == ["near", "far"]
    assert [stop.sequence for stop in response.stops] == [1, 2]
    assert response.stops[0].eta == (START + timedelta(seconds=100)).isoformat()
    assert response.stops[1].eta == (START + timedelta(seconds=100 + 180 + 200)).isoformat()
    assert response.stops[0].leg.duration_sec == 100
    assert response.stops[1].leg.distance_meters == 2000

    assert response.totals["duration_sec"] == 300
    assert response.totals["distance_meters"] == 3000
    assert response.totals["return_duration_sec"] == 300
    assert response.totals["include_return_edge"] is False

    assert mapbox.table_calls[0][0] == (0.0, 0.0)
    stored = repository.get(response.job_id)
    assert stored.tour == [0, 2, 1]
    assert {stop.order_id: stop.sequence for stop in stored.stops} == {"near": 1, "far": 2}


def test_create_delivery_rejects_duplicate_orders(mapbox, repository):
    request = CreateDeliveryRequest(
        depot=DEPOT,
        orders=[
            OrderModel(order_id="o1", latitude=0.0, longitude=0.01),
            OrderModel(order_id="o1", latitude=0.0, longitude=0.02),
        ],
    )
    with pytest.raises(ValueError, match="more than once"):
        routing_service.create_delivery(request, repository=repository)


def test_matrix_failure_aborts_without_saving(monkeypatch, repository, tmp_path):
    monkeypatch.setattr(routing_service, "MapboxClient", lambda: DummyMapbox(fail_table=True))

    with pytest.raises(RoutingProviderError, match="Service Unavailable"):
        _create(repository)
    assert list((tmp_path / "jobs").iterdir()) == []


def test_leg_failure_falls_back_to_single_edges(monkeypatch, repository):
    monkeypatch.setattr(routing_service, "MapboxClient", lambda: DummyMapbox(fail_route=True))

    response = _create(repository)

    assert [stop.leg.duration_sec for stop in response.stops] == [100, 200]
    assert not any(stop.leg.fallback for stop in response.stops)


def test_missing_token_surfaces_as_provider_error(monkeypatch, repository):
    from src.dispatch.config import settings

    monkeypatch.setattr(settings, "mapbox_token", None)
    with pytest.raises(RoutingProviderError, match="not configured"):
        _create(repository)


def test_recompute_only_plans_outstanding_stops(mapbox, repository):
    created = _create(repository)
    near = created.stops[0]
    routing_service.mark_delivered(created.job_id, near.stop_id, repository=repository)

    response = routing_service.recompute_delivery(
        created.job_id,
        RecomputeDeliveryRequest(start_time=START),
        repository=repository,
    )

    assert len(mapbox.table_calls[-1]) == 2
    assert response.tour == [0, 1]
    assert response.totals["duration_sec"] == 300
    by_order = {stop.order_id: stop for stop in response.stops}
    assert by_order["near"].status == "Delivered"
    assert by_order["near"].sequence == 1
    assert by_order["far"].sequence == 2
    assert by_order["far"].eta == (START + timedelta(seconds=300)).isoformat()



def test_recompute_after_out_of_order_delivery_keeps_sequences_unique(mapbox, repository):
    request = CreateDeliveryRequest(
        depot=DEPOT,
        orders=[
            OrderModel(order_id="a", latitude=0.0, longitude=0.01),
            OrderModel(order_id="b", latitude=0.0, longitude=0.02),
            OrderModel(order_id="c", latitude=0.0, longitude=0.03),
        ],
        start_time=START,
    )
    created = routing_service.create_delivery(request, repository=repository)
    last = max(created.stops, key=lambda stop: stop.sequence)
    assert last.order_id == "c"
    routing_service.mark_delivered(created.job_id, last.stop_id, repository=repository)

    response = routing_service.recompute_delivery(
        created.job_id,
        RecomputeDeliveryRequest(start_time=START),
        repository=repository,
    )

    sequences = [stop.sequence for stop in response.stops]
    assert len(set(sequences)) == len(sequences)
    by_order = {stop.order_id: stop for stop in response.stops}
    assert by_order["c"].sequence == 3
    assert by_order["a"].sequence == 4
    assert by_order["b"].sequence == 5


def test_route_keys_follow_the_latest_plan(mapbox, repository):
    created = _create(repository)
    near, far = created.stops
    assert created.route == [routing_service.DEPOT_KEY, near.stop_id, far.stop_id]
    routing_service.mark_delivered(created.job_id, near.stop_id, repository=repository)

    response = routing_service.recompute_delivery(
        created.job_id,
        RecomputeDeliveryRequest(start_time=START),
        repository=repository,
    )

    assert response.tour == [0, 1]
    assert response.route == [routing_service.DEPOT_KEY, far.stop_id]
    stop_ids = {stop.stop_id for stop in response.stops}
    assert all(key == routing_service.DEPOT_KEY or key in stop_ids for key in response.route)
    assert repository.get(created.job_id).route == response.route

def test_recompute_without_outstanding_stops_fails(mapbox, repository):
    created = _create(repository)
    for stop in created.stops:
        routing_service.mark_delivered(created.job_id, stop.stop_id, repository=repository)

    with pytest.raises(ValueError, match="No remaining stops"):
        routing_service.recompute_delivery(created.job_id, RecomputeDeliveryRequest(), repository=repository)


def test_mark_delivered_tracks_job_status(mapbox, repository):
    created = _create(repository)
    first, second = created.stops

    partial = routing_service.mark_delivered(created.job_id, first.stop_id, repository=repository)
    assert partial.status == "InProgress"

    done = routing_service.mark_delivered(created.job_id, second.stop_id, repository=repository)
    assert done.status == "Completed"
    assert all(stop.status == "Delivered" for stop in done.stops)


def test_unknown_job_and_stop(mapbox, repository):
    with pytest.raises(JobNotFoundError):
        routing_service.get_delivery("missing", repository=repository)

    created = _create(repository)
    with pytest.raises(StopNotFoundError):
        routing_service.mark_delivered(created.job_id, "missing", repository=repository)


def test_optimize_matrix_three_stop_scenario():
    response = routing_service.optimize_matrix(
        OptimizeMatrixRequest(
            durations=[[0, 10, 20], [10, 0, 5], [20, 5, 0]],
            distances=[[0, 100, 200], [100, 0, 50], [200, 50, 0]],
            keys=["depot", "a", "b"],
        )
    )

    assert response.tour == [0, 1, 2]
    assert response.ordered_keys == ["depot", "a", "b"]
    assert response.total_duration == 15
    assert response.total_distance == 150
    assert response.return_duration == 20


def test_optimize_matrix_freeze_first_and_return_edge():
    response = routing_service.optimize_matrix(
        OptimizeMatrixRequest(
            durations=[[0, 10, 20], [10, 0, 5], [20, 5, 0]],
            distances=[[0, 100, 200], [100, 0, 50], [200, 50, 0]],
            start_index=2,
            freeze_first=True,
            include_return_edge=True,
        )
    )

    assert response.tour == [2, 1, 0]
    assert response.total_duration == 35
    assert response.include_return_edge is True


def test_optimize_matrix_rejects_size_mismatch():
    with pytest.raises(MatrixValidationError, match="4 waypoints"):
        routing_service.optimize_matrix(
            OptimizeMatrixRequest(
                durations=[[0, 1, 2], [1, 0, 1], [2, 1, 0]],
                distances=[[0, 1, 2], [1, 0, 1], [2, 1, 0]],
                keys=["depot", "a", "b", "c"],
            )
        )


def test_optimize_matrix_rejects_start_outside_matrix():
    with pytest.raises(ValueError, match="outside"):
        routing_service.optimize_matrix(
            OptimizeMatrixRequest(durations=[[0, 1], [1, 0]], distances=[[0, 1], [1, 0]], start_index=3)
        )
