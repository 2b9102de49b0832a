"""Domain models for delivery jobs and their stops."""

from dataclasses import dataclass, field
from typing import Optional

JOB_PLANNED = "Planned"
JOB_IN_PROGRESS = "InProgress"
JOB_COMPLETED = "Completed"

STOP_PLANNED = "Planned"
STOP_DELIVERED = "Delivered"


@dataclass(slots=True)
class Depot:
    """Start location of every route in a job (a restaurant or warehouse)."""

    code: str
    latitude: float
    longitude: float


@dataclass(slots=True)
class DeliveryStop:
    """One drop-off within a delivery job."""

    stop_id: str
    order_id: str
    sequence: int
    latitude: float
    longitude: float
    status: str = STOP_PLANNED
    eta: Optional[str] = None
    leg: Optional[dict] = None


@dataclass(slots=True)
class DeliveryJob:
    """A planned single-vehicle route from a depot through its stops."""

    job_id: str
    depot: Depot
    status: str
    algorithm: str
    totals: dict
    stops: list[DeliveryStop] = field(default_factory=list)
    # Rows of the latest plan's matrix; `route` holds the same order as depot/stop ids.
    tour: list[int] = field(default_factory=list)
    route: list[str] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def outstanding_stops(self) -> list[DeliveryStop]:
        return sorted(
            (stop for stop in self.stops if stop.status != STOP_DELIVERED),
            key=lambda stop: stop.sequence,
        )
