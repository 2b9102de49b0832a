"""Arrival-time scheduling along a finalized route."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Sequence

from .models import Leg

DEFAULT_SERVICE_MINUTES = 3.0


def compute_etas(
    legs: Sequence[Leg],
    start_time: datetime,
    service_minutes: float = DEFAULT_SERVICE_MINUTES,
) -> list[datetime]:
    """Return one arrival time per leg.

    Travel time accumulates leg by leg and ``service_minutes`` is spent at
    every stop except the last one before driving on. Each ETA is the
    arrival at the stop, before its service time.
    """
    if service_minutes < 0:
        raise ValueError("Service time cannot be negative.")

    service = timedelta(minutes=service_minutes)
    current = start_time
    etas: list[datetime] = []
    for index, leg in enumerate(legs):
        if leg.duration_sec < 0:
            raise ValueError(f"Leg {index} has a negative duration ({leg.duration_sec}s).")
        current = current + timedelta(seconds=leg.duration_sec)
        etas.append(current)
        if index < len(legs) - 1:
            current = current + service
    return etas
