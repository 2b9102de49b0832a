"""Leg retrieval with per-edge fallback."""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

from .mapbox_client import RoutingProviderError, line_feature
from .models import Leg

logger = logging.getLogger(__name__)


class DirectionsProvider(Protocol):
    def route_legs(self, coordinates: Sequence[tuple[float, float]]) -> list[Leg]: ...

    def directions(self, origin: tuple[float, float], destination: tuple[float, float]) -> Leg: ...


def placeholder_leg(origin: tuple[float, float], destination: tuple[float, float]) -> Leg:
    """Zero-cost leg drawn as a straight line between the raw coordinates."""
    return Leg(
        distance_meters=0.0,
        duration_sec=0.0,
        geometry=line_feature([[origin[1], origin[0]], [destination[1], destination[0]]]),
        fallback=True,
    )


def fetch_legs(provider: DirectionsProvider, coordinates: Sequence[tuple[float, float]]) -> list[Leg]:
    """Fetch legs for an ordered ``(lat, lng)`` path without ever aborting.

    The whole path is requested at once first. If that fails each edge is
    requested on its own, and an edge that still fails is replaced by
    :func:`placeholder_leg`.
    """
    if len(coordinates) < 2:
        return []
    try:
        return provider.route_legs(coordinates)
    except (RoutingProviderError, ValueError) as exc:
        logger.warning("Route directions failed for %d waypoints (%s); fetching legs individually", len(coordinates), exc)

    legs: list[Leg] = []
    for index, (origin, destination) in enumerate(zip(coordinates, coordinates[1:])):
        try:
            legs.append(provider.directions(origin, destination))
        except (RoutingProviderError, ValueError) as exc:
            logger.warning("Failed to get leg %d to %d: %s; using straight-line placeholder", index, index + 1, exc)
            legs.append(placeholder_leg(origin, destination))
    return legs
