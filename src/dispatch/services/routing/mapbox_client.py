"""HTTP client for the Mapbox matrix and directions services."""

from __future__ import annotations

import logging
from typing import Sequence

import httpx
from shapely.geometry import LineString, Point, mapping
from shapely.ops import substring

from ...config import settings
from .models import Leg

logger = logging.getLogger(__name__)


class RoutingProviderError(RuntimeError):
    """The matrix or directions provider failed or returned an unusable payload."""


class ProviderLimitError(RoutingProviderError):
    """The request exceeds a limit imposed by the provider."""


def _coordinate_path(coordinates: Sequence[tuple[float, float]]) -> str:
    # Mapbox expects "lng,lat;lng,lat;..."
    return ";".join(f"{lng},{lat}" for lat, lng in coordinates)


def line_feature(coordinates: Sequence[Sequence[float]]) -> dict:
    """Wrap ``[lng, lat]`` pairs into a GeoJSON LineString feature."""
    geometry = mapping(LineString(coordinates))
    return {
        "type": "Feature",
        "properties": {},
        "geometry": {
            "type": geometry["type"],
            "coordinates": [list(point) for point in geometry["coordinates"]],
        },
    }


def split_route_geometry(
    coordinates: Sequence[Sequence[float]],
    leg_distances: Sequence[float],
) -> list[dict]:
    """Cut a full route polyline into one feature per leg.

    Each leg gets the stretch of the line proportional to its share of the
    total distance, so consecutive legs meet at the same coordinate.
    """
    if not leg_distances:
        return []
    total = sum(leg_distances)
    if len(coordinates) < 2:
        point = list(coordinates[0]) if coordinates else [0.0, 0.0]
        return [line_feature([point, point]) for _ in leg_distances]

    line = LineString(coordinates)
    features: list[dict] = []
    start_fraction = 0.0
    for index, distance in enumerate(leg_distances):
        if total > 0:
            end_fraction = start_fraction + distance / total
        else:
            end_fraction = (index + 1) / len(leg_distances)
        if index == len(leg_distances) - 1:
            end_fraction = 1.0
        piece = substring(line, start_fraction, min(end_fraction, 1.0), normalized=True)
        if isinstance(piece, Point):
            features.append(line_feature([piece.coords[0], piece.coords[0]]))
        else:
            features.append(line_feature(list(piece.coords)))
        start_fraction = end_fraction
    return features


class MapboxClient:
    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_waypoints: int | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.token = token or settings.mapbox_token
        if not self.token:
            raise ValueError("Mapbox access token is not configured.")
        self.base_url = (base_url or settings.mapbox_base_url).rstrip("/")
        self.profile = profile or settings.mapbox_profile
        self.timeout = timeout if timeout is not None else settings.mapbox_timeout_seconds
        self.max_waypoints = max_waypoints if max_waypoints is not None else settings.matrix_max_waypoints
        self._transport = transport

    def _get_client(self) -> httpx.Client:
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            transport=self._transport,
        )

    def _get_json(self, url: str, params: dict) -> dict:
        query = {"access_token": self.token, **params}
        client = self._get_client()
        try:
            response = client.get(url, params=query)
            if response.status_code == 422:
                raise ProviderLimitError(f"Mapbox rejected the request: {response.text}")
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise RoutingProviderError(
                f"Mapbox request failed with HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            raise RoutingProviderError(f"Failed to reach Mapbox at {self.base_url}: {exc}") from exc
        except ValueError as exc:
            raise RoutingProviderError("Mapbox returned a response that is not valid JSON.") from exc
        except (httpx.HTTPError, OSError) as exc:
            # Protocol, decoding and redirect failures are neither timeouts nor NetworkError.
            raise RoutingProviderError(f"Mapbox request failed: {exc}") from exc
        finally:
            client.close()

        if data.get("code", "Ok") != "Ok":
            message = data.get("message", data.get("code"))
            raise RoutingProviderError(f"Mapbox request failed: {message}")
        return data

    def table(self, coordinates: Sequence[tuple[float, float]]) -> dict:
        """Get the duration (seconds) and distance (meters) matrix for ``(lat, lng)`` points."""
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for a travel matrix.")
        if len(coordinates) > self.max_waypoints:
            raise ProviderLimitError(
                f"Matrix API supports at most {self.max_waypoints} waypoints, got {len(coordinates)}."
            )

        url = f"{self.base_url}/directions-matrix/v1/mapbox/{self.profile}/{_coordinate_path(coordinates)}"
        data = self._get_json(url, {"annotations": "duration,distance"})
        if "durations" not in data or "distances" not in data:
            raise RoutingProviderError("Mapbox matrix response missing durations/distances.")
        logger.info("Fetched %dx%d travel matrix from Mapbox", len(coordinates), len(coordinates))
        return {"durations": data["durations"], "distances": data["distances"]}

    def route_legs(self, coordinates: Sequence[tuple[float, float]]) -> list[Leg]:
        """Get one leg per consecutive pair of ``(lat, lng)`` points in a single request."""
        if len(coordinates) < 2:
            return []

        url = f"{self.base_url}/directions/v5/mapbox/{self.profile}/{_coordinate_path(coordinates)}"
        data = self._get_json(url, {"geometries": "geojson", "overview": "full", "steps": "true"})
        routes = data.get("routes") or []
        if not routes:
            raise RoutingProviderError("No route found for sequence.")

        route = routes[0]
        raw_legs = route.get("legs") or []
        if len(raw_legs) != len(coordinates) - 1:
            raise RoutingProviderError(
                f"Mapbox returned {len(raw_legs)} legs for {len(coordinates)} waypoints."
            )
        line = (route.get("geometry") or {}).get("coordinates")
        if not line:
            raise RoutingProviderError("Mapbox route response has no geometry.")
        distances = [float(leg.get("distance", 0.0)) for leg in raw_legs]
        geometries = split_route_geometry(line, distances)
        return [
            Leg(
                distance_meters=distance,
                duration_sec=float(leg.get("duration", 0.0)),
                geometry=geometry,
            )
            for leg, distance, geometry in zip(raw_legs, distances, geometries)
        ]

    def directions(self, origin: tuple[float, float], destination: tuple[float, float]) -> Leg:
        """Get a single leg between two ``(lat, lng)`` points."""
        url = f"{self.base_url}/directions/v5/mapbox/{self.profile}/{_coordinate_path([origin, destination])}"
        data = self._get_json(url, {"geometries": "geojson", "overview": "full"})
        routes = data.get("routes") or []
        if not routes:
            raise RoutingProviderError("No route found between points.")

        route = routes[0]
        return Leg(
            distance_meters=float(route.get("distance", 0.0)),
            duration_sec=float(route.get("duration", 0.0)),
            geometry={"type": "Feature", "properties": {}, "geometry": route.get("geometry")},
        )


def build_coordinate_list(
    depot: tuple[float, float],
    stops: Sequence[tuple[float, float]],
) -> list[tuple[float, float]]:
    """Depot first, then the stops in the given order."""
    return [depot, *stops]


def check_health(token: str | None = None) -> bool:
    """Check Mapbox reachability with a minimal two-point matrix request."""
    try:
        client = MapboxClient(token=token)
        client.table([(52.517037, 13.388860), (52.496891, 13.385983)])
        return True
    except (ValueError, RoutingProviderError):
        return False
