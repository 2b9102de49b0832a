"""Routing domain models."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Sequence


class MatrixValidationError(ValueError):
    """Raised when a cost matrix does not satisfy the input contract."""


class DurationUnit(str, Enum):
    """Unit of the duration table returned by a matrix provider."""

    SECONDS = "seconds"
    MILLISECONDS = "milliseconds"
    MINUTES = "minutes"

    @property
    def seconds_per_unit(self) -> float:
        return {
            DurationUnit.SECONDS: 1.0,
            DurationUnit.MILLISECONDS: 0.001,
            DurationUnit.MINUTES: 60.0,
        }[self]

    def from_seconds(self, seconds: float) -> float:
        """Express a number of seconds in this unit."""
        return seconds / self.seconds_per_unit

    def to_seconds(self, value: float) -> float:
        return value * self.seconds_per_unit


def _validate_table(name: str, table: Sequence[Sequence[Any]], size: int) -> list[list[float]]:
    if len(table) != size:
        raise MatrixValidationError(
            f"{name} matrix has {len(table)} rows but {size} waypoints were supplied."
        )
    rows: list[list[float]] = []
    for row_idx, row in enumerate(table):
        if len(row) != size:
            raise MatrixValidationError(
                f"{name} matrix is not square: row {row_idx} has {len(row)} columns, expected {size}."
            )
        values: list[float] = []
        for col_idx, value in enumerate(row):
            if value is None:
                raise MatrixValidationError(
                    f"{name} matrix is missing an entry at ({row_idx}, {col_idx})."
                )
            number = float(value)
            if math.isnan(number):
                raise MatrixValidationError(
                    f"{name} matrix has a NaN entry at ({row_idx}, {col_idx})."
                )
            values.append(number)
        rows.append(values)
    return rows


@dataclass(frozen=True)
class CostMatrix:
    """Directional duration/distance tables over a keyed set of waypoints.

    Row and column ``i`` belong to ``keys[i]``. Tours index into the matrix by
    row, and callers resolve rows back to their own records with ``key_at``
    rather than relying on the order in which they built the waypoint list.
    Durations are expressed in ``unit``; distances are meters.
    """

    durations: tuple[tuple[float, ...], ...]
    distances: tuple[tuple[float, ...], ...]
    keys: tuple[str, ...]
    unit: DurationUnit = DurationUnit.SECONDS
    _rows: dict[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        rows: dict[str, int] = {}
        for row, key in enumerate(self.keys):
            if key in rows:
                raise MatrixValidationError(f"Duplicate waypoint key '{key}' in cost matrix.")
            rows[key] = row
        object.__setattr__(self, "_rows", rows)

    @classmethod
    def from_table(
        cls,
        table: dict,
        keys: Sequence[str],
        unit: DurationUnit = DurationUnit.SECONDS,
    ) -> "CostMatrix":
        """Validate a provider payload (``durations``/``distances``) against ``keys``."""
        if "durations" not in table or "distances" not in table:
            raise MatrixValidationError("Cost matrix payload must contain 'durations' and 'distances'.")
        size = len(keys)
        durations = _validate_table("Duration", table["durations"], size)
        distances = _validate_table("Distance", table["distances"], size)
        return cls(
            durations=tuple(tuple(row) for row in durations),
            distances=tuple(tuple(row) for row in distances),
            keys=tuple(str(key) for key in keys),
            unit=unit,
        )

    @classmethod
    def from_durations(
        cls,
        durations: Sequence[Sequence[float]],
        distances: Sequence[Sequence[float]] | None = None,
        unit: DurationUnit = DurationUnit.SECONDS,
    ) -> "CostMatrix":
        """Build an anonymous matrix keyed by row number (``"0"``, ``"1"``...)."""
        size = len(durations)
        if distances is None:
            distances = [[0.0] * size for _ in range(size)]
        return cls.from_table(
            {"durations": durations, "distances": distances},
            keys=[str(i) for i in range(size)],
            unit=unit,
        )

    @property
    def size(self) -> int:
        return len(self.keys)

    def __len__(self) -> int:
        return len(self.keys)

    def row_for(self, key: str) -> int:
        try:
            return self._rows[key]
        except KeyError:
            raise KeyError(f"Waypoint '{key}' is not part of this cost matrix.") from None

    def key_at(self, row: int) -> str:
        return self.keys[row]

    def duration(self, origin: int, destination: int) -> float:
        return self.durations[origin][destination]

    def distance(self, origin: int, destination: int) -> float:
        return self.distances[origin][destination]


@dataclass(slots=True)
class Leg:
    distance_meters: float
    duration_sec: float
    geometry: dict | None = None
    fallback: bool = False


@dataclass(slots=True)
class RouteTotals:
    open_distance: float
    open_duration: float
    return_distance: float
    return_duration: float


@dataclass(slots=True)
class OptimizationResult:
    tour: List[int]
    total_distance: float
    total_duration: float
    return_distance: float = 0.0
    return_duration: float = 0.0
    include_return_edge: bool = False

    @property
    def closed_distance(self) -> float:
        if self.include_return_edge:
            return self.total_distance
        return self.total_distance + self.return_distance

    @property
    def closed_duration(self) -> float:
        if self.include_return_edge:
            return self.total_duration
        return self.total_duration + self.return_duration
