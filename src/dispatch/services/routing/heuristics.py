"""Nearest-neighbor construction and 2-opt improvement for single-vehicle tours.

Tours are lists of matrix rows. Row 0 is the depot by convention. Every
function here returns a new list and leaves its input untouched.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

from .models import CostMatrix, OptimizationResult, RouteTotals

DEFAULT_MAX_SWEEPS = 50
DEFAULT_IMPROVEMENT_THRESHOLD_SECONDS = 1.0

logger = logging.getLogger(__name__)


def nearest_neighbor(matrix: CostMatrix, start: int = 0) -> list[int]:
    """Greedy tour: from ``start`` always move to the closest unvisited row by duration.

    Ties go to the lowest row. Infinite durations are treated as valid edges.
    """
    n = matrix.size
    if n == 0:
        return []
    if not 0 <= start < n:
        raise ValueError(f"Start index {start} is outside the cost matrix (size {n}).")

    visited = [False] * n
    visited[start] = True
    tour = [start]
    current = start

    for _ in range(n - 1):
        nearest = -1
        best = math.inf
        for candidate in range(n):
            if visited[candidate]:
                continue
            cost = matrix.duration(current, candidate)
            if nearest == -1 or cost < best:
                nearest = candidate
                best = cost
        visited[nearest] = True
        tour.append(nearest)
        current = nearest

    return tour


def _reversal_offsets(tour: Sequence[int], matrix: CostMatrix) -> list[float]:
    # offsets[k] - offsets[i] is what the edges inside tour[i..k] save when walked backwards.
    offsets = [0.0]
    for origin, destination in zip(tour, tour[1:]):
        offsets.append(offsets[-1] + matrix.duration(origin, destination) - matrix.duration(destination, origin))
    return offsets


def _two_opt_gain(
    tour: Sequence[int],
    matrix: CostMatrix,
    offsets: Sequence[float],
    i: int,
    j: int,
    closed: bool,
) -> float:
    n = len(tour)
    a, b, c = tour[i - 1], tour[i], tour[j]
    gain = matrix.duration(a, b) - matrix.duration(a, c)
    if j + 1 < n or closed:
        d = tour[(j + 1) % n]
        gain += matrix.duration(c, d) - matrix.duration(b, d)
    # Zero on symmetric matrices.
    return gain + offsets[j] - offsets[i]


def two_opt(
    tour: Sequence[int],
    matrix: CostMatrix,
    max_sweeps: int = DEFAULT_MAX_SWEEPS,
    threshold_seconds: float = DEFAULT_IMPROVEMENT_THRESHOLD_SECONDS,
    closed: bool = True,
) -> list[int]:
    """Best-improvement 2-opt.

    Each sweep scores every segment reversal ``tour[i..j]`` with
    ``1 <= i < n - 2`` and ``i < j < n`` and applies the single best one if
    its gain exceeds ``threshold_seconds`` (converted to the matrix's
    duration unit). Sweeps stop when nothing qualifies or after
    ``max_sweeps``.

    The gain of a move is the change in the two boundary edges plus the
    change from walking the reversed segment in the opposite direction, so
    directional matrices are scored exactly. On symmetric matrices the extra
    term is zero and the score is the plain boundary-edge formula; on
    asymmetric ones it can rank moves differently from that formula.

    With ``closed=True`` the edge from the last stop back to the first is
    part of the cost, so the tour is scored as a cycle. With ``closed=False``
    the tour is scored as an open path and reversing a suffix has no
    successor edge to pay for.
    """
    route = list(tour)
    n = len(route)
    threshold = matrix.unit.from_seconds(threshold_seconds)

    sweeps = 0
    while sweeps < max_sweeps:
        sweeps += 1
        best_gain = 0.0
        best_i = best_j = -1
        offsets = _reversal_offsets(route, matrix)
        for i in range(1, n - 2):
            for j in range(i + 1, n):
                gain = _two_opt_gain(route, matrix, offsets, i, j, closed)
                if gain > best_gain:
                    best_gain = gain
                    best_i, best_j = i, j

        if best_gain <= threshold:
            break
        route[best_i : best_j + 1] = reversed(route[best_i : best_j + 1])

    logger.debug("2-opt finished after %d sweep(s) on %d waypoints", sweeps, n)
    return route


def freeze_first(tour: Sequence[int], depot: int = 0, enabled: bool = True) -> list[int]:
    """Rotate the tour so ``depot`` leads, keeping the cyclic order of the other stops.

    ``[2, 0, 3, 1]`` with depot ``0`` becomes ``[0, 3, 1, 2]``.
    """
    route = list(tour)
    if not enabled or not route or route[0] == depot:
        return route
    try:
        position = route.index(depot)
    except ValueError:
        raise ValueError(f"Depot index {depot} is not part of the tour {route}.") from None
    return [depot, *route[position + 1 :], *route[:position]]


def route_totals(tour: Sequence[int], matrix: CostMatrix) -> RouteTotals:
    open_distance = 0.0
    open_duration = 0.0
    for origin, destination in zip(tour, tour[1:]):
        open_distance += matrix.distance(origin, destination)
        open_duration += matrix.duration(origin, destination)

    return_distance = 0.0
    return_duration = 0.0
    if len(tour) > 1:
        return_distance = matrix.distance(tour[-1], tour[0])
        return_duration = matrix.duration(tour[-1], tour[0])

    return RouteTotals(
        open_distance=open_distance,
        open_duration=open_duration,
        return_distance=return_distance,
        return_duration=return_duration,
    )


def optimize_route(
    matrix: CostMatrix,
    start: int = 0,
    freeze_first_stop: bool = False,
    *,
    max_sweeps: int = DEFAULT_MAX_SWEEPS,
    threshold_seconds: float = DEFAULT_IMPROVEMENT_THRESHOLD_SECONDS,
    closed_cycle: bool | None = None,
    include_return_edge: bool = False,
) -> OptimizationResult:
    """Nearest neighbor, then 2-opt, then optional freeze-first, then totals.

    ``total_distance``/``total_duration`` cover the open path unless
    ``include_return_edge`` is set; the closing edge is always reported on
    ``return_distance``/``return_duration``.

    When ``closed_cycle`` is None, 2-opt scores the same cost the totals
    report: the closed cycle if ``include_return_edge`` is set, otherwise
    the open path.
    """
    if closed_cycle is None:
        closed_cycle = include_return_edge
    n = matrix.size
    if n == 0:
        return OptimizationResult(tour=[], total_distance=0.0, total_duration=0.0, include_return_edge=include_return_edge)
    if n == 1:
        if start != 0:
            raise ValueError(f"Start index {start} is outside the cost matrix (size 1).")
        return OptimizationResult(tour=[start], total_distance=0.0, total_duration=0.0, include_return_edge=include_return_edge)

    tour = nearest_neighbor(matrix, start)
    tour = two_opt(tour, matrix, max_sweeps=max_sweeps, threshold_seconds=threshold_seconds, closed=closed_cycle)
    tour = freeze_first(tour, depot=start, enabled=freeze_first_stop)

    totals = route_totals(tour, matrix)
    total_distance = totals.open_distance
    total_duration = totals.open_duration
    if include_return_edge:
        total_distance += totals.return_distance
        total_duration += totals.return_duration

    return OptimizationResult(
        tour=tour,
        total_distance=total_distance,
        total_duration=total_duration,
        return_distance=totals.return_distance,
        return_duration=totals.return_duration,
        include_return_edge=include_return_edge,
    )
