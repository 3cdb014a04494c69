from __future__ import annotations

from dataclasses import dataclass

import numba
import numpy as np
from ortools.constraint_solver import pywrapcp, routing_enums_pb2

from roam.utils.logger import get_logger

logger = get_logger(__name__)

STRATEGIES = ("nearest_neighbor", "two_opt", "ortools")
IMPROVEMENT_EPS = 1e-9


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Immutable configuration for open-path solving."""

    strategy: str = "two_opt"
    two_opt_max_passes: int = 50
    time_limit_ms: int = 500


@numba.njit(cache=True)
def _path_length(dist: np.ndarray, path: np.ndarray) -> float:
    total = 0.0
    for k in range(len(path) - 1):
        total += dist[path[k], path[k + 1]]
    return total


@numba.njit(cache=True)
def _nearest_neighbor_path(dist: np.ndarray, start: int) -> np.ndarray:
    """Greedy open path from start; ties go to the lowest index."""
    n = dist.shape[0]
    visited = np.zeros(n, dtype=np.bool_)
    path = np.zeros(n, dtype=np.int64)

    current = start
    path[0] = current
    visited[current] = True

    for step in range(1, n):
        best = -1
        best_dist = np.inf
        for j in range(n):
            if not visited[j] and dist[current, j] < best_dist:
                best_dist = dist[current, j]
                best = j
        path[step] = best
        visited[best] = True
        current = best

    return path


@numba.njit(cache=True)
def _two_opt(dist: np.ndarray, path: np.ndarray, max_passes: int) -> np.ndarray:
    """2-opt on an open path; path[0] stays pinned, the tail end is free."""
    n = len(path)
    best = path.copy()
    improved = True
    passes = 0

    while improved and passes < max_passes:
        improved = False
        passes += 1
        for i in range(1, n - 1):
            for k in range(i + 1, n):
                a = best[i - 1]
                b = best[i]
                c = best[k]
                delta = dist[a, c] - dist[a, b]
                if k + 1 < n:
                    d = best[k + 1]
                    delta += dist[b, d] - dist[c, d]
                if delta < -1e-9:
                    lo = i
                    hi = k
                    while lo < hi:
                        tmp = best[lo]
                        best[lo] = best[hi]
                        best[hi] = tmp
                        lo += 1
                        hi -= 1
                    improved = True

    return best


def solve_open_path_ortools(dist: np.ndarray, time_limit_ms: int = 500) -> np.ndarray:
    """
    Open path from node 0 using the OR-Tools routing solver.

    A dummy end node with zero-cost arcs turns the single-vehicle tour into
    a path that may finish anywhere. Arc costs are whole metres.
    """
    n = dist.shape[0]
    dummy = n
    metres = np.rint(dist * 1000.0).astype(np.int64)

    manager = pywrapcp.RoutingIndexManager(n + 1, 1, [0], [dummy])
    routing = pywrapcp.RoutingModel(manager)

    def cost_cb(from_index, to_index):
        i, j = manager.IndexToNode(from_index), manager.IndexToNode(to_index)
        if i == dummy or j == dummy:
            return 0
        return int(metres[i, j])

    cb_idx = routing.RegisterTransitCallback(cost_cb)
    routing.SetArcCostEvaluatorOfAllVehicles(cb_idx)

    params = pywrapcp.DefaultRoutingSearchParameters()
    params.first_solution_strategy = (
        routing_enums_pb2.FirstSolutionStrategy.PATH_CHEAPEST_ARC
    )
    params.local_search_metaheuristic = (
        routing_enums_pb2.LocalSearchMetaheuristic.GUIDED_LOCAL_SEARCH
    )
    params.time_limit.FromMilliseconds(time_limit_ms)
    params.log_search = False

    solution = routing.SolveWithParameters(params)
    if not solution:
        logger.warning("OR-Tools found no open path, using nearest neighbor")
        return _nearest_neighbor_path(dist, 0)

    path = []
    idx = routing.Start(0)
    while not routing.IsEnd(idx):
        path.append(manager.IndexToNode(idx))
        idx = solution.Value(routing.NextVar(idx))

    return np.array(path, dtype=np.int64)


class OpenPathSolver:
    """Near-minimal open path over a distance matrix, starting at node 0."""

    __slots__ = ("config", "distance_matrix", "n_stops")

    def __init__(self, distance_matrix: np.ndarray, config: PathConfig | None = None):
        self.config = config or PathConfig()
        if self.config.strategy not in STRATEGIES:
            raise ValueError(f"Unknown route strategy: {self.config.strategy}")
        self.distance_matrix = np.ascontiguousarray(distance_matrix, dtype=np.float64)
        self.n_stops = len(self.distance_matrix)

    def length(self, path: np.ndarray) -> float:
        return float(_path_length(self.distance_matrix, np.asarray(path, dtype=np.int64)))

    def solve(self) -> tuple[np.ndarray, float]:
        """Return (path, length_km). path[0] is always 0."""
        if self.n_stops <= 2:
            path = np.arange(self.n_stops, dtype=np.int64)
            return path, self.length(path)

        path = _nearest_neighbor_path(self.distance_matrix, 0)

        if self.config.strategy == "two_opt":
            path = _two_opt(self.distance_matrix, path, self.config.two_opt_max_passes)
        elif self.config.strategy == "ortools":
            candidate = solve_open_path_ortools(
                self.distance_matrix, self.config.time_limit_ms
            )
            if self.length(candidate) < self.length(path) - IMPROVEMENT_EPS:
                path = candidate

        distance = self.length(path)
        logger.debug(
            "Open path (%s): %d stops, %.2fkm", self.config.strategy, self.n_stops, distance
        )
        return path, distance
