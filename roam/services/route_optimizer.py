from __future__ import annotations

from collections import Counter
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from roam.core.config import settings
from roam.core.errors import ValidationError
from roam.schemas.itinerary import Experience, OptimizationComparison, RouteActivity
from roam.services.open_path import IMPROVEMENT_EPS, OpenPathSolver, PathConfig
from roam.services.scheduler import clock_minutes, experience_duration, is_located, schedule_day
from roam.utils.geo import (
    SPEED_KMH,
    distance_matrix_km,
    estimate_transit_mode,
    is_valid_coordinate,
    transit_mode_for,
)
from roam.utils.logger import get_logger

logger = get_logger(__name__)

# Flat travel allowance when an item has no coordinates
UNLOCATED_TRAVEL_MIN = 20
MIN_FREE_MINUTES = 60


def ensure_unique_ids(items: Sequence[Any]) -> None:
    """Raise ValidationError if two items share an id."""
    dupes = [i for i, n in Counter(a.id for a in items).items() if n > 1]
    if dupes:
        raise ValidationError(f"Duplicate activity ids: {', '.join(map(str, dupes))}")


def partition_located(
    activities: Sequence[RouteActivity],
) -> Tuple[List[RouteActivity], List[RouteActivity]]:
    """Split activities into (valid coordinates, missing/invalid coordinates)."""
    located, unlocated = [], []
    for activity in activities:
        if is_valid_coordinate(activity.lat, activity.lng):
            located.append(activity)
        else:
            unlocated.append(activity)
    return located, unlocated


def _dominant_mode(dist: np.ndarray) -> str:
    """Mode covering the most kilometres along the identity (original) path."""
    km_by_mode: Dict[str, float] = {}
    for i in range(len(dist) - 1):
        hop = float(dist[i, i + 1])
        mode = transit_mode_for(hop)
        km_by_mode[mode] = km_by_mode.get(mode, 0.0) + hop
    # ties: first mode seen along the route
    return max(km_by_mode, key=km_by_mode.get)


def get_optimization_comparison(
    activities: Sequence[RouteActivity],
    config: Optional[PathConfig] = None,
) -> Optional[OptimizationComparison]:
    """
    Compare the user's visiting order with a near-minimal open path.

    The path starts at the first located activity. If the solver cannot beat
    the original order strictly, the original order is returned unchanged.

    Args:
        activities: one day's activities in the user's order (unique ids)
        config: solver configuration (defaults from settings)

    Returns:
        OptimizationComparison, or None when fewer than 2 activities carry
        valid coordinates (nothing to optimize)

    Raises:
        ValidationError: duplicate activity ids
    """
    ensure_unique_ids(activities)
    located, unlocated = partition_located(activities)
    unlocated_ids = [a.id for a in unlocated]

    if len(located) < 2:
        logger.debug(
            "Skipping optimization: %d located, %d unlocated",
            len(located),
            len(unlocated),
        )
        return None

    cfg = config or PathConfig(
        strategy=settings.ROUTE_STRATEGY,
        two_opt_max_passes=settings.TWO_OPT_MAX_PASSES,
        time_limit_ms=settings.ROUTE_SOLVER_TIME_LIMIT_MS,
    )

    coords = np.array([[a.lat, a.lng] for a in located], dtype=np.float64)
    dist = distance_matrix_km(coords)
    solver = OpenPathSolver(dist, cfg)

    original_path = np.arange(len(located), dtype=np.int64)
    original_km = solver.length(original_path)
    candidate_path, candidate_km = solver.solve()

    if candidate_km < original_km - IMPROVEMENT_EPS:
        optimized_path, optimized_km = candidate_path, candidate_km
    else:
        optimized_path, optimized_km = original_path, original_km

    saved_km = original_km - optimized_km
    saved_ratio = (saved_km / original_km) if original_km > 0 else 0.0
    speed = SPEED_KMH[_dominant_mode(dist)]
    time_saved = int(round(saved_km / speed * 60.0))

    comparison = OptimizationComparison(
        original_order=[a.id for a in located],
        optimized_order=[located[i].id for i in optimized_path],
        original_distance_km=round(original_km, 3),
        optimized_distance_km=round(optimized_km, 3),
        distance_saved_km=round(saved_km, 3),
        distance_saved_percent=round(saved_ratio * 100.0, 1),
        time_saved_minutes=time_saved,
        saved_ratio=saved_ratio,
        unlocated_ids=unlocated_ids,
        strategy=cfg.strategy,
    )

    logger.info(
        "Route optimization (%s): %d stops, %.2fkm -> %.2fkm (%.1f%% saved)",
        cfg.strategy,
        len(located),
        original_km,
        optimized_km,
        comparison.distance_saved_percent,
    )
    return comparison


def is_optimization_worthwhile(
    comparison: OptimizationComparison, threshold_percent: Optional[float] = None
) -> bool:
    """
    True only when the saving strictly exceeds the threshold (default 10%).
    Decided on the unrounded ratio, not the display percent.
    """
    threshold = (
        settings.OPTIMIZATION_THRESHOLD_PERCENT
        if threshold_percent is None
        else threshold_percent
    )
    return comparison.saved_ratio * 100.0 > threshold


def apply_optimized_order(
    activities: Sequence[Any], comparison: Optional[OptimizationComparison]
) -> List[Any]:
    """
    Reorder activities by comparison.optimized_order.

    Activities without coordinates are appended after the located ones, in
    their original relative order. Works on anything carrying an `id`.

    Raises:
        ValidationError: duplicate activity ids
    """
    ensure_unique_ids(activities)
    if comparison is None:
        return list(activities)

    by_id = {a.id: a for a in activities}
    ordered = [by_id[i] for i in comparison.optimized_order if i in by_id]
    placed = {a.id for a in ordered}
    ordered.extend(a for a in activities if a.id not in placed)
    return ordered


def suggest_items_for_day(
    available: Sequence[Experience],
    existing: Sequence[Experience],
    max_items: Optional[int] = None,
    day_start: Optional[int] = None,
    day_end: Optional[int] = None,
) -> List[str]:
    """
    Pick unscheduled experiences that fit a day's remaining time.

    Candidates are ranked by distance from the centroid of the day's located
    experiences (or from the first located candidate on an empty day);
    unlocated candidates come last in their given order. Each pick reserves
    its duration plus an estimated hop from the centroid. The final set is
    laid out with schedule_day and anything it cannot place is dropped.

    Args:
        available: candidate experiences (those already in the day are ignored)
        existing: experiences already in the day, in order
        max_items: cap on experiences per day (default MAX_EXPERIENCES_PER_DAY)
        day_start, day_end: minutes from midnight (default DAY_START/DAY_END)

    Returns:
        ids of suggested experiences, in the order they should be added
    """
    max_items = settings.MAX_EXPERIENCES_PER_DAY if max_items is None else max_items
    day_start = clock_minutes(settings.DAY_START) if day_start is None else day_start
    day_end = clock_minutes(settings.DAY_END) if day_end is None else day_end

    taken = {e.id for e in existing}
    candidates = [e for e in available if e.id not in taken]
    slots = max_items - len(existing)
    if not candidates or slots <= 0:
        return []

    remaining = (day_end - day_start) - sum(experience_duration(e) for e in existing)
    if remaining < MIN_FREE_MINUTES:
        return []

    located = [e for e in candidates if is_located(e)]
    unlocated = [e for e in candidates if not is_located(e)]
    anchors = [e.coordinates for e in existing if is_located(e)]
    if anchors:
        centre = (
            sum(c.lat for c in anchors) / len(anchors),
            sum(c.lng for c in anchors) / len(anchors),
        )
    elif located:
        centre = (located[0].coordinates.lat, located[0].coordinates.lng)
    else:
        centre = None

    travel: Dict[str, int] = {e.id: UNLOCATED_TRAVEL_MIN for e in unlocated}
    if located and centre is not None:
        coords = np.array(
            [centre] + [(e.coordinates.lat, e.coordinates.lng) for e in located],
            dtype=np.float64,
        )
        from_centre = distance_matrix_km(coords)[0, 1:]
        rank = np.argsort(from_centre, kind="stable")
        located = [located[i] for i in rank]
        for i, exp in zip(rank, located):
            travel[exp.id] = estimate_transit_mode(float(from_centre[i])).minutes

    picked: List[Experience] = []
    for exp in located + unlocated:
        if len(picked) >= slots:
            break
        need = experience_duration(exp) + travel[exp.id]
        if need <= remaining:
            picked.append(exp)
            remaining -= need

    if not picked:
        return []

    schedule = schedule_day(
        list(existing) + picked,
        day_start=day_start,
        day_end=day_end,
        include_meals=False,
    )
    dropped = set(schedule.unscheduled)
    suggestions = [e.id for e in picked if e.id not in dropped]
    logger.debug("Suggested %d of %d candidates", len(suggestions), len(candidates))
    return suggestions
