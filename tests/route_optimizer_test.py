import numpy as np
import pytest

from roam.core.errors import ValidationError
from roam.schemas.itinerary import (
    Coordinates,
    Experience,
    OptimizationComparison,
    RouteActivity,
)
from roam.services.open_path import OpenPathSolver, PathConfig
from roam.services.route_optimizer import (
    apply_optimized_order,
    get_optimization_comparison,
    is_optimization_worthwhile,
    suggest_items_for_day,
)
from roam.utils.geo import distance_matrix_km

# ~10 km per 0.09 degrees near the equator
STEP = 0.09


def z_shape():
    """Four corners of a 10 km square visited in crossing (Z) order"""
    return [
        RouteActivity(id="a", lat=0.0, lng=0.0),
        RouteActivity(id="b", lat=0.0, lng=STEP),
        RouteActivity(id="c", lat=STEP, lng=0.0),
        RouteActivity(id="d", lat=STEP, lng=STEP),
    ]


def test_z_shape_is_uncrossed():
    comparison = get_optimization_comparison(z_shape())

    assert comparison is not None
    assert comparison.original_order == ["a", "b", "c", "d"]
    assert comparison.optimized_order in (["a", "b", "d", "c"], ["a", "c", "d", "b"])
    assert comparison.optimized_distance_km < comparison.original_distance_km
    assert comparison.optimized_distance_km == pytest.approx(30.0, abs=0.1)
    assert comparison.distance_saved_percent > 10
    assert comparison.time_saved_minutes == 6  # train speed, ~4.1 km saved
    assert is_optimization_worthwhile(comparison)


def test_two_stops_already_optimal():
    activities = [
        RouteActivity(id="x", lat=1.0, lng=1.0),
        RouteActivity(id="y", lat=1.01, lng=1.0),
    ]
    comparison = get_optimization_comparison(activities)

    assert comparison.optimized_order == ["x", "y"]
    assert comparison.distance_saved_percent == 0
    assert comparison.distance_saved_km == 0
    assert comparison.time_saved_minutes == 0
    assert not is_optimization_worthwhile(comparison)


def test_single_located_activity_returns_none():
    activities = [
        RouteActivity(id="x", lat=1.0, lng=1.0),
        RouteActivity(id="y"),
        RouteActivity(id="z", lat=95.0, lng=1.0),
    ]
    assert get_optimization_comparison(activities) is None
    assert get_optimization_comparison([]) is None


def test_optimized_order_is_permutation_and_never_worse():
    rng = np.random.default_rng(7)
    coords = rng.uniform(low=[38.70, -9.20], high=[38.75, -9.10], size=(9, 2))
    activities = [
        RouteActivity(id=f"p{i}", lat=float(lat), lng=float(lng))
        for i, (lat, lng) in enumerate(coords)
    ]

    for strategy in ("nearest_neighbor", "two_opt", "ortools"):
        comparison = get_optimization_comparison(
            activities, PathConfig(strategy=strategy, time_limit_ms=200)
        )
        assert sorted(comparison.optimized_order) == sorted(comparison.original_order)
        assert comparison.optimized_order[0] == "p0"
        assert comparison.optimized_distance_km <= comparison.original_distance_km
        assert comparison.distance_saved_km >= 0
        assert comparison.strategy == strategy


def test_optimization_is_idempotent():
    # points on a line visited out of order
    activities = [
        RouteActivity(id=str(i), lat=0.0, lng=lng)
        for i, lng in enumerate([0.0, 0.03, 0.01, 0.04, 0.02])
    ]
    first = get_optimization_comparison(activities)
    assert first.optimized_order == ["0", "2", "4", "1", "3"]

    reordered = apply_optimized_order(activities, first)
    second = get_optimization_comparison(reordered)
    assert second.optimized_order == second.original_order == first.optimized_order
    assert second.distance_saved_km == 0


def test_unlocated_activities_are_appended_in_original_order():
    activities = [
        RouteActivity(id="a", lat=0.0, lng=0.0),
        RouteActivity(id="no-coords-1"),
        RouteActivity(id="b", lat=0.0, lng=STEP),
        RouteActivity(id="c", lat=STEP, lng=0.0),
        RouteActivity(id="no-coords-2", lat=None, lng=3.0),
        RouteActivity(id="d", lat=STEP, lng=STEP),
    ]
    comparison = get_optimization_comparison(activities)
    assert comparison.unlocated_ids == ["no-coords-1", "no-coords-2"]
    assert "no-coords-1" not in comparison.optimized_order

    ordered = [a.id for a in apply_optimized_order(activities, comparison)]
    assert ordered[:4] == comparison.optimized_order
    assert ordered[4:] == ["no-coords-1", "no-coords-2"]


def test_apply_without_comparison_keeps_order():
    activities = z_shape()
    assert apply_optimized_order(activities, None) == activities


def test_worthwhile_threshold_is_strict():
    comparison = get_optimization_comparison(z_shape())
    percent = comparison.distance_saved_percent

    assert is_optimization_worthwhile(comparison, threshold_percent=percent - 0.1)
    assert not is_optimization_worthwhile(comparison, threshold_percent=percent)


def test_ortools_strategy_finds_open_path():
    coords = np.array([[a.lat, a.lng] for a in z_shape()])
    solver = OpenPathSolver(distance_matrix_km(coords), PathConfig(strategy="ortools"))
    path, length = solver.solve()

    assert path[0] == 0
    assert sorted(path.tolist()) == [0, 1, 2, 3]
    assert length == pytest.approx(30.0, abs=0.1)


def test_unknown_strategy_rejected():
    with pytest.raises(ValueError):
        OpenPathSolver(np.zeros((3, 3)), PathConfig(strategy="genetic"))


def comparison_saving(ratio):
    original = 100.0
    optimized = original * (1 - ratio)
    return OptimizationComparison(
        original_order=["a", "b", "c"],
        optimized_order=["a", "c", "b"],
        original_distance_km=original,
        optimized_distance_km=round(optimized, 2),
        distance_saved_km=round(original - optimized, 2),
        distance_saved_percent=round(ratio * 100, 1),
        time_saved_minutes=0,
        saved_ratio=ratio,
    )


def test_worthwhile_uses_unrounded_saving():
    # both display as 10.0%
    just_above = comparison_saving(0.100036)
    just_below = comparison_saving(0.099964)
    assert just_above.distance_saved_percent == just_below.distance_saved_percent == 10.0

    assert is_optimization_worthwhile(just_above)
    assert not is_optimization_worthwhile(just_below)


def test_comparison_reports_unrounded_ratio():
    comparison = get_optimization_comparison(z_shape())
    expected = comparison.distance_saved_km / comparison.original_distance_km
    assert comparison.saved_ratio == pytest.approx(expected, rel=1e-2)
    assert round(comparison.saved_ratio * 100, 1) == comparison.distance_saved_percent


def test_duplicate_ids_rejected():
    activities = z_shape() + [RouteActivity(id="a", lat=0.5, lng=0.5)]
    with pytest.raises(ValidationError):
        get_optimization_comparison(activities)

    comparison = get_optimization_comparison(z_shape())
    with pytest.raises(ValidationError):
        apply_optimized_order(activities, comparison)


def clock(text):
    hours, minutes = text.split(":")
    return int(hours) * 60 + int(minutes)


def spot(id, lat=None, lng=None, minutes=120):
    coords = Coordinates(lat=lat, lng=lng) if lat is not None else None
    return Experience(id=id, name=id.title(), coordinates=coords, duration_minutes=minutes)


def test_suggestions_nearest_first_unlocated_last():
    existing = [spot("castle", 38.7139, -9.1334)]
    available = [
        spot("somewhere"),
        spot("belem", 38.6916, -9.2160),
        spot("alfama", 38.7118, -9.1300),
        spot("castle", 38.7139, -9.1334),
    ]

    assert suggest_items_for_day(available, existing) == ["alfama", "belem", "somewhere"]


def test_suggestions_respect_max_items():
    existing = [spot("castle", 38.7139, -9.1334)]
    available = [spot(f"s{i}", 38.7139 + i * 0.003, -9.1334) for i in range(1, 5)]

    assert suggest_items_for_day(available, existing, max_items=3) == ["s1", "s2"]
    assert suggest_items_for_day(available, existing, max_items=1) == []


def test_suggestions_fit_remaining_time():
    existing = [spot(f"e{i}", 38.7139, -9.1334 + i * 0.003, minutes=180) for i in range(3)]
    available = [
        spot("near", 38.7150, -9.1334),
        spot("next-door", 38.7160, -9.1334),
    ]

    # 780 minute day, 540 booked: room for one more two-hour visit
    assert suggest_items_for_day(available, existing) == ["near"]
    assert suggest_items_for_day(available, existing, day_end=clock("18:00")) == []


def test_suggestions_for_empty_day_rank_from_first_located():
    available = [
        spot("far", 38.6916, -9.2160),
        spot("anchor", 38.7139, -9.1334),
        spot("close", 38.7118, -9.1300),
    ]
    assert suggest_items_for_day(available, [], max_items=2) == ["far", "anchor"]
    assert suggest_items_for_day([], []) == []
