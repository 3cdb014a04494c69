from typing import Any, Dict, List, Optional

from roam.schemas.itinerary import GeneratedItinerary
from roam.utils.logger import get_logger

logger = get_logger(__name__)

# Configuration

MEAL_WINDOWS = {
    "breakfast": (7 * 60, 10 * 60),  # 7am-10am
    "lunch": (12 * 60, 14 * 60 + 30),  # 12pm-2:30pm
    "dinner": (18 * 60, 21 * 60),  # 6pm-9pm
}

DAY_END_MIN = 22 * 60
MAX_DAY_OVERRUN_MIN = 60  # Allow 1 hour past day end
MIN_MEAL_GAP_MIN = 120  # meals closer than this count as back-to-back


# Helper Functions


def time_to_minutes(time_str: str) -> int:
    """Convert 'HH:MM' to minutes from midnight."""
    h, m = map(int, time_str.split(":")[:2])
    return h * 60 + m


def get_meal_type(start_min: int) -> str:
    """Determine meal type based on start time."""
    for name, (lo, hi) in MEAL_WINDOWS.items():
        if lo <= start_min <= hi:
            return name
    return "other"


def _violation(
    kind: str, severity: str, message: str, day: Optional[int], item: Optional[str] = None, **extra
) -> Dict[str, Any]:
    return {
        "type": kind,
        "severity": severity,
        "message": message,
        "day": day,
        "item": item,
        **extra,
    }


# Validation Functions


def validate_itinerary(
    itinerary: GeneratedItinerary, day_end: int = DAY_END_MIN
) -> Dict[str, Any]:
    """
    Check a generated itinerary against scheduling rules.

    Errors: day numbers not 1..N, items out of order or overlapping,
    consecutive meals, total_days mismatch.
    Warnings: meals at unusual times, flight-free days running past day end.

    Returns:
        {
            "valid": bool,
            "violations": [{"type", "severity", "message", "day", "item"}],
            "stats": {...}
        }
    """
    violations: List[Dict[str, Any]] = []
    stats = {
        "total_days": len(itinerary.days),
        "total_items": 0,
        "total_meals": 0,
        "meals_per_day": [],
        "items_by_type": {},
        "day_overruns": [],
    }

    if itinerary.total_days != len(itinerary.days):
        violations.append(
            _violation(
                "total_days_mismatch",
                "error",
                f"total_days={itinerary.total_days} but {len(itinerary.days)} days present",
                None,
            )
        )

    for idx, day in enumerate(itinerary.days):
        expected = idx + 1
        day_num = day.day_number

        # 1. Day numbering
        if day_num != expected:
            violations.append(
                _violation(
                    "day_numbering",
                    "error",
                    f"Day at position {expected} is numbered {day_num}",
                    day_num,
                )
            )

        meals_today = 0
        prev = None
        prev_start = prev_end = None
        last_end = 0
        stats["total_items"] += len(day.items)

        for item in day.items:
            start = time_to_minutes(item.start_time)
            end = time_to_minutes(item.end_time)
            stats["items_by_type"][item.type] = stats["items_by_type"].get(item.type, 0) + 1

            # 2. Ordering and overlap
            if prev is not None:
                if start < prev_start:
                    violations.append(
                        _violation(
                            "unsorted_items",
                            "error",
                            f"{item.title} ({item.start_time}) starts before {prev.title} ({prev.start_time})",
                            day_num,
                            item.id,
                        )
                    )
                elif start < prev_end:
                    violations.append(
                        _violation(
                            "overlap",
                            "error",
                            f"{item.title} ({item.start_time}) overlaps {prev.title} (ends {prev.end_time})",
                            day_num,
                            item.id,
                        )
                    )

            # 3. Consecutive meals
            if (
                prev is not None
                and prev.type == "meal"
                and item.type == "meal"
                and start - prev_end < MIN_MEAL_GAP_MIN
            ):
                violations.append(
                    _violation(
                        "consecutive_meals",
                        "error",
                        f"Consecutive meals ({prev.title} -> {item.title})",
                        day_num,
                        item.id,
                    )
                )

            # 4. Meal timing
            if item.type == "meal":
                meals_today += 1
                if get_meal_type(start) == "other":
                    violations.append(
                        _violation(
                            "meal_timing",
                            "warning",
                            f"Meal at unusual time ({item.start_time}) - {item.title}",
                            day_num,
                            item.id,
                        )
                    )

            if item.type != "flight":
                last_end = max(last_end, end)
            prev, prev_start, prev_end = item, start, end

        # 5. Day overrun (flights excluded)
        if last_end > day_end + MAX_DAY_OVERRUN_MIN:
            overrun = last_end - day_end
            violations.append(
                _violation(
                    "day_overrun",
                    "warning",
                    f"Day {day_num} ends {overrun} min past limit",
                    day_num,
                    overrun_minutes=overrun,
                )
            )
            stats["day_overruns"].append(overrun)

        stats["meals_per_day"].append(meals_today)
        stats["total_meals"] += meals_today

    return {
        "valid": not any(v["severity"] == "error" for v in violations),
        "violations": violations,
        "stats": stats,
    }


def format_validation_report(validation_result: Dict[str, Any]) -> str:
    """Human-readable validation report."""
    lines = ["=" * 70, "ITINERARY VALIDATION REPORT", "=" * 70]

    stats = validation_result["stats"]
    lines.append(f"Total days: {stats['total_days']}")
    lines.append(f"Total items: {stats['total_items']}")
    lines.append(f"Meals per day: {stats['meals_per_day']}")
    for kind, count in sorted(stats["items_by_type"].items(), key=lambda x: -x[1]):
        lines.append(f"   {kind}: {count}")

    violations = validation_result["violations"]
    if not violations:
        lines.append("VALID - No violations found")
    else:
        errors = [v for v in violations if v["severity"] == "error"]
        warnings = [v for v in violations if v["severity"] == "warning"]
        lines.append(f"Found {len(errors)} errors, {len(warnings)} warnings")
        for label, group in (("ERRORS", errors), ("WARNINGS", warnings)):
            if not group:
                continue
            lines.append(f"{label}:")
            for v in group:
                day_str = f"Day {v['day']}: " if v["day"] else ""
                lines.append(f"   {day_str}{v['message']}")

    lines.append("=" * 70)
    return "\n".join(lines)


def assert_itinerary_valid(
    itinerary: GeneratedItinerary, allow_warnings: bool = True
) -> None:
    """
    Assert itinerary is valid, raise AssertionError if not.

    Args:
        allow_warnings: If False, warnings also cause assertion failure
    """
    result = validate_itinerary(itinerary)
    logger.debug("\n" + format_validation_report(result))

    errors = [v for v in result["violations"] if v["severity"] == "error"]
    warnings = [v for v in result["violations"] if v["severity"] == "warning"]

    if errors:
        raise AssertionError(
            f"Itinerary has {len(errors)} errors:\n"
            + "\n".join(f"  - {v['message']}" for v in errors)
        )

    if not allow_warnings and warnings:
        raise AssertionError(
            f"Itinerary has {len(warnings)} warnings:\n"
            + "\n".join(f"  - {v['message']}" for v in warnings)
        )
