from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from roam.core.config import settings
from roam.schemas.itinerary import Experience, ItineraryItem, TransitInfo
from roam.utils.geo import distance_km, estimate_transit_mode, is_valid_coordinate
from roam.utils.logger import get_logger

logger = get_logger(__name__)

# Configuration

DAY_MINUTES = 24 * 60
LAST_MINUTE = DAY_MINUTES - 1

DEFAULT_DURATION_MIN = 120

# Typical visit length by experience category (minutes)
CATEGORY_DURATIONS = {
    "beach": 180,
    "beaches": 180,
    "museum": 120,
    "museums": 120,
    "restaurant": 90,
    "dining": 90,
    "cafes": 60,
    "food_tours": 180,
    "tour": 240,
    "day_trips": 360,
    "hiking": 300,
    "outdoor": 180,
    "nightlife": 180,
    "shopping": 120,
    "landmark": 60,
    "cultural": 120,
    "hidden_gems": 90,
    "park": 120,
    "show": 150,
    "spa": 180,
    "wellness": 150,
    "water-sports": 180,
}

# name -> (window start, window end, meal length), minutes from midnight
MEAL_SLOTS: Dict[str, Tuple[int, int, int]] = {
    "lunch": (12 * 60, 14 * 60 + 30, 60),
    "dinner": (18 * 60, 21 * 60, 90),
}


# Helper Functions


def clock_minutes(value: Optional[str]) -> Optional[int]:
    """
    Parse 'HH:MM', 'HH:MM:SS' or an ISO datetime to minutes from midnight.
    Returns None when the value is missing or unparseable.
    """
    if not value:
        return None
    s = str(value).strip()
    try:
        if "T" in s:
            t = dt.datetime.fromisoformat(s.replace("Z", "+00:00")).time()
            return t.hour * 60 + t.minute
        parts = s.split(":")
        h = int(parts[0])
        m = int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        return None
    if not (0 <= h < 24 and 0 <= m < 60):
        return None
    return h * 60 + m


def format_clock(minutes: int) -> str:
    """Minutes from midnight to 'HH:MM', clamped to the same day."""
    m = max(0, min(int(minutes), LAST_MINUTE))
    return f"{m // 60:02d}:{m % 60:02d}"


def experience_duration(experience: Experience) -> int:
    if experience.duration_minutes and experience.duration_minutes > 0:
        return int(experience.duration_minutes)
    category = (experience.category or "").lower()
    return CATEGORY_DURATIONS.get(category, DEFAULT_DURATION_MIN)


def is_located(experience: Experience) -> bool:
    coords = experience.coordinates
    return coords is not None and is_valid_coordinate(coords.lat, coords.lng)


# Data Structures


@dataclass
class DaySchedule:
    items: List[ItineraryItem]
    total_cost: float
    unscheduled: List[str] = field(default_factory=list)
    transit_minutes: int = 0


class _Timeline:
    """Occupied [start, end) intervals for one day."""

    def __init__(self) -> None:
        self.busy: List[Tuple[int, int]] = []

    def occupy(self, start: int, end: int) -> None:
        self.busy.append((start, end))

    def first_free(self, start: int, length: int, limit: int) -> Optional[int]:
        """Earliest t >= start with [t, t+length) free and t+length <= limit."""
        t = start
        while t + length <= limit:
            clash = next((e for s, e in self.busy if t < e and s < t + length), None)
            if clash is None:
                return t
            t = clash
        return None


def normalize_anchors(
    anchors: Sequence[ItineraryItem],
) -> List[Tuple[int, int, ItineraryItem]]:
    """
    Sort fixed items by start and push any overlapping one to the end of its
    predecessor, keeping its duration.
    """
    timed = []
    for item in anchors:
        start = clock_minutes(item.start_time) or 0
        end = clock_minutes(item.end_time)
        if end is None or end <= start:
            end = min(start + max(item.duration_minutes, 1), DAY_MINUTES)
        timed.append((start, end, item))
    timed.sort(key=lambda x: (x[0], x[1]))

    out: List[Tuple[int, int, ItineraryItem]] = []
    prev_end = 0
    for start, end, item in timed:
        if start < prev_end:
            length = end - start
            logger.debug(
                "Anchor %s overlaps previous item, moving %s -> %s",
                item.id,
                format_clock(start),
                format_clock(prev_end),
            )
            start, end = prev_end, min(prev_end + length, DAY_MINUTES)
            item = item.model_copy(
                update={
                    "start_time": format_clock(start),
                    "end_time": format_clock(end),
                    "duration_minutes": end - start,
                }
            )
        out.append((start, end, item))
        prev_end = end
    return out


def _meal_item(key: str, name: str, start: int, length: int) -> ItineraryItem:
    return ItineraryItem(
        id=f"meal-{key}-{name}",
        type="meal",
        title=name.capitalize(),
        start_time=format_clock(start),
        end_time=format_clock(start + length),
        duration_minutes=length,
    )


# Main Entry Point


def schedule_day(
    activities: Sequence[Experience],
    anchors: Sequence[ItineraryItem] = (),
    day_start: Optional[int] = None,
    day_end: Optional[int] = None,
    buffer_minutes: Optional[int] = None,
    include_meals: bool = True,
    key: str = "day",
) -> DaySchedule:
    """
    Time-slot one day's activities around fixed anchors.

    Activities keep the given order. Each one reserves its duration starting
    at the cursor (or the next slot clear of anchors); a transit item goes
    right before every activity whose predecessor is also located. Meals are
    added when the day has room in the lunch/dinner windows.

    Args:
        activities: experiences in committed order
        anchors: fixed items (flights, hotel check-in/out), never reordered
        day_start, day_end: minutes from midnight bounding activities
        buffer_minutes: break after each activity
        include_meals: insert lunch/dinner opportunistically
        key: unique day key used in generated item ids

    Returns:
        DaySchedule with time-sorted, non-overlapping items
    """
    if day_start is None:
        day_start = clock_minutes(settings.DAY_START)
    if day_end is None:
        day_end = clock_minutes(settings.DAY_END)
    if buffer_minutes is None:
        buffer_minutes = settings.ACTIVITY_BUFFER_MINUTES

    timeline = _Timeline()
    placed: List[Tuple[int, ItineraryItem]] = []
    for start, end, item in normalize_anchors(anchors):
        timeline.occupy(start, end)
        placed.append((start, item))

    served: set = set()

    def place_meal(name: str, earliest: int) -> Optional[int]:
        win_start, win_end, length = MEAL_SLOTS[name]
        start = timeline.first_free(max(earliest, win_start), length, min(win_end, day_end))
        if start is None:
            return None
        timeline.occupy(start, start + length)
        placed.append((start, _meal_item(key, name, start, length)))
        served.add(name)
        return start + length

    cursor = day_start
    prev: Optional[Experience] = None
    unscheduled: List[str] = []
    transit_total = 0
    n_placed = 0

    for exp in activities:
        if include_meals:
            for name, (win_start, win_end, length) in MEAL_SLOTS.items():
                if name in served or not (win_start <= cursor <= win_end - length):
                    continue
                after = place_meal(name, cursor)
                if after is not None:
                    cursor = after

        duration = experience_duration(exp)
        transit = None
        if prev is not None and is_located(exp):
            transit = estimate_transit_mode(distance_km(prev.coordinates, exp.coordinates))
        transit_min = transit.minutes if transit else 0

        start = timeline.first_free(cursor, transit_min + duration, day_end)
        if start is None:
            logger.debug("No room for %s (%d min) after %s", exp.id, duration, format_clock(cursor))
            unscheduled.append(exp.id)
            continue

        if transit is not None:
            placed.append(
                (
                    start,
                    ItineraryItem(
                        id=f"transit-{prev.id}-{exp.id}",
                        type="transit",
                        title=f"Travel to {exp.name}",
                        start_time=format_clock(start),
                        end_time=format_clock(start + transit_min),
                        duration_minutes=transit_min,
                        transit_info=TransitInfo(
                            mode=transit.mode,
                            duration=transit.duration_label,
                            distance=transit.distance_label,
                        ),
                    ),
                )
            )
            transit_total += transit_min

        exp_start = start + transit_min
        placed.append(
            (
                exp_start,
                ItineraryItem(
                    id=f"exp-{exp.id}",
                    type="experience",
                    title=exp.name,
                    start_time=format_clock(exp_start),
                    end_time=format_clock(exp_start + duration),
                    duration_minutes=duration,
                    location=exp.coordinates,
                    cost=exp.cost,
                    experience_id=exp.id,
                    notes=exp.notes,
                ),
            )
        )
        timeline.occupy(start, exp_start + duration)
        n_placed += 1

        cursor = exp_start + duration + buffer_minutes
        prev = exp if is_located(exp) else None

    # Fill any meal still missing into a free gap of its window
    if include_meals and n_placed:
        for name in MEAL_SLOTS:
            if name not in served:
                place_meal(name, day_start)

    placed.sort(key=lambda x: x[0])
    items = [item for _, item in placed]
    total_cost = round(sum(item.cost or 0.0 for item in items), 2)

    return DaySchedule(
        items=items,
        total_cost=total_cost,
        unscheduled=unscheduled,
        transit_minutes=transit_total,
    )
