from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from roam.core.config import settings
from roam.core.errors import ValidationError
from roam.schemas.itinerary import (
    Experience,
    Flight,
    GeneratedItinerary,
    ItineraryDay,
    ItineraryItem,
    ItineraryStats,
    LegBreakdown,
    TripLeg,
)
from roam.services.scheduler import (
    DAY_MINUTES,
    clock_minutes,
    experience_duration,
    format_clock,
    schedule_day,
)
from roam.utils.logger import get_logger

logger = get_logger(__name__)

# Configuration

HOTEL_ANCHOR_MIN = 30
AIRPORT_ARRIVAL_BUFFER_MIN = 60  # deplane + transfer to town
AIRPORT_DEPARTURE_BUFFER_MIN = 120
DEFAULT_DEPARTURE = 14 * 60
DEFAULT_FLIGHT_MIN = 120
FREE_DAY_NOTE = "Free day - explore on your own!"


# Leg state machine


class LegState(str, Enum):
    PENDING = "pending"
    ALLOCATED = "allocated"
    SCHEDULED = "scheduled"


_LEG_TRANSITIONS = {
    LegState.PENDING: {LegState.ALLOCATED},
    LegState.ALLOCATED: {LegState.SCHEDULED},
    LegState.SCHEDULED: set(),
}


@dataclass
class LegDay:
    date: dt.date
    anchors: List[ItineraryItem]
    day_start: int
    day_end: int
    capacity: int
    notes: List[str] = field(default_factory=list)
    experiences: List[Experience] = field(default_factory=list)


@dataclass
class LegPlan:
    position: int
    leg: TripLeg
    day_count: int
    state: LegState = LegState.PENDING
    days: List[LegDay] = field(default_factory=list)
    unplaced: List[Experience] = field(default_factory=list)

    def advance(self, target: LegState) -> None:
        if target not in _LEG_TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Leg {self.leg.id}: illegal transition {self.state.value} -> {target.value}"
            )
        logger.debug("Leg %s: %s -> %s", self.leg.id, self.state.value, target.value)
        self.state = target


# Validation


def _leg_label(leg: TripLeg, position: int) -> str:
    return f"Leg {position + 1} ({leg.destination.name})"


def leg_day_count(leg: TripLeg, position: int = 0) -> int:
    """Inclusive date span when both dates are set, else leg.days."""
    if leg.start_date and leg.end_date:
        if leg.end_date < leg.start_date:
            raise ValidationError(
                f"{_leg_label(leg, position)} ends before it starts", leg_index=position
            )
        return (leg.end_date - leg.start_date).days + 1
    if leg.days <= 0:
        raise ValidationError(
            f"{_leg_label(leg, position)} has no day count", leg_index=position
        )
    return leg.days


def validate_legs(legs: Sequence[TripLeg], max_legs: Optional[int] = None) -> List[TripLeg]:
    """
    Check the leg list and return it sorted by order.

    Raises:
        ValidationError: empty list, too many legs, broken order sequence,
            or a leg without a usable day count
    """
    max_legs = settings.MAX_LEGS if max_legs is None else max_legs

    if not legs:
        raise ValidationError("At least one trip leg is required")
    if len(legs) > max_legs:
        raise ValidationError(f"Too many legs: {len(legs)} (maximum {max_legs})")

    ordered = sorted(legs, key=lambda l: l.order)
    if [l.order for l in ordered] != list(range(len(ordered))):
        raise ValidationError("Leg order values must be unique and contiguous from 0")

    for position, leg in enumerate(ordered):
        leg_day_count(leg, position)
    return ordered


# Helper Functions


def needs_transition_day(departing: TripLeg, arriving: TripLeg) -> bool:
    return departing.outbound_flight is not None or arriving.inbound_flight is not None


def trip_start_date(plans: List[LegPlan], today: Optional[dt.date] = None) -> dt.date:
    """
    First known start date, moved back by the days of any undated legs
    (and transition days) before it. Falls back to today.
    """
    offset = 0
    for i, plan in enumerate(plans):
        if plan.leg.start_date:
            return plan.leg.start_date - dt.timedelta(days=offset)
        offset += plan.day_count
        if i + 1 < len(plans) and needs_transition_day(plan.leg, plans[i + 1].leg):
            offset += 1
    return today or dt.date.today()


def flight_item(flight: Flight, title: str) -> ItineraryItem:
    dep = clock_minutes(flight.departure_time)
    if dep is None:
        dep = DEFAULT_DEPARTURE
    dep = min(dep, DAY_MINUTES - 1)
    arr = clock_minutes(flight.arrival_time)
    notes = None
    if arr is None or arr <= dep:
        if arr is not None:
            notes = "Arrives the next day"
        arr = dep + (flight.duration_minutes or DEFAULT_FLIGHT_MIN)
    arr = min(arr, DAY_MINUTES)
    return ItineraryItem(
        id=f"flight-{flight.id}",
        type="flight",
        title=title,
        start_time=format_clock(dep),
        end_time=format_clock(arr),
        duration_minutes=arr - dep,
        cost=flight.price,
        flight_number=flight.flight_number,
        notes=notes,
    )


def _same_flight(a: Flight, b: Flight) -> bool:
    if a.id == b.id:
        return True
    return bool(a.flight_number) and a.flight_number == b.flight_number


def _hotel_item(leg: TripLeg, kind: str, start: int, day_count: int) -> ItineraryItem:
    hotel = leg.hotel
    name = hotel.name if hotel else "hotel"
    cost = None
    if kind == "checkin" and hotel:
        # check-out falls on the leg's last day, so n days is n - 1 nights
        nights = max(1, day_count - 1)
        cost = hotel.total_price if hotel.total_price is not None else hotel.price_per_night * nights
    title = (
        f"Check in at {name} in {leg.destination.name}"
        if kind == "checkin"
        else f"Check out from {name}"
    )
    start = min(start, DAY_MINUTES - HOTEL_ANCHOR_MIN)
    end = start + HOTEL_ANCHOR_MIN
    return ItineraryItem(
        id=f"{kind}-{leg.id}",
        type="hotel",
        title=title,
        start_time=format_clock(start),
        end_time=format_clock(end),
        duration_minutes=end - start,
        location=hotel.coordinates if hotel else None,
        cost=cost,
    )


def _anchor_overlap(anchors: List[ItineraryItem], start: int, end: int) -> int:
    total = 0
    for item in anchors:
        a, b = clock_minutes(item.start_time), clock_minutes(item.end_time)
        if a is None or b is None:
            continue
        total += max(0, min(b, end) - max(a, start))
    return total


# Allocation


def allocate_leg_days(
    plan: LegPlan,
    first_date: dt.date,
    is_first_leg: bool,
    is_last_leg: bool,
    policy: Optional[str] = None,
) -> None:
    """Lay the leg's days onto the calendar with their anchors and time windows."""
    leg = plan.leg
    base_start = clock_minutes(settings.DAY_START)
    base_end = clock_minutes(settings.DAY_END)
    check_in = clock_minutes(settings.CHECK_IN_TIME)
    check_out = clock_minutes(settings.CHECK_OUT_TIME)

    for offset in range(plan.day_count):
        anchors: List[ItineraryItem] = []
        notes: List[str] = []
        day_start, day_end = base_start, base_end

        if offset == 0:
            notes.append(f"Arrival in {leg.destination.name}")
            checkin_at = check_in
            if is_first_leg and leg.inbound_flight:
                flight = flight_item(leg.inbound_flight, f"Arrive in {leg.destination.name}")
                anchors.append(flight)
                landed = clock_minutes(flight.end_time) + AIRPORT_ARRIVAL_BUFFER_MIN
                day_start = max(day_start, landed)
                checkin_at = max(checkin_at, landed)
            anchors.append(_hotel_item(leg, "checkin", checkin_at, plan.day_count))

        if offset == plan.day_count - 1:
            if plan.day_count > 1:
                anchors.append(_hotel_item(leg, "checkout", check_out, plan.day_count))
            if is_last_leg and leg.outbound_flight:
                flight = flight_item(leg.outbound_flight, "Departure flight home")
                anchors.append(flight)
                takeoff = clock_minutes(flight.start_time) - AIRPORT_DEPARTURE_BUFFER_MIN
                day_end = min(day_end, max(takeoff, 0))

        window = max(0, day_end - day_start)
        capacity = min(
            settings.DAILY_ACTIVE_MINUTES,
            max(0, window - _anchor_overlap(anchors, day_start, day_end)),
        )
        plan.days.append(
            LegDay(
                date=first_date + dt.timedelta(days=offset),
                anchors=anchors,
                day_start=day_start,
                day_end=day_end,
                capacity=capacity,
                notes=notes,
            )
        )

    plan.unplaced = pack_experiences(
        plan.days, leg.experiences, policy or settings.EXPERIENCE_PACKING
    )
    plan.advance(LegState.ALLOCATED)


def pack_experiences(
    days: List[LegDay],
    experiences: Sequence[Experience],
    policy: str = "even",
    max_per_day: Optional[int] = None,
    full_day_minutes: Optional[int] = None,
) -> List[Experience]:
    """
    Assign experiences to days in their given order.

    Policies:
        even:   at most ceil(n / days) per day, spreading the list evenly
        packed: fill each day up to its capacity before moving on

    Both respect each day's capacity (minutes) and max_per_day. An activity
    longer than a full day may stand alone on a day with full capacity.
    Leftovers go first-fit into any day with room.

    Returns:
        experiences that fit nowhere
    """
    max_per_day = settings.MAX_EXPERIENCES_PER_DAY if max_per_day is None else max_per_day
    full_day = settings.DAILY_ACTIVE_MINUTES if full_day_minutes is None else full_day_minutes
    if policy not in ("even", "packed"):
        raise ValueError(f"Unknown packing policy: {policy}")
    if not days:
        return list(experiences)

    used = [sum(experience_duration(e) for e in d.experiences) for d in days]

    def fits(d: int, duration: int) -> bool:
        day = days[d]
        if len(day.experiences) >= max_per_day:
            return False
        if used[d] + duration <= day.capacity:
            return True
        return not day.experiences and day.capacity >= full_day

    target = max_per_day
    if policy == "even":
        target = min(max_per_day, math.ceil(len(experiences) / len(days)))

    queue = list(experiences)
    pos = 0
    for d, day in enumerate(days):
        while pos < len(queue) and len(day.experiences) < target:
            duration = experience_duration(queue[pos])
            if not fits(d, duration):
                break
            day.experiences.append(queue[pos])
            used[d] += duration
            pos += 1

    unplaced: List[Experience] = []
    for exp in queue[pos:]:
        duration = experience_duration(exp)
        slot = next((d for d in range(len(days)) if fits(d, duration)), None)
        if slot is None:
            unplaced.append(exp)
            continue
        days[slot].experiences.append(exp)
        used[slot] += duration

    return unplaced


# Scheduling


def schedule_leg(plan: LegPlan) -> Tuple[List[dict], List[str], int]:
    """
    Time-slot every allocated day of a leg.

    Returns:
        (day payloads without day_number, unscheduled experience ids, transit minutes)
    """
    out: List[dict] = []
    unscheduled = [e.id for e in plan.unplaced]
    transit_minutes = 0

    for i, day in enumerate(plan.days):
        schedule = schedule_day(
            day.experiences,
            anchors=day.anchors,
            day_start=day.day_start,
            day_end=day.day_end,
            key=day.date.isoformat(),
        )
        transit_minutes += schedule.transit_minutes
        unscheduled.extend(schedule.unscheduled)

        notes = list(day.notes)
        if not any(item.type == "experience" for item in schedule.items):
            notes.append(FREE_DAY_NOTE)
        skipped = list(schedule.unscheduled)
        if i == len(plan.days) - 1:
            skipped.extend(e.id for e in plan.unplaced)
        if skipped:
            names = _experience_names(plan.leg, skipped)
            notes.append(f"Not scheduled: {', '.join(names)}")
            logger.warning(
                "Leg %s, %s: %d experiences did not fit",
                plan.leg.id,
                day.date.isoformat(),
                len(skipped),
            )

        out.append(
            {
                "date": day.date,
                "leg_id": plan.leg.id,
                "items": schedule.items,
                "notes": "; ".join(notes) or None,
                "total_cost": schedule.total_cost,
            }
        )

    plan.advance(LegState.SCHEDULED)
    return out, unscheduled, transit_minutes


def _experience_names(leg: TripLeg, ids: List[str]) -> List[str]:
    by_id = {e.id: e.name for e in leg.experiences}
    return [by_id.get(i, i) for i in ids]


def transition_day_payload(
    departing: TripLeg, arriving: TripLeg, date: dt.date
) -> dict:
    """Travel day between two legs: only the connecting flight(s)."""
    flights = [f for f in (departing.outbound_flight, arriving.inbound_flight) if f]
    if len(flights) == 2 and _same_flight(*flights):
        flights = flights[:1]

    if len(flights) == 1:
        items = [flight_item(flights[0], f"Flight to {arriving.destination.name}")]
    else:
        items = [
            flight_item(flights[0], f"Flight from {departing.destination.name}"),
            flight_item(flights[1], f"Flight to {arriving.destination.name}"),
        ]

    schedule = schedule_day([], anchors=items, include_meals=False, key=date.isoformat())
    return {
        "date": date,
        "leg_id": None,
        "is_transition_day": True,
        "from_leg_id": departing.id,
        "to_leg_id": arriving.id,
        "items": schedule.items,
        "notes": f"Travel day: {departing.destination.name} → {arriving.destination.name}",
        "total_cost": schedule.total_cost,
    }


def build_summary(legs: List[TripLeg], total_days: int, transition_days: int) -> str:
    route = " → ".join(leg.destination.name for leg in legs)
    leg_word = "leg" if len(legs) == 1 else "legs"
    day_word = "day" if total_days == 1 else "days"
    transition_word = "transition day" if transition_days == 1 else "transition days"
    return (
        f"{len(legs)} {leg_word} over {total_days} {day_word} "
        f"({transition_days} {transition_word}): {route}"
    )


# Main Entry Point


def generate_full_itinerary(
    legs: Sequence[TripLeg],
    *,
    today: Optional[dt.date] = None,
    packing: Optional[str] = None,
) -> GeneratedItinerary:
    """
    Build the full multi-day itinerary for an ordered list of legs.

    Flow:
    1. Validate legs (raises ValidationError, nothing is generated on failure)
    2. Assign calendar dates sequentially, adding a transition day between
       legs connected by a flight
    3. Allocate each leg's experiences across its days
    4. Time-slot each day via the daily scheduler
    5. Number days with one running counter and summarize

    Args:
        legs: trip legs (read-only)
        today: start date used when no leg carries a date
        packing: experience packing policy ("even" | "packed"), default from settings

    Returns:
        GeneratedItinerary
    """
    ordered = validate_legs(legs)
    plans = [
        LegPlan(position=i, leg=leg, day_count=leg_day_count(leg, i))
        for i, leg in enumerate(ordered)
    ]

    cursor = trip_start_date(plans, today)
    policy = packing or settings.EXPERIENCE_PACKING

    payloads: List[dict] = []
    unscheduled: List[str] = []
    transit_minutes = 0
    transition_days = 0
    breakdown: List[LegBreakdown] = []

    for i, plan in enumerate(plans):
        leg = plan.leg
        if leg.start_date and leg.start_date != cursor:
            logger.warning(
                "Leg %s starts %s but follows on %s; using sequential date",
                leg.id,
                leg.start_date.isoformat(),
                cursor.isoformat(),
            )

        allocate_leg_days(plan, cursor, i == 0, i == len(plans) - 1, policy)

        days, leg_unscheduled, leg_transit = schedule_leg(plan)
        payloads.extend(days)
        unscheduled.extend(leg_unscheduled)
        transit_minutes += leg_transit
        cursor += dt.timedelta(days=plan.day_count)

        breakdown.append(
            LegBreakdown(
                leg_id=leg.id,
                destination=leg.destination.name,
                days=plan.day_count,
                experiences=sum(
                    1 for d in days for item in d["items"] if item.type == "experience"
                ),
            )
        )

        if i + 1 < len(plans) and needs_transition_day(leg, plans[i + 1].leg):
            payloads.append(transition_day_payload(leg, plans[i + 1].leg, cursor))
            transition_days += 1
            cursor += dt.timedelta(days=1)

    days = [
        ItineraryDay(day_number=n, **payload) for n, payload in enumerate(payloads, start=1)
    ]
    total_days = len(days)

    stats = ItineraryStats(
        total_experiences=sum(b.experiences for b in breakdown),
        total_transit_minutes=transit_minutes,
        transition_days=transition_days,
        unscheduled_experiences=unscheduled,
        leg_breakdown=breakdown,
    )
    summary = build_summary(ordered, total_days, transition_days)
    logger.info("Itinerary generated: %s", summary)

    return GeneratedItinerary(days=days, total_days=total_days, summary=summary, stats=stats)


# Day Editing


def _item_experience(item: ItineraryItem) -> Experience:
    return Experience(
        id=item.experience_id or item.id.removeprefix("exp-"),
        name=item.title,
        coordinates=item.location,
        duration_minutes=item.duration_minutes or None,
        cost=item.cost or 0.0,
        notes=item.notes,
    )


def reorder_day_items(day: ItineraryDay, experience_ids: Sequence[str]) -> ItineraryDay:
    """
    Re-schedule one day after the caller commits a new experience order.

    Flights and hotel items stay where they are. The activity window is
    rebuilt the way the allocator sets it: it opens after an arrival flight
    and closes ahead of a departure flight. Everything else is regenerated
    by schedule_day, and experiences that no longer fit are noted.

    Args:
        day: a scheduled (non-transition) day
        experience_ids: the day's experience ids in the new order, e.g.
            comparison.optimized_order passed through apply_optimized_order

    Raises:
        ValidationError: transition day, or ids that are not a permutation
            of the day's experiences
    """
    if day.is_transition_day:
        raise ValidationError(f"Day {day.day_number} is a travel day with nothing to reorder")

    by_id = {}
    for item in day.items:
        if item.type == "experience":
            exp = _item_experience(item)
            by_id[exp.id] = exp

    ids = list(experience_ids)
    if len(ids) != len(by_id) or set(ids) != set(by_id):
        raise ValidationError(
            f"Day {day.day_number}: new order must list each of its experiences exactly once"
        )

    anchors = [item for item in day.items if item.type in ("flight", "hotel")]
    activity_starts = [
        clock_minutes(item.start_time)
        for item in day.items
        if item.type in ("experience", "transit")
    ]
    first = min(activity_starts) if activity_starts else clock_minutes(settings.DAY_START)

    day_start = clock_minutes(settings.DAY_START)
    day_end = clock_minutes(settings.DAY_END)
    for item in anchors:
        if item.type != "flight":
            continue
        start, end = clock_minutes(item.start_time), clock_minutes(item.end_time)
        if end <= first:
            day_start = max(day_start, end + AIRPORT_ARRIVAL_BUFFER_MIN)
        else:
            day_end = min(day_end, max(start - AIRPORT_DEPARTURE_BUFFER_MIN, 0))

    schedule = schedule_day(
        [by_id[i] for i in ids],
        anchors=anchors,
        day_start=day_start,
        day_end=day_end,
        key=day.date.isoformat(),
    )

    notes = [
        n for n in (day.notes or "").split("; ") if n and not n.startswith("Not scheduled:")
    ]
    if schedule.unscheduled:
        names = [by_id[i].name for i in schedule.unscheduled]
        notes.append(f"Not scheduled: {', '.join(names)}")
        logger.warning(
            "Day %d reorder left %d experiences unscheduled",
            day.day_number,
            len(schedule.unscheduled),
        )

    return day.model_copy(
        update={
            "items": schedule.items,
            "total_cost": schedule.total_cost,
            "notes": "; ".join(notes) or None,
        }
    )


def move_day_item(day: ItineraryDay, from_index: int, to_index: int) -> ItineraryDay:
    """Move the experience at from_index to to_index and re-schedule the day."""
    ids = [
        item.experience_id or item.id.removeprefix("exp-")
        for item in day.items
        if item.type == "experience"
    ]
    if not (0 <= from_index < len(ids) and 0 <= to_index < len(ids)):
        raise ValidationError(
            f"Day {day.day_number}: positions must be between 0 and {len(ids) - 1}"
        )
    ids.insert(to_index, ids.pop(from_index))
    return reorder_day_items(day, ids)
