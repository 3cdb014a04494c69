from roam.schemas.itinerary import Coordinates, Experience, ItineraryItem
from roam.services.scheduler import (
    clock_minutes,
    experience_duration,
    format_clock,
    normalize_anchors,
    schedule_day,
)


def exp(id, lat=None, lng=None, minutes=120, cost=0.0, category=None):
    coords = Coordinates(lat=lat, lng=lng) if lat is not None else None
    return Experience(
        id=id,
        name=f"Experience {id}",
        category=category,
        coordinates=coords,
        duration_minutes=minutes,
        cost=cost,
    )


def anchor(id, start, end, type="hotel"):
    return ItineraryItem(id=id, type=type, title=id, start_time=start, end_time=end)


def assert_sorted_non_overlapping(items):
    spans = [(clock_minutes(i.start_time), clock_minutes(i.end_time)) for i in items]
    for (s1, e1), (s2, _) in zip(spans, spans[1:]):
        assert s1 <= s2
        assert e1 <= s2, f"overlap: {spans}"


def test_clock_helpers():
    assert clock_minutes("09:30") == 570
    assert clock_minutes("23:59:59") == 1439
    assert clock_minutes("2025-06-01T14:05:00Z") == 845
    assert clock_minutes("25:00") is None
    assert clock_minutes("noon") is None
    assert clock_minutes(None) is None
    assert format_clock(570) == "09:30"
    assert format_clock(2000) == "23:59"
    assert format_clock(-5) == "00:00"


def test_experience_duration_falls_back_to_category():
    assert experience_duration(exp("a", minutes=45)) == 45
    assert experience_duration(exp("b", minutes=None, category="museum")) == 120
    assert experience_duration(exp("c", minutes=None, category="Day_Trips")) == 360
    assert experience_duration(exp("d", minutes=None)) == 120


def test_empty_day_has_no_items():
    schedule = schedule_day([])
    assert schedule.items == []
    assert schedule.total_cost == 0


def test_activities_keep_order_with_transit_between_located():
    activities = [
        exp("a", 38.7100, -9.1400, minutes=60, cost=10),
        exp("b", 38.7150, -9.1400, minutes=60, cost=5.5),
    ]
    schedule = schedule_day(activities, key="2025-06-01")

    experiences = [i for i in schedule.items if i.type == "experience"]
    assert [i.experience_id for i in experiences] == ["a", "b"]
    assert experiences[0].start_time == "09:00"

    transit = [i for i in schedule.items if i.type == "transit"]
    assert len(transit) == 1
    assert transit[0].id == "transit-a-b"
    assert transit[0].transit_info.mode == "walk"
    assert transit[0].end_time == experiences[1].start_time
    assert schedule.transit_minutes == transit[0].duration_minutes

    assert schedule.total_cost == 15.5
    assert_sorted_non_overlapping(schedule.items)


def test_no_transit_next_to_unlocated_activity():
    activities = [
        exp("a", 38.71, -9.14, minutes=60),
        exp("b", minutes=60),
        exp("c", 38.72, -9.14, minutes=60),
    ]
    schedule = schedule_day(activities)
    assert not any(i.type == "transit" for i in schedule.items)


def test_meals_added_in_their_windows():
    activities = [exp(str(i), minutes=120) for i in range(3)]
    schedule = schedule_day(activities, key="d1")

    meals = {i.title: i for i in schedule.items if i.type == "meal"}
    assert set(meals) == {"Lunch", "Dinner"}
    assert 12 * 60 <= clock_minutes(meals["Lunch"].start_time) <= 13 * 60 + 30
    assert 18 * 60 <= clock_minutes(meals["Dinner"].start_time) <= 19 * 60 + 30
    assert meals["Lunch"].id == "meal-d1-lunch"
    assert_sorted_non_overlapping(schedule.items)


def test_meals_can_be_disabled():
    schedule = schedule_day([exp("a")], include_meals=False)
    assert [i.type for i in schedule.items] == ["experience"]


def test_activities_flow_around_anchors():
    anchors = [anchor("checkin", "10:00", "10:30")]
    schedule = schedule_day([exp("a", minutes=90)], anchors=anchors, include_meals=False)

    item = next(i for i in schedule.items if i.type == "experience")
    assert item.start_time == "10:30"
    assert [i.id for i in schedule.items] == ["checkin", "exp-a"]


def test_overlapping_anchors_are_shifted():
    anchors = [
        anchor("flight", "14:00", "16:00", type="flight"),
        anchor("checkin", "15:00", "15:30"),
    ]
    normalized = normalize_anchors(anchors)

    assert [item.id for _, _, item in normalized] == ["flight", "checkin"]
    _, _, checkin = normalized[1]
    assert checkin.start_time == "16:00"
    assert checkin.end_time == "16:30"


def test_unfit_activities_are_reported():
    activities = [exp("long", minutes=200), exp("short", minutes=30)]
    schedule = schedule_day(activities, day_start=20 * 60, day_end=21 * 60)

    assert schedule.unscheduled == ["long"]
    assert [i.experience_id for i in schedule.items if i.type == "experience"] == ["short"]


def test_day_end_is_respected():
    activities = [exp(str(i), minutes=180) for i in range(6)]
    schedule = schedule_day(activities)

    for item in schedule.items:
        if item.type == "experience":
            assert clock_minutes(item.end_time) <= 22 * 60
    assert schedule.unscheduled
    assert_sorted_non_overlapping(schedule.items)
