from fastapi.testclient import TestClient

from roam.main import app
from roam.schemas.itinerary import GeneratedItinerary
from roam.utils.validators import validate_itinerary

client = TestClient(app)


def frontend_leg(order, name, days, experiences=(), **extra):
    return {
        "id": f"leg-{order}",
        "order": order,
        "destination": {"name": name, "country": "Portugal"},
        "startDate": None,
        "endDate": None,
        "days": days,
        "inboundFlight": None,
        "outboundFlight": None,
        "hotel": {"id": f"h-{order}", "name": f"{name} Inn", "pricePerNight": 90},
        "experiences": list(experiences),
        "budget": {"allocated": 1000, "spent": 0},
        **extra,
    }


TRIP = [
    frontend_leg(
        0,
        "Lisbon",
        2,
        experiences=[
            {"id": "belem", "name": "Belém Tower", "latitude": 38.6916, "longitude": -9.2160, "duration": "2 hours", "price": 10},
            {"id": "alfama", "name": "Alfama walk", "latitude": 38.7118, "longitude": -9.1300, "duration": 90},
            {"id": "lx-factory", "name": "LX Factory", "coordinates": {"lat": 38.7036, "lng": -9.1784}},
        ],
        startDate="2025-06-01",
        outboundFlight={
            "id": "tp-1",
            "flightNumber": "TP1940",
            "departureTime": "09:00",
            "arrivalTime": "10:00",
            "price": 60,
        },
    ),
    frontend_leg(
        1,
        "Porto",
        2,
        experiences=[
            {"id": "ribeira", "name": "Ribeira", "latitude": 41.1407, "longitude": -8.6110, "duration": "PT1H30M"},
        ],
    ),
]


def test_health():
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_generate_itinerary_end_to_end():
    """Frontend legs → HTTP → camelCase itinerary"""
    response = client.post("/api/itinerary/generate", json={"legs": TRIP})
    assert response.status_code == 200

    body = response.json()
    assert body["success"] is True
    itinerary = body["itinerary"]

    assert itinerary["totalDays"] == 5
    assert [d["dayNumber"] for d in itinerary["days"]] == [1, 2, 3, 4, 5]
    assert itinerary["days"][0]["date"] == "2025-06-01"
    assert itinerary["days"][2]["isTransitionDay"] is True
    assert itinerary["days"][2]["fromLegId"] == "leg-0"
    assert itinerary["stats"]["transitionDays"] == 1
    assert itinerary["stats"]["totalExperiences"] == 4
    assert itinerary["summary"] == "2 legs over 5 days (1 transition day): Lisbon → Porto"

    first_items = itinerary["days"][0]["items"]
    assert all({"id", "type", "title", "startTime", "endTime"} <= set(i) for i in first_items)

    # the wire format parses back and passes the rule checker
    parsed = GeneratedItinerary.model_validate(itinerary)
    result = validate_itinerary(parsed)
    assert result["valid"], result["violations"]


def test_generate_rejects_bad_payloads():
    assert client.post("/api/itinerary/generate", json={}).status_code == 400
    assert client.post("/api/itinerary/generate", json={"legs": []}).status_code == 400

    too_many = [frontend_leg(i, f"City {i}", 1) for i in range(21)]
    assert client.post("/api/itinerary/generate", json={"legs": too_many}).status_code == 400

    gap = [frontend_leg(0, "Lisbon", 1), frontend_leg(3, "Porto", 1)]
    response = client.post("/api/itinerary/generate", json={"legs": gap})
    assert response.status_code == 400
    assert "contiguous" in response.json()["detail"]

    no_days = [frontend_leg(0, "Lisbon", 0)]
    response = client.post("/api/itinerary/generate", json={"legs": no_days})
    assert response.status_code == 400
    assert "Leg 1 (Lisbon)" in response.json()["detail"]


def test_optimize_route():
    activities = [
        {"id": "a", "lat": 0.0, "lng": 0.0},
        {"id": "b", "lat": 0.0, "lng": 0.09},
        {"id": "no-coords"},
        {"id": "c", "lat": 0.09, "lng": 0.0},
        {"id": "d", "coordinates": {"lat": 0.09, "lng": 0.09}},
    ]
    response = client.post("/api/itinerary/optimize", json={"activities": activities})
    assert response.status_code == 200

    body = response.json()
    assert body["worthwhile"] is True
    assert body["comparison"]["distanceSavedPercent"] > 10
    assert body["comparison"]["unlocatedIds"] == ["no-coords"]
    assert body["optimizedSequence"][0] == "a"
    assert body["optimizedSequence"][-1] == "no-coords"


def test_optimize_nothing_to_do():
    response = client.post(
        "/api/itinerary/optimize", json={"activities": [{"id": "a", "lat": 1, "lng": 1}]}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["comparison"] is None
    assert body["worthwhile"] is False
    assert body["optimizedSequence"] == ["a"]


def test_optimize_rejects_duplicate_ids():
    response = client.post(
        "/api/itinerary/optimize", json={"activities": [{"id": "a"}, {"id": "a"}]}
    )
    assert response.status_code == 400


def test_generate_rejects_malformed_leg_fields():
    """Malformed fields inside a leg are client errors that name the leg"""
    free_tour = frontend_leg(
        0, "Lisbon", 2, experiences=[{"id": "walk", "name": "Walking tour", "price": "free"}]
    )
    response = client.post("/api/itinerary/generate", json={"legs": [free_tour]})
    assert response.status_code == 400
    assert response.json()["detail"].startswith("Leg 1: ")
    assert "price" in response.json()["detail"]

    flat_budget = [frontend_leg(0, "Lisbon", 2), frontend_leg(1, "Porto", 2, budget=500)]
    response = client.post("/api/itinerary/generate", json={"legs": flat_budget})
    assert response.status_code == 400
    assert response.json()["detail"] == "Leg 2: budget must be an object, got int"

    named_hotel = [frontend_leg(0, "Lisbon", 2, hotel="Lisbon Inn")]
    response = client.post("/api/itinerary/generate", json={"legs": named_hotel})
    assert response.status_code == 400
