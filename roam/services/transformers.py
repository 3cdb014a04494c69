import datetime as dt
import math
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from roam.core.errors import ValidationError
from roam.schemas.itinerary import (
    Coordinates,
    Destination,
    Experience,
    Flight,
    Hotel,
    LegBudget,
    RouteActivity,
    TripLeg,
)
from roam.utils.geo import is_valid_coordinate
from roam.utils.logger import get_logger

logger = get_logger(__name__)

ISO_DURATION = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?", re.IGNORECASE)
TEXT_DURATION = re.compile(r"(\d+(?:\.\d+)?)\s*(hours?|hrs?|h|minutes?|mins?|m)\b", re.IGNORECASE)

# ============================================================================
# Field Parsing
# ============================================================================


def parse_duration_minutes(value: Any) -> Optional[int]:
    """
    Parse a duration into whole minutes.

    Accepts:
    - numbers (already minutes)
    - ISO 8601 durations: "PT2H30M", "PT45M"
    - free text: "2 hours", "90 min", "1h 30m", "1.5 hours"

    Returns:
        Minutes, or None when the value is empty or unparseable
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        return int(value) if value > 0 else None

    text = str(value).strip()
    if not text:
        return None
    if text.isdigit():
        return int(text) or None

    iso = ISO_DURATION.fullmatch(text)
    if iso and (iso.group(1) or iso.group(2)):
        return int(iso.group(1) or 0) * 60 + int(iso.group(2) or 0)

    total = 0.0
    for amount, unit in TEXT_DURATION.findall(text):
        factor = 60 if unit.lower().startswith("h") else 1
        total += float(amount) * factor
    if total > 0:
        return int(round(total))

    logger.warning(f"Unparseable duration: {value!r}")
    return None


def extract_coordinates(raw: Dict[str, Any]) -> Optional[Coordinates]:
    """
    Find coordinates on a frontend object.

    Lookup order: coordinates → latitude/longitude → lat/lng →
    location.coordinates. Invalid values count as missing.
    """
    candidates = []
    if isinstance(raw.get("coordinates"), dict):
        candidates.append(raw["coordinates"])
    if raw.get("latitude") is not None or raw.get("longitude") is not None:
        candidates.append({"lat": raw.get("latitude"), "lng": raw.get("longitude")})
    if raw.get("lat") is not None or raw.get("lng") is not None:
        candidates.append({"lat": raw.get("lat"), "lng": raw.get("lng")})
    location = raw.get("location")
    if isinstance(location, dict) and isinstance(location.get("coordinates"), dict):
        candidates.append(location["coordinates"])

    for coords in candidates:
        lat, lng = coords.get("lat"), coords.get("lng")
        if is_valid_coordinate(lat, lng):
            return Coordinates(lat=float(lat), lng=float(lng))
    return None


def parse_date(value: Any) -> Optional[dt.date]:
    """Date from 'YYYY-MM-DD' or an ISO datetime string; None if missing."""
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        return dt.date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}")


def _first(raw: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return default


def _number(value: Any, label: str, default: Optional[float] = 0.0) -> Optional[float]:
    """Finite float from a number or numeric string; missing values give default."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number, got {value!r}")
    if not math.isfinite(number):
        raise ValidationError(f"{label} must be a finite number, got {value!r}")
    return number


def _object(value: Any, label: str) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError(f"{label} must be an object, got {type(value).__name__}")
    return value


def _field_error(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    where = ".".join(str(part) for part in first["loc"])
    return f"invalid {where}: {first['msg']}"


# ============================================================================
# Frontend → Backend Transformation
# ============================================================================


def transform_flight(raw: Optional[Dict[str, Any]]) -> Optional[Flight]:
    raw = _object(raw, "flight")
    if not raw:
        return None
    return Flight(
        id=str(raw.get("id") or raw.get("flightNumber") or "flight"),
        flight_number=_first(raw, "flightNumber", "flight_number"),
        airline=raw.get("airline"),
        departure_airport=_first(raw, "departureAirport", "departure_airport"),
        arrival_airport=_first(raw, "arrivalAirport", "arrival_airport"),
        departure_time=_first(raw, "departureTime", "departure_time"),
        arrival_time=_first(raw, "arrivalTime", "arrival_time"),
        duration_minutes=parse_duration_minutes(
            _first(raw, "durationMinutes", "duration_minutes", "duration")
        ),
        price=_number(raw.get("price"), "flight price"),
    )


def transform_hotel(raw: Optional[Dict[str, Any]]) -> Optional[Hotel]:
    raw = _object(raw, "hotel")
    if not raw:
        return None
    return Hotel(
        id=str(raw.get("id") or raw.get("name") or "hotel"),
        name=raw.get("name") or "Hotel",
        coordinates=extract_coordinates(raw),
        price_per_night=_number(
            _first(raw, "pricePerNight", "price_per_night"), "hotel pricePerNight"
        ),
        total_price=_number(
            _first(raw, "totalPrice", "total_price"), "hotel totalPrice", default=None
        ),
    )


def transform_experience(raw: Dict[str, Any]) -> Experience:
    """
    Frontend experience → Experience.

    Field mappings:
    - price → cost
    - duration (minutes | "PT2H" | "2 hours") → duration_minutes
    - coordinates | latitude/longitude | location.coordinates → coordinates
    """
    raw = _object(raw, "experience")
    if not raw or not raw.get("id"):
        name = raw.get("name", "?") if raw else "?"
        raise ValidationError(f"Experience {name!r} has no id")
    label = f"experience {raw['id']!r}"
    return Experience(
        id=str(raw["id"]),
        name=raw.get("name") or str(raw["id"]),
        category=raw.get("category"),
        coordinates=extract_coordinates(raw),
        duration_minutes=parse_duration_minutes(
            _first(raw, "durationMinutes", "duration_minutes", "duration")
        ),
        cost=_number(_first(raw, "cost", "price"), f"{label} price"),
        notes=_first(raw, "notes", "bestTimeToVisit"),
    )


def transform_destination(raw: Any) -> Destination:
    if isinstance(raw, str):
        return Destination(name=raw)
    raw = _object(raw, "destination") or {}
    return Destination(
        name=raw.get("name") or "Unknown",
        country=raw.get("country") or "",
        id=raw.get("id"),
        coordinates=extract_coordinates(raw),
    )


def transform_leg(raw: Dict[str, Any], position: int) -> TripLeg:
    """
    Transform one frontend TripLeg to the internal model.

    Args:
        raw: frontend leg (camelCase)
        position: index in the request, used for error messages

    Raises:
        ValidationError: when the leg is not an object or a field is malformed;
            the message names the leg and leg_index is set
    """
    if not isinstance(raw, dict):
        raise ValidationError(f"Leg {position + 1} must be an object", leg_index=position)

    try:
        order = raw.get("order", position)
        try:
            order = int(order)
            days = int(raw.get("days") or 0)
        except (TypeError, ValueError):
            raise ValidationError("non-numeric order or days")

        experiences = raw.get("experiences") or []
        if not isinstance(experiences, list):
            raise ValidationError("experiences must be an array")
        budget = _object(raw.get("budget"), "budget") or {}

        return TripLeg(
            id=str(raw.get("id") or f"leg-{position + 1}"),
            order=order,
            destination=transform_destination(raw.get("destination")),
            start_date=parse_date(_first(raw, "startDate", "start_date")),
            end_date=parse_date(_first(raw, "endDate", "end_date")),
            days=days,
            inbound_flight=transform_flight(_first(raw, "inboundFlight", "inbound_flight")),
            outbound_flight=transform_flight(_first(raw, "outboundFlight", "outbound_flight")),
            hotel=transform_hotel(raw.get("hotel")),
            experiences=[transform_experience(e) for e in experiences],
            budget=LegBudget(
                allocated=_number(budget.get("allocated"), "budget allocated"),
                spent=_number(budget.get("spent"), "budget spent"),
            ),
        )
    except ValidationError as e:
        raise ValidationError(f"Leg {position + 1}: {e}", leg_index=position)
    except PydanticValidationError as e:
        raise ValidationError(f"Leg {position + 1}: {_field_error(e)}", leg_index=position)


def transform_legs(raw_legs: List[Dict[str, Any]]) -> List[TripLeg]:
    return [transform_leg(raw, i) for i, raw in enumerate(raw_legs)]


def transform_route_activity(raw: Dict[str, Any]) -> RouteActivity:
    """Frontend activity → RouteActivity (coordinates left None when missing)."""
    coords = extract_coordinates(raw)
    try:
        return RouteActivity(
            id=str(raw.get("id")),
            lat=coords.lat if coords else None,
            lng=coords.lng if coords else None,
            category=raw.get("category"),
            duration_minutes=parse_duration_minutes(
                _first(raw, "durationMinutes", "duration_minutes", "duration")
            ),
        )
    except PydanticValidationError as e:
        raise ValidationError(f"Activity {raw.get('id')!r}: {_field_error(e)}")


# ============================================================================
# Validation Helpers
# ============================================================================


def validate_generate_payload(payload: Any, max_legs: int) -> tuple[bool, Optional[str]]:
    """
    Validate the generate request body before processing.

    Required fields:
    - legs (non-empty array, at most max_legs entries)

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(payload, dict):
        return False, "Request body must be a JSON object"

    legs = payload.get("legs")
    if legs is None or not isinstance(legs, list):
        return False, "Invalid request: legs array is required"

    if not legs:
        return False, "Invalid request: legs array must not be empty"

    if len(legs) > max_legs:
        return False, f"Invalid request: maximum {max_legs} legs allowed"

    return True, None


def validate_optimize_payload(payload: Any) -> tuple[bool, Optional[str]]:
    """
    Validate the optimize request body.

    Every activity needs an id; ids must be unique.
    """
    if not isinstance(payload, dict):
        return False, "Request body must be a JSON object"

    activities = payload.get("activities")
    if not isinstance(activities, list):
        return False, "Invalid request: activities array is required"

    ids = []
    for i, activity in enumerate(activities):
        if not isinstance(activity, dict) or not activity.get("id"):
            return False, f"Activity {i + 1} must be an object with an id"
        ids.append(str(activity["id"]))

    if len(set(ids)) != len(ids):
        return False, "Activity ids must be unique"

    return True, None
