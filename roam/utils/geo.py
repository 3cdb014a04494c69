from __future__ import annotations

import math
from dataclasses import dataclass
from math import radians, sin, cos, sqrt, atan2
from typing import Any, Sequence, Tuple

import numpy as np

from roam.core.errors import InvalidCoordinate

EARTH_RADIUS_KM = 6371.0

# Transit heuristic: (upper bound km, mode, average speed km/h)
WALK_MAX_KM = 1.5
TAXI_MAX_KM = 8.0
SPEED_KMH = {
    "walk": 5.0,
    "taxi": 25.0,  # urban traffic included
    "train": 40.0,
}
MIN_TRANSIT_MINUTES = 5


@dataclass(frozen=True, slots=True)
class TransitEstimate:
    """Display-only guess at how to get between two points."""

    mode: str
    minutes: int
    speed_kmh: float
    distance_km: float

    @property
    def duration_label(self) -> str:
        return format_duration(self.minutes)

    @property
    def distance_label(self) -> str:
        return format_distance(self.distance_km)


def is_valid_coordinate(lat: Any, lng: Any) -> bool:
    """True when lat/lng are finite numbers inside [-90, 90] / [-180, 180]."""
    if lat is None or lng is None or isinstance(lat, bool) or isinstance(lng, bool):
        return False
    try:
        lat_f, lng_f = float(lat), float(lng)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0


def _lat_lng(point: Any) -> Tuple[float, float]:
    if isinstance(point, (tuple, list)):
        lat, lng = point[0], point[1]
    else:
        lat, lng = point.lat, point.lng
    if not is_valid_coordinate(lat, lng):
        raise InvalidCoordinate(lat, lng)
    return float(lat), float(lng)


def distance_km(a: Any, b: Any) -> float:
    """
    Great-circle (Haversine) distance in km.

    Args:
        a, b: objects with .lat/.lng, or (lat, lng) pairs

    Raises:
        InvalidCoordinate: if either point is non-finite or out of range
    """
    lat1, lon1 = _lat_lng(a)
    lat2, lon2 = _lat_lng(b)
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)
    h = (
        sin(dlat / 2) ** 2
        + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * atan2(sqrt(h), sqrt(1 - h))


def route_distance_km(points: Sequence[Any]) -> float:
    """Total length of the open path visiting points in order."""
    return sum(distance_km(points[i], points[i + 1]) for i in range(len(points) - 1))


def distance_matrix_km(coords: np.ndarray) -> np.ndarray:
    """
    NxN Haversine distance matrix in km.
    coords: array of shape (N, 2) holding (lat, lng) rows, already validated
    """
    coords = np.asarray(coords, dtype=np.float64)
    if coords.size == 0:
        return np.zeros((0, 0), dtype=np.float64)

    lat = np.radians(coords[:, 0])
    lng = np.radians(coords[:, 1])
    dlat = lat[:, None] - lat[None, :]
    dlng = lng[:, None] - lng[None, :]
    h = (
        np.sin(dlat / 2) ** 2
        + np.cos(lat)[:, None] * np.cos(lat)[None, :] * np.sin(dlng / 2) ** 2
    )
    h = np.clip(h, 0.0, 1.0)
    matrix = EARTH_RADIUS_KM * 2 * np.arctan2(np.sqrt(h), np.sqrt(1 - h))
    np.fill_diagonal(matrix, 0.0)
    return matrix


def transit_mode_for(distance: float) -> str:
    if distance < WALK_MAX_KM:
        return "walk"
    if distance <= TAXI_MAX_KM:
        return "taxi"
    return "train"


def estimate_transit_mode(distance: float) -> TransitEstimate:
    """
    Heuristic mode and travel time for a straight-line distance.

    This is a display aid, not a routing query: < 1.5 km walks at 5 km/h,
    1.5-8 km takes a taxi at 25 km/h, anything longer a train at 40 km/h.
    """
    if distance < 0 or not math.isfinite(distance):
        raise ValueError(f"distance must be a finite non-negative number, got {distance!r}")

    mode = transit_mode_for(distance)
    speed = SPEED_KMH[mode]
    minutes = max(MIN_TRANSIT_MINUTES, int(round(distance / speed * 60)))
    return TransitEstimate(mode=mode, minutes=minutes, speed_kmh=speed, distance_km=distance)


def format_distance(distance: float) -> str:
    if distance < 1:
        return f"{int(round(distance * 1000))} m"
    return f"{distance:.1f} km"


def format_duration(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} min"
    hours, mins = divmod(minutes, 60)
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"
