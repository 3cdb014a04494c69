from typing import Optional


class RoamError(Exception):
    """Base class for itinerary engine errors."""


class InvalidCoordinate(RoamError, ValueError):
    """Latitude/longitude outside [-90, 90]/[-180, 180] or not finite."""

    def __init__(self, lat, lng):
        self.lat = lat
        self.lng = lng
        super().__init__(f"Invalid coordinate: lat={lat!r}, lng={lng!r}")


class ValidationError(RoamError, ValueError):
    """
    Malformed trip input (empty leg list, too many legs, bad day counts).

    Raised before any day is generated; the whole call is aborted.
    """

    def __init__(self, message: str, leg_index: Optional[int] = None):
        self.leg_index = leg_index
        super().__init__(message)
