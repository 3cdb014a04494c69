import datetime as dt
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ItemType = Literal["flight", "hotel", "experience", "meal", "transit"]
TransitMode = Literal["walk", "train", "taxi", "bus", "uber"]


class FrozenModel(BaseModel):
    """Immutable value object: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


# Trip input


class Coordinates(FrozenModel):
    lat: float
    lng: float


class Destination(FrozenModel):
    name: str
    country: str = ""
    id: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class Flight(FrozenModel):
    id: str
    flight_number: Optional[str] = None
    airline: Optional[str] = None
    departure_airport: Optional[str] = None
    arrival_airport: Optional[str] = None
    departure_time: Optional[str] = None
    arrival_time: Optional[str] = None
    duration_minutes: Optional[int] = None
    price: float = 0.0


class Hotel(FrozenModel):
    id: str
    name: str
    coordinates: Optional[Coordinates] = None
    price_per_night: float = 0.0
    total_price: Optional[float] = None


class Experience(FrozenModel):
    id: str
    name: str
    category: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    duration_minutes: Optional[int] = None
    cost: float = 0.0
    notes: Optional[str] = None


class LegBudget(FrozenModel):
    allocated: float = 0.0
    spent: float = 0.0


class TripLeg(FrozenModel):
    id: str
    order: int
    destination: Destination
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    days: int = 0
    inbound_flight: Optional[Flight] = None
    outbound_flight: Optional[Flight] = None
    hotel: Optional[Hotel] = None
    experiences: List[Experience] = []
    budget: LegBudget = Field(default_factory=LegBudget)


# Itinerary output


class TransitInfo(FrozenModel):
    mode: TransitMode
    duration: str
    distance: str
    cost: Optional[float] = None


class ItineraryItem(FrozenModel):
    id: str
    type: ItemType
    title: str
    start_time: str
    end_time: str
    duration_minutes: int = 0
    location: Optional[Coordinates] = None
    cost: Optional[float] = None
    transit_info: Optional[TransitInfo] = None
    experience_id: Optional[str] = None
    flight_number: Optional[str] = None
    notes: Optional[str] = None


class ItineraryDay(FrozenModel):
    date: dt.date
    day_number: int
    leg_id: Optional[str] = None
    is_transition_day: bool = False
    from_leg_id: Optional[str] = None
    to_leg_id: Optional[str] = None
    items: List[ItineraryItem] = []
    notes: Optional[str] = None
    total_cost: float = 0.0


class LegBreakdown(FrozenModel):
    leg_id: str
    destination: str
    days: int
    experiences: int


class ItineraryStats(FrozenModel):
    total_experiences: int = 0
    total_transit_minutes: int = 0
    transition_days: int = 0
    unscheduled_experiences: List[str] = []
    leg_breakdown: List[LegBreakdown] = []


class GeneratedItinerary(FrozenModel):
    days: List[ItineraryDay]
    total_days: int
    summary: str
    stats: ItineraryStats = Field(default_factory=ItineraryStats)


# Route optimization


class RouteActivity(FrozenModel):
    id: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    category: Optional[str] = None
    duration_minutes: Optional[int] = None


class OptimizationComparison(FrozenModel):
    original_order: List[str]
    optimized_order: List[str]
    original_distance_km: float
    optimized_distance_km: float
    distance_saved_km: float
    distance_saved_percent: float
    time_saved_minutes: int
    saved_ratio: float = 0.0  # unrounded (original - optimized) / original
    unlocated_ids: List[str] = []
    strategy: str = "nearest_neighbor"
