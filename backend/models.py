"""Pydantic request, response and pipeline models for the trip planner."""

from typing import Literal

from pydantic import BaseModel, ConfigDict

TripType = Literal["hiking", "cycling"]


# ---------------------------------------------------------------------------
# Pipeline values
# ---------------------------------------------------------------------------


class Waypoint(BaseModel):
    """A candidate stop proposed by the language model."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float
    name: str = ""


class RouteFeature(BaseModel):
    """A routed path returned by the directions provider."""

    model_config = ConfigDict(frozen=True)

    geometry: list[list[float]]
    """Ordered ``[lon, lat]`` vertices of the route."""

    total_meters: float
    total_seconds: float

    @property
    def distance_km(self) -> float:
        return self.total_meters / 1000


class TripPoint(BaseModel):
    """A geometry vertex tagged with the travel day it belongs to."""

    lat: float
    lng: float
    day: int
    order: int


class DailyRoute(BaseModel):
    """One travel day of a trip."""

    day: int
    distance_km: float
    duration_hours: float
    points: list[TripPoint]


class TripRoute(BaseModel):
    """The final, distance-bounded route for a trip.

    ``geometry`` is a GeoJSON LineString; ``points`` flattens it with a day
    tag per vertex so clients can colour each day separately.
    """

    geometry: dict
    points: list[TripPoint]
    daily_routes: list[DailyRoute]
    total_distance_km: float
    total_duration_hours: float


# ---------------------------------------------------------------------------
# HTTP models
# ---------------------------------------------------------------------------


class LocationInput(BaseModel):
    """The place a trip is planned around."""

    name: str
    lat: float | None = None
    lng: float | None = None


class PlanTripRequest(BaseModel):
    """Request body for the /plan-trip endpoint."""

    location: LocationInput
    trip_type: TripType


class PlanTripResponse(BaseModel):
    """Response from the /plan-trip endpoint."""

    success: bool = True
    route: TripRoute
