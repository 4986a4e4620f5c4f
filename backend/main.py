"""Trip planner backend service.

Exposes a health check and the AI-assisted trip planning endpoint, which
turns a location and an activity type into a distance-bounded hiking loop
or two-day cycling route.
"""

import logging

from fastapi import FastAPI, HTTPException

import route_generation
from models import PlanTripRequest, PlanTripResponse

logging.basicConfig(level=logging.INFO)

app = FastAPI(
    title="Trip Planner Backend",
    description="AI-assisted hiking and cycling route planning.",
    version="0.1.0",
)


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint used to verify the service is live."""
    return {"status": "ok"}


@app.post("/plan-trip", response_model=PlanTripResponse)
async def plan_trip(request: PlanTripRequest) -> PlanTripResponse:
    """Plans a hiking or cycling route around the requested location.

    Runs the route-generation pipeline:
    1. The language model proposes waypoints around the location.
    2. Waypoints are snapped onto the walking or cycling network.
    3. OpenRouteService builds the routed path.
    4. The route is shortened to the activity's distance bounds and split
       into travel days (one for hiking, two for cycling).
    Any failing step restarts the pipeline, up to six attempts.

    Args:
        request: ``PlanTripRequest`` with the location (name and optional
            coordinates) and ``trip_type`` (``hiking`` or ``cycling``).

    Returns:
        ``PlanTripResponse`` wrapping the final ``TripRoute``.

    Raises:
        HTTPException 400: If the location name is empty.
        HTTPException 500: If no route could be planned.
    """
    name = request.location.name.strip()
    if not name:
        raise HTTPException(
            status_code=400,
            detail="location.name must not be empty.",
        )
    try:
        center = await route_generation.resolve_center(request.location)
        route = await route_generation.plan_route(
            name, request.trip_type, center=center
        )
    except Exception as exc:  # noqa: BLE001
        logging.exception("route_generation.plan_route failed")
        raise HTTPException(
            status_code=500,
            detail="Failed to plan trip",
        ) from exc
    return PlanTripResponse(route=route)
