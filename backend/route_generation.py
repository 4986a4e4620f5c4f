"""Trip route generation pipeline.

Four stages run in order for every attempt:
  1.  Propose: the language model suggests waypoints around the location;
      invalid suggestions are retried inside the proposer.
  2.  Snap: waypoints are moved onto the walking or cycling network.
  3.  Build: OpenRouteService routes through the snapped points.
  4.  Enforce: the route is shortened until it meets the activity's
      distance bounds, then split into travel days.

Any stage failure sends the pipeline back to step 1 with a fresh proposal,
up to ``policy.max_pipeline_attempts`` times. The loop is written as a small
state machine so each attempt's progress is explicit.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Sequence

import googlemaps
from googlemaps.exceptions import ApiError, Timeout, TransportError

from constraints import enforce_constraints
from errors import PlanningError, ProposalError, RouteGenerationError
from llm import CompletionClient, build_completion_client
from models import LocationInput, RouteFeature, TripRoute, TripType, Waypoint
from openrouteservice import OpenRouteServiceClient
from route_builder import build_route
from settings import PlanningPolicy, Settings, get_settings
from snapping import snap_waypoints
from waypoints import propose_waypoints

logger = logging.getLogger(__name__)


class PipelineState(enum.Enum):
    PROPOSING = "proposing"
    SNAPPING = "snapping"
    BUILDING = "building"
    ENFORCING = "enforcing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class _PipelineRun:
    """Mutable progress of one ``plan_route`` call."""

    attempt: int = 1
    state: PipelineState = PipelineState.PROPOSING
    waypoints: tuple[Waypoint, ...] | None = None
    snapped: list[list[float]] | None = None
    feature: RouteFeature | None = None
    route: TripRoute | None = None
    last_error: RouteGenerationError | None = None

    def restart(self) -> None:
        self.attempt += 1
        self.state = PipelineState.PROPOSING
        self.waypoints = None
        self.snapped = None
        self.feature = None


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


async def plan_route(
    location_name: str,
    trip_type: TripType,
    *,
    center: tuple[float, float] | None = None,
    policy: PlanningPolicy | None = None,
    llm: CompletionClient | None = None,
    ors: OpenRouteServiceClient | None = None,
    settings: Settings | None = None,
) -> TripRoute:
    """Plans a distance-bounded hiking or cycling route around a location.

    Args:
        location_name: Human-readable place name given to the model.
        trip_type: ``hiking`` (one-day loop) or ``cycling`` (two-day ride).
        center: Optional (lat, lng) of the place, used as prompt context.
        policy: Distance bounds, retry budgets and delays. Built from
            ``settings`` if omitted.
        llm: Optional pre-constructed completion client. Created from
            settings if omitted.
        ors: Optional pre-constructed OpenRouteService client. Created from
            settings (and closed afterwards) if omitted.
        settings: Service settings; the cached environment settings are
            used if omitted.

    Returns:
        The final ``TripRoute``.

    Raises:
        PlanningError: If every attempt failed. Chained to the last stage
            failure.
    """
    _settings = settings or get_settings()
    _policy = policy or _settings.planning_policy()
    _llm = llm or build_completion_client(_settings)
    _ors = ors or OpenRouteServiceClient.from_settings(_settings)

    logger.info("Route planning started: %s, %s", location_name, trip_type)
    run = _PipelineRun()
    try:
        while run.state not in (PipelineState.DONE, PipelineState.FAILED):
            try:
                await _advance(run, location_name, trip_type, center,
                               _policy, _llm, _ors)
            except RouteGenerationError as exc:
                await _fail_attempt(run, exc, _policy)
    finally:
        if ors is None:
            await _ors.aclose()

    if run.state is PipelineState.FAILED or run.route is None:
        raise PlanningError(
            "Failed to generate a route after "
            f"{_policy.max_pipeline_attempts} attempts."
        ) from run.last_error

    logger.info(
        "Route planning complete on attempt %d: %.1f km over %d day(s)",
        run.attempt, run.route.total_distance_km, len(run.route.daily_routes),
    )
    return run.route


async def _advance(
    run: _PipelineRun,
    location_name: str,
    trip_type: TripType,
    center: tuple[float, float] | None,
    policy: PlanningPolicy,
    llm: CompletionClient,
    ors: OpenRouteServiceClient,
) -> None:
    """Runs the stage for ``run.state`` and moves to the next state."""
    if run.state is PipelineState.PROPOSING:
        logger.info("Pipeline attempt %d/%d: proposing waypoints",
                    run.attempt, policy.max_pipeline_attempts)
        run.waypoints = await propose_waypoints(
            llm, location_name, trip_type,
            policy=policy, is_retry=run.attempt > 1, center=center,
        )
        if run.waypoints is None:
            raise ProposalError("No valid waypoints from the language model.")
        run.state = PipelineState.SNAPPING

    elif run.state is PipelineState.SNAPPING:
        run.snapped = await snap_waypoints(ors, run.waypoints, trip_type, policy)
        run.state = PipelineState.BUILDING

    elif run.state is PipelineState.BUILDING:
        run.feature = await build_route(ors, run.snapped, trip_type, policy)
        run.state = PipelineState.ENFORCING

    elif run.state is PipelineState.ENFORCING:

        async def rebuild(coords: Sequence[Sequence[float]]) -> RouteFeature:
            return await build_route(ors, coords, trip_type, policy)

        run.route = await enforce_constraints(
            run.feature, run.snapped, trip_type, policy, rebuild
        )
        run.state = PipelineState.DONE


async def _fail_attempt(
    run: _PipelineRun, exc: RouteGenerationError, policy: PlanningPolicy
) -> None:
    """Records a stage failure and either restarts or gives up."""
    run.last_error = exc
    logger.warning("Attempt %d failed while %s: %s",
                   run.attempt, run.state.value, exc)
    if run.attempt >= policy.max_pipeline_attempts:
        logger.error("Route planning failed after %d attempts", run.attempt)
        run.state = PipelineState.FAILED
        return
    if isinstance(exc, ProposalError):
        await asyncio.sleep(policy.invalid_proposal_delay_s)
    else:
        await asyncio.sleep(policy.routing_failure_delay_s)
    run.restart()


# ---------------------------------------------------------------------------
# Location context
# ---------------------------------------------------------------------------


async def resolve_center(
    location: LocationInput,
    maps_client: googlemaps.Client | None = None,
) -> tuple[float, float] | None:
    """Returns (lat, lng) for the trip location, or None if unknown.

    Coordinates supplied by the caller win. Otherwise the name is geocoded
    with Google Maps when a client is given or ``GOOGLE_MAPS_API_KEY`` is
    set; the blocking geocode call runs in a worker thread. Best-effort:
    geocoding failures are logged and yield None.
    """
    if location.lat is not None and location.lng is not None:
        return location.lat, location.lng

    if maps_client is None:
        api_key = get_settings().google_maps_api_key
        if not api_key:
            return None
        try:
            maps_client = googlemaps.Client(key=api_key)
        except ValueError as exc:
            logger.warning("Google Maps client unavailable: %s", exc)
            return None

    try:
        result = await asyncio.to_thread(maps_client.geocode, location.name)
    except (ApiError, Timeout, TransportError) as exc:
        logger.warning("Could not geocode %r: %s", location.name, exc)
        return None
    if not result:
        logger.info("No geocoding result for %r", location.name)
        return None
    loc = result[0]["geometry"]["location"]
    return float(loc["lat"]), float(loc["lng"])
