"""Tests for route_generation.py.

The language model and OpenRouteService are replaced by the fakes in
``fakes.py`` and Google Maps by a small mock client. No network access
occurs during these tests.
"""

import threading
from dataclasses import replace

import pytest
from googlemaps.exceptions import ApiError

import route_generation
from errors import PlanningError, ProposalError, SnapError
from fakes import FakeCompletion, FakeORS, route_collection, waypoint_json
from geodesy import haversine_m, path_length_m
from models import LocationInput
from openrouteservice import OpenRouteServiceError
from settings import Settings

# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------


class _MockMapsClient:
    """Minimal mock of googlemaps.Client for testing."""

    def __init__(self, geocode_result=None, error=None):
        self._geocode = (
            geocode_result
            if geocode_result is not None
            else [{"geometry": {"location": {"lat": 41.3874, "lng": 2.1686}}}]
        )
        self._error = error
        self.queries = []

    def geocode(self, address):
        self.queries.append(address)
        if self._error is not None:
            raise self._error
        return self._geocode


def _measured_route(index, profile, body):
    coords = body["coordinates"]
    return route_collection(coords, distance_m=path_length_m(coords))


async def _plan(llm, ors, policy, trip_type="hiking", **kwargs):
    return await route_generation.plan_route(
        "Barcelona", trip_type, policy=policy, llm=llm, ors=ors, **kwargs
    )


# ---------------------------------------------------------------------------
# plan_route: happy paths
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_plan_hiking_loop_first_attempt(policy):
    llm = FakeCompletion(waypoint_json())
    ors = FakeORS()

    route = await _plan(llm, ors, policy)

    assert len(llm.prompts) == 1
    assert len(ors.snap_calls) == 1
    assert len(ors.directions_calls) == 1
    assert ors.directions_calls[0]["profile"] == "foot-hiking"
    assert 5 <= route.total_distance_km <= 15
    assert len(route.daily_routes) == 1
    coords = route.geometry["coordinates"]
    assert haversine_m(coords[0], coords[-1]) <= 120
    assert not ors.closed  # caller-supplied client stays open


@pytest.mark.asyncio
async def test_plan_cycling_route_has_two_days(policy):
    llm = FakeCompletion(waypoint_json())
    ors = FakeORS()

    route = await _plan(llm, ors, policy, trip_type="cycling")

    assert ors.directions_calls[0]["profile"] == "cycling-regular"
    assert [d.day for d in route.daily_routes] == [1, 2]
    assert all(d.distance_km <= 60.1 for d in route.daily_routes)
    assert sum(d.distance_km for d in route.daily_routes) == pytest.approx(
        route.total_distance_km
    )


@pytest.mark.asyncio
async def test_plan_passes_center_hint_to_model(policy):
    llm = FakeCompletion(waypoint_json())
    await _plan(llm, FakeORS(), policy, center=(41.3874, 2.1686))
    assert "41.38740, 2.16860" in llm.prompts[0]


# ---------------------------------------------------------------------------
# plan_route: restarts
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_snap_failure_restarts_with_retry_prompt(policy):
    def snap(index, profile, locations, radius):
        if index < 3:  # every radius of the first attempt
            return [None] * len(locations)
        return [list(loc) for loc in locations]

    llm = FakeCompletion(waypoint_json())
    ors = FakeORS(snap=snap)

    route = await _plan(llm, ors, policy)

    assert route.total_distance_km > 0
    assert len(ors.snap_calls) == 4
    assert len(llm.prompts) == 2
    assert "PREVIOUS ATTEMPT HAD ISSUES" not in llm.prompts[0]
    assert "PREVIOUS ATTEMPT HAD ISSUES" in llm.prompts[1]


@pytest.mark.asyncio
async def test_directions_failure_restarts_pipeline(policy):
    def directions(index, profile, body):
        if index == 0:
            raise OpenRouteServiceError("Service unavailable", status_code=503)
        return _measured_route(index, profile, body)

    llm = FakeCompletion(waypoint_json())
    ors = FakeORS(directions=directions)

    route = await _plan(llm, ors, policy)

    assert len(ors.directions_calls) == 2
    assert len(llm.prompts) == 2
    assert len(route.daily_routes) == 1


@pytest.mark.asyncio
async def test_limit_violation_restarts_pipeline(policy):
    """The first attempt's route and both decimated rebuilds stay over 120km."""

    def directions(index, profile, body):
        if index < 3:
            return route_collection(body["coordinates"], distance_m=150_000)
        return _measured_route(index, profile, body)

    llm = FakeCompletion(waypoint_json())
    ors = FakeORS(directions=directions)

    route = await _plan(llm, ors, policy, trip_type="cycling")

    assert len(ors.directions_calls) == 4
    assert len(llm.prompts) == 2
    assert route.total_distance_km < 120


@pytest.mark.asyncio
async def test_malformed_directions_payload_restarts_pipeline(policy):
    def directions(index, profile, body):
        if index == 0:
            return {"features": [{"geometry": {"coordinates": [[2.17, 41.38], None]}}]}
        return _measured_route(index, profile, body)

    llm = FakeCompletion(waypoint_json())
    ors = FakeORS(directions=directions)

    route = await _plan(llm, ors, policy)

    assert len(ors.directions_calls) == 2
    assert len(llm.prompts) == 2
    assert 5 <= route.total_distance_km <= 15


@pytest.mark.asyncio
async def test_gives_up_after_six_attempts(policy):
    llm = FakeCompletion("I would rather not.")
    ors = FakeORS()

    with pytest.raises(PlanningError, match="after 6 attempts") as info:
        await _plan(llm, ors, policy)

    # Three model calls per proposal, one proposal per attempt.
    assert len(llm.prompts) == 18
    assert isinstance(info.value.__cause__, ProposalError)
    assert ors.snap_calls == []


@pytest.mark.asyncio
async def test_last_stage_failure_is_chained(policy):
    def snap(index, profile, locations, radius):
        return [None] * len(locations)

    with pytest.raises(PlanningError) as info:
        await _plan(FakeCompletion(waypoint_json()), FakeORS(snap=snap), policy)
    assert isinstance(info.value.__cause__, SnapError)


@pytest.mark.asyncio
async def test_attempt_budget_comes_from_policy(policy):
    llm = FakeCompletion("nope")
    with pytest.raises(PlanningError, match="after 2 attempts"):
        await _plan(llm, FakeORS(), replace(policy, max_pipeline_attempts=2))
    assert len(llm.prompts) == 6


@pytest.mark.asyncio
async def test_owned_ors_client_is_closed(policy, monkeypatch):
    ors = FakeORS()
    monkeypatch.setattr(
        route_generation.OpenRouteServiceClient,
        "from_settings",
        lambda settings: ors,
    )

    await route_generation.plan_route(
        "Barcelona",
        "hiking",
        policy=policy,
        llm=FakeCompletion(waypoint_json()),
        settings=Settings(openrouteservice_api_key="ORS_KEY"),
    )

    assert ors.closed


@pytest.mark.asyncio
async def test_owned_ors_client_is_closed_on_failure(policy, monkeypatch):
    ors = FakeORS()
    monkeypatch.setattr(
        route_generation.OpenRouteServiceClient,
        "from_settings",
        lambda settings: ors,
    )

    with pytest.raises(PlanningError):
        await route_generation.plan_route(
            "Barcelona",
            "hiking",
            policy=policy,
            llm=FakeCompletion("not JSON"),
            settings=Settings(openrouteservice_api_key="ORS_KEY"),
        )

    assert ors.closed


# ---------------------------------------------------------------------------
# resolve_center
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_resolve_center_prefers_given_coordinates():
    maps = _MockMapsClient()
    location = LocationInput(name="Barcelona", lat=41.0, lng=2.0)
    assert await route_generation.resolve_center(location, maps) == (41.0, 2.0)
    assert maps.queries == []


@pytest.mark.asyncio
async def test_resolve_center_geocodes_name():
    maps = _MockMapsClient()
    center = await route_generation.resolve_center(LocationInput(name="Barcelona"), maps)
    assert center == pytest.approx((41.3874, 2.1686))
    assert maps.queries == ["Barcelona"]


@pytest.mark.asyncio
async def test_resolve_center_returns_none_without_results():
    maps = _MockMapsClient(geocode_result=[])
    center = await route_generation.resolve_center(LocationInput(name="Atlantis"), maps)
    assert center is None


@pytest.mark.asyncio
async def test_resolve_center_swallows_maps_errors():
    maps = _MockMapsClient(error=ApiError("REQUEST_DENIED", "API key invalid"))
    center = await route_generation.resolve_center(LocationInput(name="Barcelona"), maps)
    assert center is None


@pytest.mark.asyncio
async def test_resolve_center_geocodes_off_the_event_loop():
    class _ThreadRecordingMaps(_MockMapsClient):
        def geocode(self, address):
            self.thread = threading.get_ident()
            return super().geocode(address)

    maps = _ThreadRecordingMaps()
    await route_generation.resolve_center(LocationInput(name="Barcelona"), maps)
    assert maps.thread != threading.get_ident()


@pytest.mark.asyncio
async def test_resolve_center_without_api_key(monkeypatch):
    monkeypatch.setattr(
        route_generation, "get_settings", lambda: Settings(google_maps_api_key="")
    )
    assert await route_generation.resolve_center(LocationInput(name="Barcelona")) is None
