"""Routed path construction through the OpenRouteService directions API."""

import logging
import math
import re
from typing import Any, Sequence

from errors import RoutingError
from geodesy import ensure_loop, path_length_m
from models import RouteFeature, TripType
from openrouteservice import OpenRouteServiceClient, OpenRouteServiceError, profile_for
from settings import PlanningPolicy

logger = logging.getLogger(__name__)

# Extra per-segment metadata requested with every route.
EXTRA_INFO: tuple[str, ...] = ("waytype", "steepness", "surface")
AVOID_FEATURES: tuple[str, ...] = ("ferries",)

# Some ORS profiles and self-hosted instances reject the avoid options.
_UNKNOWN_OPTION_RE = re.compile(
    r"Unknown parameter.*(options|avoid_features)", re.IGNORECASE
)


def is_loop_trip(trip_type: TripType) -> bool:
    return trip_type == "hiking"


def _is_unknown_option_error(exc: OpenRouteServiceError) -> bool:
    return exc.status_code == 400 and bool(_UNKNOWN_OPTION_RE.search(exc.message))


def _vertex(point: Any) -> list[float]:
    """Returns ``[lon, lat]`` from a GeoJSON position, ignoring any elevation."""
    lon, lat = float(point[0]), float(point[1])
    if not (math.isfinite(lon) and math.isfinite(lat)):
        raise ValueError(f"non-finite vertex {point!r}")
    return [lon, lat]


def read_distance_duration(feature: dict[str, Any]) -> tuple[float, float]:
    """Returns (metres, seconds) for a GeoJSON route feature.

    Uses the provider summary when it carries a distance; otherwise the
    distance is measured along the geometry and the duration is whatever
    the summary says (zero when absent).
    """
    coords = (feature.get("geometry") or {}).get("coordinates") or []
    summary = (feature.get("properties") or {}).get("summary") or {}
    meters = float(summary.get("distance") or 0.0)
    seconds = float(summary.get("duration") or 0.0)
    if not meters:
        meters = path_length_m(coords)
    return meters, seconds


async def build_route(
    ors: OpenRouteServiceClient,
    coordinates: Sequence[Sequence[float]],
    trip_type: TripType,
    policy: PlanningPolicy,
) -> RouteFeature:
    """Requests a routed path through ``coordinates``.

    Loop trips are closed before the request. The first request avoids
    ferries; when ORS rejects that option as unknown, the request is sent
    once more without it.

    Raises:
        RoutingError: If ORS fails or returns no usable route.
    """
    coords = [list(c) for c in coordinates]
    if is_loop_trip(trip_type):
        coords = ensure_loop(coords, policy.loop_close_m)
    if len(coords) < 2:
        raise RoutingError("At least two coordinates are needed to build a route.")

    profile = profile_for(trip_type)
    base_body: dict[str, Any] = {
        "coordinates": coords,
        "instructions": True,
        "extra_info": list(EXTRA_INFO),
        "geometry_simplify": False,
    }
    body_with_avoid = {
        **base_body,
        "options": {"avoid_features": list(AVOID_FEATURES)},
    }

    logger.info("Requesting %s route through %d coordinates", profile, len(coords))
    try:
        try:
            data = await ors.directions(profile, body_with_avoid)
        except OpenRouteServiceError as exc:
            if not _is_unknown_option_error(exc):
                raise
            logger.warning("ORS rejected avoid_features (%s); retrying without",
                           exc.message)
            data = await ors.directions(profile, base_body)
    except OpenRouteServiceError as exc:
        raise RoutingError(
            f"Directions request failed (status {exc.status_code}): {exc.message}"
        ) from exc

    features = data.get("features")
    if not features:
        raise RoutingError("No route found")
    try:
        feature = features[0]
        geometry = [_vertex(c) for c in feature["geometry"]["coordinates"]]
        meters, seconds = read_distance_duration(feature)
    except (KeyError, IndexError, TypeError, ValueError, AttributeError) as exc:
        raise RoutingError(f"Malformed directions response: {exc!r}") from exc
    if len(geometry) < 2:
        raise RoutingError("Route geometry is empty")

    logger.info("Route built: %.1f km, %.0f min, %d points",
                meters / 1000, seconds / 60, len(geometry))
    return RouteFeature(
        geometry=geometry,
        total_meters=meters,
        total_seconds=seconds,
    )
