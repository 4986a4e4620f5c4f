"""Road-network snapping of proposed waypoints.

Model-proposed points are often a little off the network (in a lake, inside
a building). Each point is snapped with a growing search radius until enough
distinct, routable points come back.
"""

import logging
import math
from typing import Any, Sequence

from errors import SnapError
from geodesy import haversine_m
from models import TripType, Waypoint
from openrouteservice import OpenRouteServiceClient, OpenRouteServiceError, profile_for
from settings import PlanningPolicy

logger = logging.getLogger(__name__)


def _is_lon_lat(point: Any) -> bool:
    return (
        isinstance(point, (list, tuple))
        and len(point) == 2
        and all(
            isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)
            for v in point
        )
    )


def usable_points(
    snapped: Sequence[Any], min_separation_m: float
) -> list[list[float]]:
    """Drops missing or malformed snaps and points too close to a kept one."""
    kept: list[list[float]] = []
    for point in snapped:
        if not _is_lon_lat(point):
            continue
        candidate = [float(point[0]), float(point[1])]
        if all(haversine_m(prev, candidate) > min_separation_m for prev in kept):
            kept.append(candidate)
    return kept


async def snap_waypoints(
    ors: OpenRouteServiceClient,
    waypoints: Sequence[Waypoint],
    trip_type: TripType,
    policy: PlanningPolicy,
) -> list[list[float]]:
    """Snaps waypoints onto the network for ``trip_type``.

    Tries each radius in ``policy.snap_radii_m`` in turn and returns the
    first result with at least ``policy.min_snapped_points`` usable points.

    Raises:
        SnapError: If no radius yields enough points.
    """
    profile = profile_for(trip_type)
    locations = [[wp.lng, wp.lat] for wp in waypoints]

    for radius in policy.snap_radii_m:
        try:
            raw = await ors.snap(profile, locations, radius)
        except OpenRouteServiceError as exc:
            logger.error("Snap error at radius=%dm (status %s): %s",
                         radius, exc.status_code, exc.message)
            continue

        points = usable_points(raw, policy.snap_dedupe_m)
        if len(points) >= policy.min_snapped_points:
            logger.info("Snapped %d/%d waypoints at radius=%dm",
                        len(points), len(locations), radius)
            return points
        logger.warning(
            "Snap with radius=%dm returned only %d usable points; "
            "trying larger radius...",
            radius, len(points),
        )

    raise SnapError(
        f"Snap failed: too few snapped waypoints (< {policy.min_snapped_points})"
    )
