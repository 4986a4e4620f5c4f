"""Distance-bound enforcement and day splitting for routed trips.

Cycling trips are open, two-day rides of at most ``cycling_max_km_per_day``
per day. Hiking trips are one-day closed loops between ``hiking_min_km`` and
``hiking_max_km``. An overlong route is shortened by rebuilding it through
fewer coordinates; a route that cannot be brought within bounds raises
``ConstraintViolation`` so the pipeline can start over.
"""

import logging
import math
from typing import Awaitable, Callable, Sequence

from errors import ConstraintViolation
from geodesy import (
    cumulative_meters,
    decimate,
    ensure_loop,
    haversine_m,
    pick_index_by_radius,
)
from models import DailyRoute, RouteFeature, TripPoint, TripRoute, TripType
from settings import PlanningPolicy

logger = logging.getLogger(__name__)

RouteBuilder = Callable[[Sequence[Sequence[float]]], Awaitable[RouteFeature]]


async def enforce_constraints(
    feature: RouteFeature,
    coordinates: Sequence[Sequence[float]],
    trip_type: TripType,
    policy: PlanningPolicy,
    build: RouteBuilder,
) -> TripRoute:
    """Brings ``feature`` within the bounds for ``trip_type`` and shapes it.

    Args:
        feature: The route built from the snapped coordinates.
        coordinates: The snapped ``[lon, lat]`` coordinates behind ``feature``.
        trip_type: ``hiking`` or ``cycling``.
        policy: Distance bounds and fallback parameters.
        build: Rebuilds a route from a coordinate list.

    Raises:
        ConstraintViolation: If no fallback gets the route within bounds,
            or a hiking route does not end back at its start.
    """
    if trip_type == "cycling":
        return await _enforce_cycling(feature, coordinates, policy, build)
    return await _enforce_hiking(feature, coordinates, policy, build)


# ---------------------------------------------------------------------------
# Cycling
# ---------------------------------------------------------------------------


async def _enforce_cycling(
    feature: RouteFeature,
    coordinates: Sequence[Sequence[float]],
    policy: PlanningPolicy,
    build: RouteBuilder,
) -> TripRoute:
    max_total_km = policy.cycling_max_total_km
    if feature.distance_km > max_total_km:
        for keep_every in policy.decimation_steps:
            logger.warning(
                "Cycling %.1f km > %.0f km, decimate keep_every=%d",
                feature.distance_km, max_total_km, keep_every,
            )
            feature = await build(decimate(coordinates, keep_every))
            if feature.distance_km <= max_total_km:
                break

    if feature.distance_km > max_total_km:
        raise ConstraintViolation(
            f"Cycling route too long: {feature.distance_km:.1f} km "
            f"(max {max_total_km:.0f} km total)."
        )
    return split_into_days(feature, policy)


def day_one_target_km(total_km: float, max_per_day_km: float) -> float:
    """Returns how far day 1 should ride so neither day exceeds the limit.

    Half the total by default, capped at the daily limit and raised when
    day 2 would otherwise be over it. Never negative, never above the total.
    """
    target = min(total_km / 2, max_per_day_km)
    if total_km - target > max_per_day_km:
        target = total_km - max_per_day_km
    return max(0.0, min(target, total_km))


def split_index(cum: Sequence[float], total_m: float, target_m: float) -> int:
    """Returns the geometry index (≥ 1) whose distance is nearest ``target_m``.

    ``cum`` is measured along the geometry and is rescaled to ``total_m``,
    the provider's network distance, before comparing.
    """
    scale = total_m / cum[-1] if cum and cum[-1] > 0 else 0.0
    best_idx = 1
    best_diff = math.inf
    for i in range(1, len(cum)):
        diff = abs(cum[i] * scale - target_m)
        if diff < best_diff:
            best_diff = diff
            best_idx = i
    return best_idx


def split_into_days(feature: RouteFeature, policy: PlanningPolicy) -> TripRoute:
    """Splits a cycling route into two days at the cumulative-distance target.

    Raises:
        ConstraintViolation: If a day is still over the daily limit.
    """
    coords = feature.geometry
    if len(coords) < 2:
        raise ConstraintViolation("Cycling route geometry has fewer than 2 points.")

    total_m = feature.total_meters
    total_s = feature.total_seconds
    cum = cumulative_meters(coords)
    target_m = day_one_target_km(total_m / 1000, policy.cycling_max_km_per_day) * 1000
    idx = split_index(cum, total_m, target_m)
    scale = total_m / cum[-1] if cum[-1] > 0 else 0.0

    day_meters = [cum[idx] * scale]
    day_meters.append(total_m - day_meters[0])

    points = [
        TripPoint(lat=lat, lng=lon, day=1 if i <= idx else 2, order=i)
        for i, (lon, lat) in enumerate(coords)
    ]
    daily_routes = [
        DailyRoute(
            day=day,
            distance_km=meters / 1000,
            duration_hours=total_s * (meters / max(total_m, 1)) / 3600,
            points=[p for p in points if p.day == day],
        )
        for day, meters in enumerate(day_meters, start=1)
    ]

    limit_km = policy.cycling_max_km_per_day + policy.day_limit_tolerance_km
    if any(d.distance_km > limit_km for d in daily_routes):
        raise ConstraintViolation(
            f"Cycling day distance exceeded {policy.cycling_max_km_per_day:.0f} km "
            f"(day1={daily_routes[0].distance_km:.1f}, "
            f"day2={daily_routes[1].distance_km:.1f})."
        )
    logger.info("Cycling split at index %d: day1=%.1f km, day2=%.1f km",
                idx, daily_routes[0].distance_km, daily_routes[1].distance_km)

    return TripRoute(
        geometry={"type": "LineString", "coordinates": coords},
        points=points,
        daily_routes=daily_routes,
        total_distance_km=total_m / 1000,
        total_duration_hours=total_s / 3600,
    )


# ---------------------------------------------------------------------------
# Hiking
# ---------------------------------------------------------------------------


def prefix_within(
    coords: Sequence[Sequence[float]], max_m: float
) -> list[Sequence[float]]:
    """Returns the leading coordinates up to the first one at ``max_m`` along.

    Always keeps at least two points.
    """
    cum = cumulative_meters(coords)
    end = len(coords) - 1
    for i in range(1, len(cum)):
        if cum[i] >= max_m:
            end = i
            break
    return list(coords[: max(2, end + 1)])


async def _enforce_hiking(
    feature: RouteFeature,
    coordinates: Sequence[Sequence[float]],
    policy: PlanningPolicy,
    build: RouteBuilder,
) -> TripRoute:
    min_km, max_km = policy.hiking_min_km, policy.hiking_max_km

    def close(coords: Sequence[Sequence[float]]) -> list[Sequence[float]]:
        return ensure_loop(coords, policy.loop_close_m)

    # (a) fewer coordinates through the same loop.
    if feature.distance_km > max_km:
        looped = close(coordinates)
        for keep_every in policy.decimation_steps:
            logger.warning("Hiking %.1f km > %.0f km, decimate keep_every=%d",
                           feature.distance_km, max_km, keep_every)
            feature = await build(close(decimate(looped, keep_every)))
            if feature.distance_km <= max_km:
                break

    # (b) only the first part of the snapped path, closed back to the start.
    if feature.distance_km > max_km:
        for fraction in policy.hiking_prefix_fractions:
            prefix = prefix_within(coordinates, max_km * 1000 * fraction)
            feature = await build(close(prefix))
            logger.warning("Hiking prefix %d%% -> %.1f km",
                           round(fraction * 100), feature.distance_km)
            if feature.distance_km <= max_km:
                break

    # (c) out and back to one point about a circle's radius away.
    if feature.distance_km > max_km:
        start = coordinates[0]
        radius_m = max_km * 1000 / (2 * math.pi) * policy.minimal_loop_factor
        mid = pick_index_by_radius(coordinates, start, radius_m)
        feature = await build(close([start, coordinates[mid]]))
        logger.warning("Hiking minimal loop -> %.1f km", feature.distance_km)

    if not min_km <= feature.distance_km <= max_km:
        raise ConstraintViolation(
            f"Hiking route distance {feature.distance_km:.1f} km out of range "
            f"({min_km:g}–{max_km:g} km)."
        )
    gap_m = haversine_m(feature.geometry[0], feature.geometry[-1])
    if gap_m > policy.loop_close_m:
        raise ConstraintViolation(
            f"Hiking route does not return to its start ({gap_m:.0f} m apart)."
        )
    return _single_day(feature)


def _single_day(feature: RouteFeature) -> TripRoute:
    coords = feature.geometry
    points = [
        TripPoint(lat=lat, lng=lon, day=1, order=i)
        for i, (lon, lat) in enumerate(coords)
    ]
    distance_km = feature.total_meters / 1000
    duration_hours = feature.total_seconds / 3600
    return TripRoute(
        geometry={"type": "LineString", "coordinates": coords},
        points=points,
        daily_routes=[
            DailyRoute(
                day=1,
                distance_km=distance_km,
                duration_hours=duration_hours,
                points=points,
            )
        ],
        total_distance_km=distance_km,
        total_duration_hours=duration_hours,
    )
