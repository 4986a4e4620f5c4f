"""Geometry helpers over ``[lon, lat]`` coordinate sequences.

Pure functions, no I/O. Coordinates follow the GeoJSON / OpenRouteService
ordering: longitude first.
"""

import math
from typing import Sequence

from settings import LOOP_CLOSE_M

LonLat = Sequence[float]

EARTH_RADIUS_M: float = 6_371_000.0


def haversine_m(a: LonLat, b: LonLat) -> float:
    """Returns the great-circle distance in metres between two [lon, lat] points."""
    lon1, lat1 = a[0], a[1]
    lon2, lat2 = b[0], b[1]
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = lat2_r - lat1_r
    dlon = math.radians(lon2 - lon1)
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlon / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def decimate(coords: Sequence[LonLat], keep_every: int = 2) -> list[LonLat]:
    """Keeps the first, the last and every ``keep_every``-th point.

    Used to shrink an overlong route while keeping its overall shape.
    Sequences of two points or fewer are returned unchanged.
    """
    if keep_every < 1:
        raise ValueError("keep_every must be at least 1.")
    if len(coords) <= 2:
        return list(coords)
    last = len(coords) - 1
    return [
        point
        for i, point in enumerate(coords)
        if i == 0 or i == last or i % keep_every == 0
    ]


def ensure_loop(
    coords: Sequence[LonLat], threshold_m: float = LOOP_CLOSE_M
) -> list[LonLat]:
    """Returns ``coords`` closed into a loop.

    The start point is appended when the end lies more than ``threshold_m``
    from it. The input is never modified, and applying the function twice
    gives the same result as applying it once.
    """
    closed = list(coords)
    if len(closed) < 2:
        return closed
    if haversine_m(closed[0], closed[-1]) > threshold_m:
        closed.append(closed[0])
    return closed


def cumulative_meters(coords: Sequence[LonLat]) -> list[float]:
    """Returns the running distance along ``coords`` at each index."""
    if not coords:
        return []
    cum = [0.0]
    for prev, curr in zip(coords, coords[1:]):
        cum.append(cum[-1] + haversine_m(prev, curr))
    return cum


def path_length_m(coords: Sequence[LonLat]) -> float:
    cum = cumulative_meters(coords)
    return cum[-1] if cum else 0.0


def pick_index_by_radius(
    coords: Sequence[LonLat], start: LonLat, target_m: float
) -> int:
    """Returns the index (≥ 1) of the point whose distance from ``start``
    is closest to ``target_m``.
    """
    best_idx = 1
    best_diff = math.inf
    for i in range(1, len(coords)):
        diff = abs(haversine_m(start, coords[i]) - target_m)
        if diff < best_diff:
            best_diff = diff
            best_idx = i
    return best_idx


def interior_angle_deg(
    prev: tuple[float, float],
    curr: tuple[float, float],
    nxt: tuple[float, float],
) -> float | None:
    """Returns the angle at ``curr`` between the segments to ``prev`` and ``nxt``.

    Works on plain planar coordinates: 180° means the path goes straight
    through ``curr``, 0° means it doubles back. Returns None when either
    segment has zero length.
    """
    v1 = (prev[0] - curr[0], prev[1] - curr[1])
    v2 = (nxt[0] - curr[0], nxt[1] - curr[1])
    len1 = math.hypot(*v1)
    len2 = math.hypot(*v2)
    if len1 == 0 or len2 == 0:
        return None
    cos_theta = (v1[0] * v2[0] + v1[1] * v2[1]) / (len1 * len2)
    return math.degrees(math.acos(max(-1.0, min(1.0, cos_theta))))
