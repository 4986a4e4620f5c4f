"""Waypoint proposal: ask the language model for candidate stops and vet them.

The model is told to answer with JSON only, but it does not always comply,
so responses go through ``parse_model_json`` which tries three strategies in
order. Parsed waypoints must then pass ``is_waypoints_valid``: enough points,
real coordinates away from the (0, 0) placeholder, and not laid out along a
straight line. Each call makes up to ``policy.max_proposal_attempts`` model
calls, with stronger corrective wording on retries.
"""

import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable

from geodesy import interior_angle_deg
from llm import CompletionClient, CompletionError
from models import TripType, Waypoint
from settings import STRAIGHT_ANGLE_DEG, STRAIGHT_FRACTION_LIMIT, PlanningPolicy

logger = logging.getLogger(__name__)

# System prompt to force JSON-only responses from the model.
_JSON_SYSTEM_PROMPT = (
    "You are a JSON-only response assistant. Always respond with valid JSON "
    "only, no explanations, no markdown."
)

_WAYPOINT_PROMPT = """\
You are a travel route planner. Generate waypoints for a {trip_type} route \
around {location}.{center_hint}

REQUIREMENTS (critical):
- Generate 8-{max_waypoints} waypoints (logical stops/turns)
- Each waypoint MUST be on accessible streets/paths (no water/lakes/rivers/buildings)
- Spread out logically across the area (NOT a straight line)
- Each consecutive waypoint must vary in lat/lng (no uniform increments)
- Return **JSON only** with the exact fields: \
{{"waypoints":[{{"lat":<num>,"lng":<num>,"name":"..."}}]}}
{activity_rules}
Example of GOOD waypoints (varied, realistic):
{{"waypoints":[{{"lat":41.3851,"lng":2.1734,"name":"Start - City Center"}},\
{{"lat":41.3942,"lng":2.1734,"name":"Viewpoint"}},\
{{"lat":41.3968,"lng":2.1656,"name":"Park Entrance"}}]}}
"""

_CYCLING_RULES = """
For CYCLING:
- A **{days}-day** city-to-city journey (start and end should be **different** \
areas/cities)
- **Not circular**
- Up to **{max_per_day:g} km per day** (max {max_total:g} km total)
"""

_HIKING_RULES = """
For HIKING:
- **1-day CIRCULAR** route (must end where it started)
- Total distance **{min_km:g}–{max_km:g} km**
"""

_RETRY_NOTE = """
!!! PREVIOUS ATTEMPT HAD ISSUES. FIX THEM NOW:
- Do NOT place points over water or off-network
- Do NOT produce a straight line or evenly stepped coordinates
- Do NOT use placeholder coordinates such as 0,0
- Ensure spread-out, realistic points
- For cycling: start and end different cities/areas; for hiking: circular
"""


# ---------------------------------------------------------------------------
# Model JSON parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParseResult:
    """Outcome of ``parse_model_json``.

    Exactly one of ``value``/``error`` is meaningful: ``strategy`` names the
    parser that succeeded, or is None when every strategy failed.
    """

    value: Any = None
    strategy: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.strategy is not None


def _parse_direct(text: str) -> Any:
    return json.loads(text)


def _parse_first_object(text: str) -> Any:
    match = re.search(r"\{.*\}", text, re.DOTALL)
    if match is None:
        raise ValueError("no JSON object in text")
    return json.loads(match.group())


def _parse_repaired(text: str) -> Any:
    fixed = re.sub(r"```json\s*", "", text)
    fixed = re.sub(r"```\s*", "", fixed)
    fixed = re.sub(r",\s*}", "}", fixed)
    fixed = re.sub(r",\s*]", "]", fixed)
    try:
        return json.loads(fixed)
    except ValueError:
        return _parse_first_object(fixed)


_PARSE_STRATEGIES: tuple[tuple[str, Callable[[str], Any]], ...] = (
    ("direct", _parse_direct),
    ("extracted", _parse_first_object),
    ("repaired", _parse_repaired),
)


def parse_model_json(text: str) -> ParseResult:
    """Parses JSON out of a model response that may carry extra text.

    Strategies, in order: the whole text; the first ``{...}`` block; the
    text with code fences and trailing commas removed.
    """
    text = (text or "").strip()
    if not text:
        return ParseResult(error="empty response")
    errors: list[str] = []
    for name, parse in _PARSE_STRATEGIES:
        try:
            value = parse(text)
        except ValueError as exc:
            errors.append(f"{name}: {exc}")
            continue
        return ParseResult(value=value, strategy=name)
    return ParseResult(error="; ".join(errors))


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _lat_lng(waypoint: Any) -> tuple[Any, Any]:
    if isinstance(waypoint, dict):
        return waypoint.get("lat"), waypoint.get("lng")
    return getattr(waypoint, "lat", None), getattr(waypoint, "lng", None)


def is_straight_line(
    points: list[Any],
    *,
    angle_deg: float = STRAIGHT_ANGLE_DEG,
    fraction_limit: float = STRAIGHT_FRACTION_LIMIT,
) -> bool:
    """Returns True when the points run along a near-straight line.

    Measures the angle at every interior point; the set counts as straight
    when more than ``fraction_limit`` of the measurable angles are wider
    than ``angle_deg``.
    """
    if len(points) < 3:
        return False
    coords = [_lat_lng(p) for p in points]
    straight = 0
    measured = 0
    for prev, curr, nxt in zip(coords, coords[1:], coords[2:]):
        angle = interior_angle_deg(prev, curr, nxt)
        if angle is None:
            continue
        measured += 1
        if angle > angle_deg:
            straight += 1
    return measured > 0 and straight / measured > fraction_limit


def is_waypoints_valid(
    waypoints: Any, policy: PlanningPolicy | None = None
) -> bool:
    """Checks that model-proposed waypoints are geometrically plausible."""
    policy = policy or PlanningPolicy()
    if not isinstance(waypoints, list) or len(waypoints) < policy.min_waypoints:
        logger.info("Waypoints rejected: not a list or fewer than %d points",
                    policy.min_waypoints)
        return False

    for index, waypoint in enumerate(waypoints):
        lat, lng = _lat_lng(waypoint)
        if not (_is_number(lat) and _is_number(lng)):
            logger.info("Waypoint %d rejected: non-numeric coordinates", index)
            return False
        if abs(lat) > 90 or abs(lng) > 180:
            logger.info("Waypoint %d rejected: out of range (%s, %s)",
                        index, lat, lng)
            return False
        if (abs(lat) < policy.origin_exclusion_deg
                and abs(lng) < policy.origin_exclusion_deg):
            logger.info("Waypoint %d rejected: placeholder near (0, 0)", index)
            return False

    if is_straight_line(
        waypoints,
        angle_deg=policy.straight_angle_deg,
        fraction_limit=policy.straight_fraction_limit,
    ):
        logger.info("Waypoints rejected: laid out along a straight line")
        return False
    return True


# ---------------------------------------------------------------------------
# Proposal
# ---------------------------------------------------------------------------


def build_prompt(
    location: str,
    trip_type: TripType,
    policy: PlanningPolicy,
    *,
    is_retry: bool = False,
    center: tuple[float, float] | None = None,
) -> str:
    """Builds the waypoint prompt for ``trip_type`` around ``location``."""
    if trip_type == "cycling":
        activity_rules = _CYCLING_RULES.format(
            days=policy.cycling_days,
            max_per_day=policy.cycling_max_km_per_day,
            max_total=policy.cycling_max_total_km,
        )
    else:
        activity_rules = _HIKING_RULES.format(
            min_km=policy.hiking_min_km, max_km=policy.hiking_max_km
        )
    center_hint = ""
    if center is not None:
        center_hint = (
            f" The area is centred on coordinates "
            f"{center[0]:.5f}, {center[1]:.5f}."
        )
    prompt = _WAYPOINT_PROMPT.format(
        trip_type=trip_type,
        location=location,
        center_hint=center_hint,
        max_waypoints=policy.max_waypoints,
        activity_rules=activity_rules,
    )
    if is_retry:
        prompt += _RETRY_NOTE
    return prompt


def _extract_waypoint_list(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("waypoints")
    # Some models drop the wrapper object and return the array itself.
    return value


async def propose_waypoints(
    llm: CompletionClient,
    location: str,
    trip_type: TripType,
    *,
    policy: PlanningPolicy,
    is_retry: bool = False,
    center: tuple[float, float] | None = None,
) -> tuple[Waypoint, ...] | None:
    """Asks the model for waypoints until a valid set comes back.

    Args:
        llm: Completion client used for the model calls.
        location: Human-readable location name the trip is planned around.
        trip_type: ``hiking`` or ``cycling``.
        policy: Distance rules and retry budget.
        is_retry: True when an earlier pipeline attempt already failed, so
            the first prompt carries the corrective note too.
        center: Optional (lat, lng) of the location, given to the model as
            context.

    Returns:
        A validated tuple of waypoints (at most ``policy.max_waypoints``),
        or None when every attempt failed.
    """
    attempts = policy.max_proposal_attempts
    for attempt in range(1, attempts + 1):
        logger.info(
            "Waypoint proposal attempt %d/%d for %s %s",
            attempt, attempts, location, trip_type,
        )
        prompt = build_prompt(
            location,
            trip_type,
            policy,
            is_retry=is_retry or attempt > 1,
            center=center,
        )
        try:
            content = await llm.complete(_JSON_SYSTEM_PROMPT, prompt)
        except CompletionError as exc:
            logger.error("Attempt %d: model call failed: %s", attempt, exc)
            content = ""

        waypoints = _accept(content, attempt, policy)
        if waypoints is not None:
            return waypoints

        if attempt < attempts:
            await asyncio.sleep(policy.proposal_retry_delay_s)

    logger.error(
        "All %d waypoint proposals failed for %s %s", attempts, location, trip_type
    )
    return None


def _accept(
    content: str, attempt: int, policy: PlanningPolicy
) -> tuple[Waypoint, ...] | None:
    if not content:
        logger.warning("Attempt %d: empty response from model", attempt)
        return None

    result = parse_model_json(content)
    if not result.ok:
        logger.warning("Attempt %d: unparseable response (%s): %s",
                       attempt, result.error, content[:200])
        return None
    logger.info("Attempt %d: parsed model JSON via %s strategy",
                attempt, result.strategy)

    raw = _extract_waypoint_list(result.value)
    if isinstance(raw, list) and len(raw) > policy.max_waypoints:
        logger.info("Attempt %d: keeping the first %d of %d waypoints",
                    attempt, policy.max_waypoints, len(raw))
        raw = raw[: policy.max_waypoints]
    if not is_waypoints_valid(raw, policy):
        logger.warning("Attempt %d: waypoints failed validation", attempt)
        return None

    waypoints = []
    for wp in raw:
        lat, lng = _lat_lng(wp)
        name = wp.get("name") if isinstance(wp, dict) else ""
        waypoints.append(Waypoint(lat=lat, lng=lng, name=str(name or "")))
    logger.info("Attempt %d: accepted %d waypoints", attempt, len(waypoints))
    return tuple(waypoints)
