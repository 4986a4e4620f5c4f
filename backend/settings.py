"""Service configuration and the trip-planning policy.

``Settings`` is read from the environment (and an optional ``.env`` file).
``PlanningPolicy`` holds every distance bound, retry budget and delay used by
the route-generation pipeline. It is built once per request from the
settings and passed explicitly into each stage, so tests can run the
pipeline with a hand-made policy and no environment at all.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Route-planning rules. All tuneable constants live here.
# ---------------------------------------------------------------------------

# -- Distance bounds ------------------------------------------------------
CYCLING_MAX_KM_PER_DAY: float = 60.0
CYCLING_DAYS: int = 2
HIKING_MIN_KM: float = 5.0
HIKING_MAX_KM: float = 15.0
# Slack allowed on a cycling day after splitting (rounding on the split point).
DAY_LIMIT_TOLERANCE_KM: float = 0.1

# -- Waypoint proposal ----------------------------------------------------
MIN_WAYPOINTS: int = 3
MAX_WAYPOINTS: int = 15
# Points within this many degrees of (0, 0) are placeholder coordinates.
ORIGIN_EXCLUSION_DEG: float = 0.5
# A waypoint set is "a straight line" when more than STRAIGHT_FRACTION_LIMIT
# of its interior angles are wider than STRAIGHT_ANGLE_DEG.
STRAIGHT_ANGLE_DEG: float = 170.0
STRAIGHT_FRACTION_LIMIT: float = 0.7

# -- Snapping -------------------------------------------------------------
SNAP_RADII_M: tuple[int, ...] = (200, 400, 800)
MIN_SNAPPED_POINTS: int = 3
SNAP_DEDUPE_M: float = 30.0

# -- Route shaping --------------------------------------------------------
LOOP_CLOSE_M: float = 120.0
DECIMATION_STEPS: tuple[int, ...] = (2, 3)
HIKING_PREFIX_FRACTIONS: tuple[float, ...] = (0.55, 0.45, 0.35)
# The minimal loop aims at a circle this fraction of the max distance long.
MINIMAL_LOOP_FACTOR: float = 0.9

# -- Retry budgets and pacing ---------------------------------------------
MAX_PIPELINE_ATTEMPTS: int = 6
MAX_PROPOSAL_ATTEMPTS: int = 3
PROPOSAL_RETRY_DELAY_S: float = 1.0     # between model calls in one proposal
INVALID_PROPOSAL_DELAY_S: float = 0.8   # before restarting after no waypoints
ROUTING_FAILURE_DELAY_S: float = 0.9    # before restarting after snap/route/limits

# -- Upstream timeouts ----------------------------------------------------
SNAP_TIMEOUT_S: float = 20.0
DIRECTIONS_TIMEOUT_S: float = 30.0


@dataclass(frozen=True)
class PlanningPolicy:
    """Bounds, budgets and delays for one planning request."""

    cycling_max_km_per_day: float = CYCLING_MAX_KM_PER_DAY
    cycling_days: int = CYCLING_DAYS
    hiking_min_km: float = HIKING_MIN_KM
    hiking_max_km: float = HIKING_MAX_KM
    day_limit_tolerance_km: float = DAY_LIMIT_TOLERANCE_KM

    min_waypoints: int = MIN_WAYPOINTS
    max_waypoints: int = MAX_WAYPOINTS
    origin_exclusion_deg: float = ORIGIN_EXCLUSION_DEG
    straight_angle_deg: float = STRAIGHT_ANGLE_DEG
    straight_fraction_limit: float = STRAIGHT_FRACTION_LIMIT

    snap_radii_m: tuple[int, ...] = SNAP_RADII_M
    min_snapped_points: int = MIN_SNAPPED_POINTS
    snap_dedupe_m: float = SNAP_DEDUPE_M

    loop_close_m: float = LOOP_CLOSE_M
    decimation_steps: tuple[int, ...] = DECIMATION_STEPS
    hiking_prefix_fractions: tuple[float, ...] = HIKING_PREFIX_FRACTIONS
    minimal_loop_factor: float = MINIMAL_LOOP_FACTOR

    max_pipeline_attempts: int = MAX_PIPELINE_ATTEMPTS
    max_proposal_attempts: int = MAX_PROPOSAL_ATTEMPTS
    proposal_retry_delay_s: float = PROPOSAL_RETRY_DELAY_S
    invalid_proposal_delay_s: float = INVALID_PROPOSAL_DELAY_S
    routing_failure_delay_s: float = ROUTING_FAILURE_DELAY_S

    @property
    def cycling_max_total_km(self) -> float:
        return self.cycling_max_km_per_day * self.cycling_days


class Settings(BaseSettings):
    """Environment-driven service settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    # Language model used for waypoint proposals.
    llm_provider: Literal["anthropic", "openai"] = "anthropic"
    anthropic_api_key: str = ""
    route_model: str = "claude-sonnet-4-6"
    # Any OpenAI-compatible endpoint (OpenAI, Groq, ...).
    openai_api_key: str = ""
    openai_base_url: str | None = None
    openai_model: str = "gpt-4.1-mini"

    openrouteservice_api_key: str = ""
    openrouteservice_base_url: str = "https://api.openrouteservice.org"
    snap_timeout_s: float = SNAP_TIMEOUT_S
    directions_timeout_s: float = DIRECTIONS_TIMEOUT_S

    # Optional; used to geocode locations that arrive without coordinates.
    google_maps_api_key: str = ""

    cycling_max_km_per_day: float = CYCLING_MAX_KM_PER_DAY
    hiking_min_km: float = HIKING_MIN_KM
    hiking_max_km: float = HIKING_MAX_KM

    def planning_policy(self) -> PlanningPolicy:
        """Returns the default policy with the environment's distance overrides."""
        return PlanningPolicy(
            cycling_max_km_per_day=self.cycling_max_km_per_day,
            hiking_min_km=self.hiking_min_km,
            hiking_max_km=self.hiking_max_km,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
