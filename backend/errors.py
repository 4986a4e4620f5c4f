"""Failure types raised by the route-generation pipeline.

Every stage failure derives from ``RouteGenerationError``. The orchestrator
treats all of them except ``PlanningError`` as a signal to start over with a
fresh waypoint proposal; ``PlanningError`` is raised once the attempt budget
is spent and is the only one callers of ``plan_route`` see.
"""


class RouteGenerationError(Exception):
    """Base class for route-generation failures."""


class ProposalError(RouteGenerationError):
    """The language model produced no usable waypoint set."""


class SnapError(RouteGenerationError):
    """Too few waypoints could be snapped onto the routable network."""


class RoutingError(RouteGenerationError):
    """The directions provider returned no route or failed."""


class ConstraintViolation(RouteGenerationError):
    """The route stays outside the activity's distance bounds."""


class PlanningError(RouteGenerationError):
    """All pipeline attempts failed; the request cannot be served."""
