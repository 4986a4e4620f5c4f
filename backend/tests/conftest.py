"""Pytest configuration for the trip planner backend test suite."""

import sys
from pathlib import Path

import pytest

# Ensure the backend root is on the path so tests can import modules
# directly (e.g. `import geodesy`) without a package prefix, and the tests
# directory so shared fakes can be imported as `fakes`.
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from settings import PlanningPolicy  # noqa: E402


@pytest.fixture()
def policy() -> PlanningPolicy:
    """Default bounds and budgets with every retry delay set to zero."""
    return PlanningPolicy(
        proposal_retry_delay_s=0,
        invalid_proposal_delay_s=0,
        routing_failure_delay_s=0,
    )
