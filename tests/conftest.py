"""
Pytest fixtures shared by the portfolio tests.
"""

import pytest

from portfolio_engine.shared.security.rate_limiting import limiter
from tests.fakes import World


@pytest.fixture
def world() -> World:
    """A fresh set of in-memory portfolio services."""
    return World()


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Rate limit counters must not leak between tests."""
    limiter.reset()
    yield
    limiter.reset()
