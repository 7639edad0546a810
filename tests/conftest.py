"""Define common fixtures for nlp tests."""

import pytest

from trajopt_nlp.bounds import Bound
from trajopt_nlp.examples import build_example_nlp
from trajopt_nlp.variables import VectorVariableSet


def pytest_addoption(parser):
    """Add command line options for pytest."""
    parser.addoption(
        "--show-plots",
        action="store_true",
        default=False,
        help="Show plots during tests (default: False)",
    )


@pytest.fixture(scope="session")
def show_plots(request):
    """Fixture to determine if plots should be shown during tests."""
    return request.config.getoption("--show-plots")


"""
Below defines a standard layout of two variable sets for testing.
A position-like block of 3 variables bounded in [-1, 1] followed by
a force-like block of 2 variables bounded in [0, 5].
"""


@pytest.fixture
def position_variables():
    """Create the first variable set of size 3."""
    yield VectorVariableSet("position", [0.1, 0.2, 0.3], bounds=[Bound(-1.0, 1.0)] * 3)


@pytest.fixture
def force_variables():
    """Create the second variable set of size 2."""
    yield VectorVariableSet("force", [1.0, 2.0], bounds=[Bound(0.0, 5.0)] * 2)


@pytest.fixture
def example_nlp():
    """Create the reference nlp with one variable set, one constraint and one cost."""
    yield build_example_nlp()
