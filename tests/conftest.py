"""Pytest configuration and fixtures for logbridge tests.

The logbridge plugin itself is loaded through its pytest11 entry point;
pytester is enabled here for the plugin tests.
"""

import pytest

from logbridge.output import TestOutput
from logbridge.scopes import _current_scope
from tests.helpers import static_clock

pytest_plugins = ["pytester"]


@pytest.fixture(autouse=True)
def clean_scope_chain():
    """Start every test with no open log scopes.

    A test that fails while a scope is open would otherwise leave the
    scope in the shared context for the following tests.

    Yields:
        None.
    """
    token = _current_scope.set(None)
    yield
    _current_scope.reset(token)


@pytest.fixture
def output():
    """A fresh TestOutput, independent of the plugin's per-test output."""
    return TestOutput("unit")


@pytest.fixture
def clock():
    """Clock frozen at 2018-08-19 17:12:16+01:00 (16:12:16Z)."""
    return static_clock
