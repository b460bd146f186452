"""
Shared pytest fixtures for the psnbench test suite.

Fixtures provide fresh, isolated collaborators for every test: a fake
backend, settings with short intervals, a temporary report directory
and a controllable clock.

Key Concepts Demonstrated:
- Fixture dependencies (factory -> backend)
- Test settings selected the same way production selects its own
- Manual clocks so time-dependent code is tested without sleeping
"""

from __future__ import annotations

import os

import pytest
from faker import Faker

# Select test settings before anything reads the environment.
os.environ["PSNBENCH_ENV"] = "testing"

from psnbench.config import Configuration
from psnbench.connectors.memory import InMemoryBackend, InMemoryConnectorFactory
from psnbench.settings import get_config

fake = Faker()


class ManualClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> None:
        self.now += millis


# -----------------------------------------------------------------------------
# Settings and clocks
# -----------------------------------------------------------------------------

@pytest.fixture
def settings():
    """Runtime settings tuned for fast tests."""
    return get_config("testing")


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def report_dir(tmp_path):
    directory = tmp_path / "reports"
    directory.mkdir()
    return directory


# -----------------------------------------------------------------------------
# Backend fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def factory(backend):
    return InMemoryConnectorFactory(backend)


# -----------------------------------------------------------------------------
# Configuration factory
# -----------------------------------------------------------------------------

@pytest.fixture
def make_config():
    """
    Factory fixture building valid configurations.

    Any field can be overridden; by default the scenario is create-only
    with a random name so report files never collide.
    """

    def _make_config(**overrides) -> Configuration:
        values = {
            "name": f"test-{fake.slug()}",
            "domain_name": "test-domain",
            "create_rate": 100,
            "num_threads": 2,
            "max_time_ms": 300,
            "reporting_interval_ms": 100,
        }
        values.update(overrides)
        return Configuration(**values)

    return _make_config
