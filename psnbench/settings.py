"""
Runtime settings for the benchmark driver.

Scenario parameters live in the YAML scenario file; this module holds the
knobs that belong to the *environment* the driver runs in: how often the
driver polls, how long it waits for workers to stop, HTTP timeouts and so
on.  Values are read from environment variables with sensible defaults,
and the ``get_config`` factory selects a class based on ``PSNBENCH_ENV``
(or an explicit key).

Key Concepts:
- Class-based configuration with inheritance for shared defaults
- Environment-variable overrides for 12-factor deployability
- A testing configuration with short intervals so suites finish quickly
"""

from __future__ import annotations

import os


class Config:
    """
    Base (shared) settings.

    All environment-specific classes inherit from ``Config`` so common
    defaults are stated once.
    """

    # How often the driver loop wakes up to check the reporting interval
    # and the scenario deadline.
    POLL_INTERVAL_MS: int = int(os.environ.get("PSNBENCH_POLL_INTERVAL_MS", "100"))

    # Upper bound on waiting for each worker after cancellation.  Workers
    # still running afterwards are abandoned.
    JOIN_TIMEOUT_SECONDS: float = float(os.environ.get("PSNBENCH_JOIN_TIMEOUT_SECONDS", "5"))

    # Credentials are refreshed this many seconds before the server says
    # they expire.
    TOKEN_SAFETY_MARGIN_SECONDS: int = int(
        os.environ.get("PSNBENCH_TOKEN_SAFETY_MARGIN_SECONDS", "10")
    )

    HTTP_TIMEOUT_SECONDS: float = float(os.environ.get("PSNBENCH_HTTP_TIMEOUT_SECONDS", "10"))

    # Backends purge their tables asynchronously; give them time to settle
    # before seeding the next scenario.
    PREPARE_SETTLE_SECONDS: float = float(os.environ.get("PSNBENCH_PREPARE_SETTLE_SECONDS", "15"))

    REPORT_DIR: str = os.environ.get("PSNBENCH_REPORT_DIR", ".")

    LOG_LEVEL: str = os.environ.get("PSNBENCH_LOG_LEVEL", "INFO")


class DevelopmentConfig(Config):
    """Local runs against a developer backend; chattier logging."""

    LOG_LEVEL: str = os.environ.get("PSNBENCH_LOG_LEVEL", "DEBUG")


class TestingConfig(Config):
    """
    Test-suite overrides.

    Intervals are shrunk so end-to-end scenarios complete in a couple of
    seconds, and no settle pause is taken after a purge.
    """

    POLL_INTERVAL_MS: int = int(os.environ.get("TEST_PSNBENCH_POLL_INTERVAL_MS", "10"))
    JOIN_TIMEOUT_SECONDS: float = float(os.environ.get("TEST_PSNBENCH_JOIN_TIMEOUT_SECONDS", "1"))
    HTTP_TIMEOUT_SECONDS: float = 1.0
    PREPARE_SETTLE_SECONDS: float = 0.0


class ProductionConfig(Config):
    """Measurement runs; everything comes from the environment."""


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": ProductionConfig,
}


def get_config(env: str | None = None) -> type[Config]:
    """
    Return the settings class for the given environment.

    Args:
        env: One of ``"development"``, ``"testing"`` or ``"production"``.
            When *None*, the ``PSNBENCH_ENV`` environment variable is
            consulted, falling back to ``"production"``.

    Returns:
        The ``Config`` subclass matching the requested environment, or
        ``ProductionConfig`` if the key is unrecognised.
    """
    if env is None:
        env = os.environ.get("PSNBENCH_ENV", "production")
    return config.get(env, config["default"])
