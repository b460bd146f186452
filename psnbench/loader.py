"""
Load benchmark plans from a YAML scenario file.

The file has one ``benchmark`` section with the run-wide parameters and
the list of scenarios, plus one section per backend holding connection
options::

    benchmark:
      backend: ace
      initialDbSize: 1000
      maxTime: 60000
      reportingInterval: 1000
      numThreads: 8
      numberOfRepetitions: 2
      scenarios:
        - {name: create-heavy, createRate: 80, readRate: 20}
    ace:
      uri: https://ace.example.org
      domainName: benchmark

Every scenario is expanded ``numberOfRepetitions`` times into a
:class:`~psnbench.config.Configuration` named
``<scenario>-<numThreads>-threads``.  Rates a scenario leaves out are 0.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from psnbench.config import Configuration
from psnbench.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN_NAME = "psnbench"

# benchmark-section key -> Configuration field, with the default used when
# the key is absent.
RUN_KEYS: dict[str, tuple[str, Any]] = {
    "initialDbSize": ("initial_db_size", 0),
    "maxTime": ("max_time_ms", 60_000),
    "reportingInterval": ("reporting_interval_ms", 1_000),
    "reportingIntervalDbSpace": ("reporting_interval_db_space_ms", 10_000),
    "reportDbSpace": ("report_db_space", False),
    "numThreads": ("num_threads", 1),
}

RATE_KEYS: dict[str, str] = {
    "createRate": "create_rate",
    "readRate": "read_rate",
    "updateRate": "update_rate",
    "deleteRate": "delete_rate",
    "pingRate": "ping_rate",
}


@dataclass
class BenchmarkPlan:
    """
    Everything needed to run one scenario file.

    Attributes:
        backend: Registry name of the backend under test.
        configurations: Scenarios in execution order, repetitions expanded.
        backend_settings: The backend's own section of the file.
    """

    backend: str
    configurations: list[Configuration] = field(default_factory=list)
    backend_settings: dict[str, Any] = field(default_factory=dict)


def _section(data: dict, key: str, required: bool = True) -> dict:
    value = data.get(key)
    if value is None and not required:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Section {key!r} must be a mapping")
    return value


def _integer(section: dict, key: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")
    return value


def parse_plan(data: Any, backend_override: str | None = None) -> BenchmarkPlan:
    """
    Build a :class:`BenchmarkPlan` from already-parsed YAML.

    Args:
        data: The decoded document.
        backend_override: Backend name replacing ``benchmark.backend``.

    Raises:
        ConfigurationError: On missing sections, ill-typed values or any
            scenario that fails :class:`Configuration` validation.
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Scenario file must contain a mapping at the top level")

    benchmark = _section(data, "benchmark")
    backend = backend_override or benchmark.get("backend")
    if not isinstance(backend, str) or not backend:
        raise ConfigurationError("benchmark.backend must name a backend")
    backend_settings = _section(data, backend, required=False)
    domain_name = backend_settings.get("domainName") or DEFAULT_DOMAIN_NAME

    run_values: dict[str, Any] = {}
    for key, (field_name, default) in RUN_KEYS.items():
        if field_name == "report_db_space":
            value = benchmark.get(key, default)
            if not isinstance(value, bool):
                raise ConfigurationError(f"{key} must be true or false, got {value!r}")
            run_values[field_name] = value
        else:
            run_values[field_name] = _integer(benchmark, key, default)

    repetitions = _integer(benchmark, "numberOfRepetitions", 1)
    if repetitions < 1:
        raise ConfigurationError("numberOfRepetitions must be at least 1")

    scenarios = benchmark.get("scenarios")
    if not isinstance(scenarios, list) or not scenarios:
        raise ConfigurationError("benchmark.scenarios must be a non-empty list")

    configurations = []
    for _ in range(repetitions):
        for scenario in scenarios:
            if not isinstance(scenario, dict) or not scenario.get("name"):
                raise ConfigurationError(f"Scenario entries need a name, got {scenario!r}")
            rates = {
                field_name: _integer(scenario, key, 0) for key, field_name in RATE_KEYS.items()
            }
            configurations.append(
                Configuration(
                    name=f"{scenario['name']}-{run_values['num_threads']}-threads",
                    domain_name=domain_name,
                    **rates,
                    **run_values,
                )
            )

    logger.info(
        "Loaded %d configurations for backend %s (%d repetitions)",
        len(configurations),
        backend,
        repetitions,
    )
    return BenchmarkPlan(backend, configurations, backend_settings)


def load_plan(path: str | Path, backend_override: str | None = None) -> BenchmarkPlan:
    """
    Read and parse a scenario file.

    Raises:
        ConfigurationError: If the file is unreadable, not valid YAML or
            describes an invalid plan.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigurationError(f"Cannot read scenario file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Scenario file {path} is not valid YAML: {exc}") from exc
    return parse_plan(data, backend_override)
