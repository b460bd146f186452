"""
Command-line entry point.

Usage::

    psnbench --config scenarios.yml [--env production] [--report-dir DIR] [--backend NAME]

Loads the scenario file, builds the connector factory for the selected
backend and runs every scenario in order, printing one summary line per
scenario when the run is over.

Exit codes follow a three-state convention so automation can distinguish
"benchmark ran but something failed" from "the driver could not run":

- ``0`` - every scenario completed without failed workers
- ``1`` - at least one scenario failed or had a failing worker
- ``2`` - the driver itself failed (bad scenario file, unknown backend...)
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from psnbench.connectors import BACKENDS, create_factory
from psnbench.driver import run_all
from psnbench.exceptions import BenchmarkError
from psnbench.loader import load_plan
from psnbench.settings import config as settings_by_env
from psnbench.settings import get_config

EXIT_PASS = 0
EXIT_SCENARIO_FAILURE = 1
EXIT_SCRIPT_ERROR = 2

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the benchmark driver."""
    parser = argparse.ArgumentParser(
        prog="psnbench",
        description="Run pseudonymisation backend benchmark scenarios.",
    )
    parser.add_argument(
        "--config",
        required=True,
        type=Path,
        help="Path to the YAML scenario file",
    )
    parser.add_argument(
        "--env",
        choices=sorted(key for key in settings_by_env if key != "default"),
        default=None,
        help="Runtime settings to use (defaults to $PSNBENCH_ENV or production)",
    )
    parser.add_argument(
        "--report-dir",
        type=Path,
        default=None,
        help="Directory receiving the CSV reports (defaults to $PSNBENCH_REPORT_DIR)",
    )
    parser.add_argument(
        "--backend",
        choices=sorted(BACKENDS),
        default=None,
        help="Override benchmark.backend from the scenario file",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """
    Entry point: load the plan, run it and print the results.

    Returns:
        ``EXIT_PASS`` (0), ``EXIT_SCENARIO_FAILURE`` (1) or
        ``EXIT_SCRIPT_ERROR`` (2).
    """
    args = parse_args(argv)
    settings = get_config(args.env)
    logging.basicConfig(level=settings.LOG_LEVEL, format=LOG_FORMAT)

    try:
        plan = load_plan(args.config, backend_override=args.backend)
        factory = create_factory(plan.backend, plan.backend_settings, settings=settings)
        results = run_all(
            plan.configurations, factory, settings=settings, report_dir=args.report_dir
        )
    except BenchmarkError as exc:
        print(f"Benchmark could not run: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR
    except Exception as exc:  # pragma: no cover - CLI guard
        logger.exception("Benchmark driver crashed")
        print(f"Benchmark driver crashed: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR

    print("Benchmark Results")
    print("-" * 60)
    for result in results:
        print(result.summary())
        if result.report_path is not None:
            print(f"  report: {result.report_path}")
    print("-" * 60)

    passed = all(result.succeeded for result in results)
    print(f"Overall: {'PASS' if passed else 'FAIL'}")
    return EXIT_PASS if passed else EXIT_SCENARIO_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
