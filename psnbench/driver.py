"""
Scenario orchestration.

Runs benchmark scenarios one after another.  Each scenario moves through
four phases:

1. **PREPARING** - create statistics and the work provider, reset and
   seed the backend.
2. **RUNNING** - start the statistics clock, launch the workers and poll
   on a short interval, appending a report row whenever the reporting
   interval has passed, until the deadline.
3. **STOPPING** - cancel every worker and join each with a bounded
   timeout; workers that do not stop in time are abandoned.
4. **DONE** - close the report files and connectors.

A scenario only starts after the previous one reached DONE, so residual
workers never pollute the next scenario's statistics or backend state.
A failed scenario is recorded and the run moves on to the next one.
"""

from __future__ import annotations

import csv
import logging
import time
from collections.abc import Iterable
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TextIO

from psnbench.config import Configuration
from psnbench.connectors.base import ConnectorFactory
from psnbench.exceptions import BenchmarkError, ConnectorError
from psnbench.provider import WorkProvider
from psnbench.settings import Config, get_config
from psnbench.statistics import REPORT_HEADER, STORAGE_REPORT_HEADER, Statistics
from psnbench.worker import Worker

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d_%H.%M.%S"


class Phase(Enum):
    PREPARING = "preparing"
    RUNNING = "running"
    STOPPING = "stopping"
    DONE = "done"


@dataclass
class ScenarioResult:
    """Outcome of one scenario run."""

    name: str
    counts: dict[str, int] = field(default_factory=dict)
    elapsed_ms: int = 0
    report_path: Path | None = None
    storage_report_path: Path | None = None
    failed_workers: int = 0
    abandoned_workers: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.failed_workers == 0

    def summary(self) -> str:
        counts = ", ".join(f"{kind}={value}" for kind, value in self.counts.items())
        status = "OK" if self.succeeded else f"FAILED ({self.error or 'worker errors'})"
        return f"{self.name}: {status} in {self.elapsed_ms} ms [{counts}]"


def _report_path(report_dir: Path, stem: str) -> Path:
    """Timestamped CSV path that does not overwrite an earlier report."""
    base = f"{stem}-{datetime.now().strftime(TIMESTAMP_FORMAT)}"
    path = report_dir / f"{base}.csv"
    suffix = 2
    while path.exists():
        path = report_dir / f"{base}-{suffix}.csv"
        suffix += 1
    return path


def _open_report(path: Path, header: tuple[str, ...]) -> TextIO:
    path.parent.mkdir(parents=True, exist_ok=True)
    sink = path.open("w", encoding="utf-8", newline="")
    try:
        csv.writer(sink).writerow(header)
    except OSError:
        sink.close()
        raise
    return sink


class ScenarioRunner:
    """
    Drives a single scenario through its phases.

    Args:
        config: The scenario to run.
        factory: Connector factory for the selected backend.
        settings: Runtime settings class (poll interval, join timeout...).
        report_dir: Directory receiving the CSV report files.
    """

    def __init__(
        self,
        config: Configuration,
        factory: ConnectorFactory,
        settings: type[Config],
        report_dir: Path,
    ) -> None:
        self.config = config
        self.factory = factory
        self.settings = settings
        self.report_dir = report_dir
        self.phase = Phase.PREPARING
        self.statistics: Statistics | None = None
        self.provider: WorkProvider | None = None
        self.workers: list[Worker] = []

    def run(self) -> ScenarioResult:
        result = ScenarioResult(name=self.config.name)
        try:
            self._prepare()
            self._run_and_stop(result)
        except BenchmarkError as exc:
            result.error = str(exc)
            logger.error("Scenario %s failed in phase %s: %s", self.config.name, self.phase.value, exc)
        finally:
            if self.provider is not None:
                self.provider.close()
            self.phase = Phase.DONE

        if self.statistics is not None:
            result.counts = {kind.value: value for kind, value in self.statistics.counts().items()}
            result.elapsed_ms = self.statistics.elapsed_ms()
        logger.info("Done: %s", result.summary())
        return result

    # ---- PREPARING -----------------------------------------------------

    def _prepare(self) -> None:
        self.phase = Phase.PREPARING
        logger.info("Preparing scenario %s", self.config.name)
        self.statistics = Statistics()
        self.provider = WorkProvider(self.config, self.statistics, self.factory)
        self.provider.prepare()

    # ---- RUNNING / STOPPING --------------------------------------------

    def _run_and_stop(self, result: ScenarioResult) -> None:
        with ExitStack() as reports:
            result.report_path = _report_path(self.report_dir, self.config.name)
            sink = reports.enter_context(_open_report(result.report_path, REPORT_HEADER))
            storage_sink = None
            if self.config.report_db_space:
                result.storage_report_path = _report_path(
                    self.report_dir, f"{self.config.name}_DB_STORAGE"
                )
                storage_sink = reports.enter_context(
                    _open_report(result.storage_report_path, STORAGE_REPORT_HEADER)
                )

            try:
                self.phase = Phase.RUNNING
                self.statistics.start()
                self.workers = [
                    Worker(self.provider, i) for i in range(self.config.num_threads)
                ]
                for worker in self.workers:
                    worker.start()
                logger.info(
                    "Executing scenario %s with %d workers", self.config.name, len(self.workers)
                )
                self._poll(sink, storage_sink)
            finally:
                self._stop(result)

    def _poll(self, sink: TextIO, storage_sink: TextIO | None) -> None:
        statistics = self.statistics
        poll_seconds = self.settings.POLL_INTERVAL_MS / 1000.0

        while True:
            now = statistics.now()
            if now - statistics.get_last_time() >= self.config.reporting_interval_ms:
                statistics.report(sink)
                sink.flush()
                progress = min(statistics.elapsed_ms() / max(self.config.max_time_ms, 1), 1.0)
                logger.info(
                    "Progress: %.1f %% (currently %.2f TPS)",
                    progress * 100,
                    statistics.get_last_overall_tps(),
                )

            if (
                storage_sink is not None
                and now - statistics.get_last_storage_time()
                >= self.config.reporting_interval_db_space_ms
            ):
                self._report_storage(storage_sink)

            if statistics.elapsed_ms() >= self.config.max_time_ms:
                logger.info("Progress: 100 %")
                return

            if self.workers and not any(worker.is_alive() for worker in self.workers):
                logger.warning(
                    "All workers of scenario %s stopped before the deadline", self.config.name
                )
                return

            time.sleep(poll_seconds)

    def _report_storage(self, storage_sink: TextIO) -> None:
        try:
            self.statistics.report_storage(storage_sink, self.provider.connector())
            storage_sink.flush()
        except ConnectorError as exc:
            logger.warning("Storage report for %s failed: %s", self.config.name, exc)

    def _stop(self, result: ScenarioResult) -> None:
        self.phase = Phase.STOPPING
        for worker in self.workers:
            worker.cancel()
        for worker in self.workers:
            worker.join(self.settings.JOIN_TIMEOUT_SECONDS)
            if worker.is_alive():
                result.abandoned_workers += 1
                logger.warning(
                    "%s did not stop within %.1f s; abandoning it",
                    worker.name,
                    self.settings.JOIN_TIMEOUT_SECONDS,
                )
        result.failed_workers = sum(1 for worker in self.workers if worker.failed)


def run_scenario(
    config: Configuration,
    factory: ConnectorFactory,
    *,
    settings: type[Config] | None = None,
    report_dir: str | Path | None = None,
) -> ScenarioResult:
    """
    Run one scenario to completion.

    Args:
        config: The scenario to run.
        factory: Connector factory for the selected backend.
        settings: Runtime settings; ``get_config()`` by default.
        report_dir: Where CSV reports go; ``settings.REPORT_DIR`` by default.

    Returns:
        The :class:`ScenarioResult`.  Scenario-level failures are captured
        in ``result.error`` rather than raised.
    """
    settings = settings or get_config()
    directory = Path(report_dir if report_dir is not None else settings.REPORT_DIR)
    return ScenarioRunner(config, factory, settings, directory).run()


def run_all(
    configs: Iterable[Configuration],
    factory: ConnectorFactory,
    *,
    settings: type[Config] | None = None,
    report_dir: str | Path | None = None,
) -> list[ScenarioResult]:
    """
    Run scenarios strictly one after another.

    A failing scenario never stops the run; its result records the
    failure and the next scenario proceeds.
    """
    configs = list(configs)
    logger.info("Total configurations to run: %d", len(configs))

    results = []
    try:
        for index, config in enumerate(configs, start=1):
            logger.info(
                "Running configuration %d of %d: %s (%d left after this)",
                index,
                len(configs),
                config.name,
                len(configs) - index,
            )
            try:
                result = run_scenario(config, factory, settings=settings, report_dir=report_dir)
            except Exception as exc:
                logger.exception("Scenario %s aborted", config.name)
                result = ScenarioResult(name=config.name, error=str(exc))
            results.append(result)
    finally:
        factory.close()
    return results
