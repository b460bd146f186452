"""
Work items and the provider that hands them out.

The :class:`WorkProvider` binds one scenario's configuration, its work
distribution, the live statistics and a connector factory into an
endless supply of :class:`WorkItem` objects.  Worker threads call
:meth:`WorkProvider.get_work` in a loop and run whatever comes back.

Records created during the scenario are remembered in a shared
:class:`CreatedRecords` pool.  READ, UPDATE and DELETE items walk a
snapshot of that whole pool and issue one backend call per record.  The item
is counted once when it finishes, so the configured rates and the
reported counters both describe dispatch cycles, not backend calls.

Error policy inside a work item:

- before the scenario deadline, any failure is fatal for the item and is
  raised as :class:`~psnbench.exceptions.WorkItemError`
- at or after the deadline, failures are expected (requests racing the
  shutdown) and are discarded

Key Concepts:
- Thread-local connectors: one per worker thread, never shared
- Explicit work item value carrying its collaborators instead of a
  closure over provider state
- Copy-on-read snapshot so iteration never races a concurrent append
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from dataclasses import dataclass

from psnbench.config import Configuration
from psnbench.connectors.base import Connector, ConnectorFactory, RecordRef
from psnbench.distribution import WorkDistribution, WorkKind
from psnbench.exceptions import PreparationError, WorkItemError
from psnbench.statistics import Statistics

logger = logging.getLogger(__name__)


class CreatedRecords:
    """
    Append-only pool of record references shared by all workers.

    Appends take a short lock; readers iterate an immutable snapshot, so a
    concurrent append is either fully visible or not visible at all.
    """

    def __init__(self) -> None:
        self._refs: list[RecordRef] = []
        self._lock = threading.Lock()

    def append(self, ref: RecordRef) -> None:
        with self._lock:
            self._refs.append(ref)

    def snapshot(self) -> tuple[RecordRef, ...]:
        with self._lock:
            return tuple(self._refs)

    def __iter__(self) -> Iterator[RecordRef]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._refs)


@dataclass(frozen=True)
class WorkItem:
    """
    One deferred unit of benchmark work.

    Attributes:
        kind: The operation to perform.
        connector: The calling worker's own connector.
        statistics: Counters to update on completion.
        records: Shared pool of created record references.
        max_time_ms: Scenario deadline, used to classify failures.
    """

    kind: WorkKind
    connector: Connector
    statistics: Statistics
    records: CreatedRecords
    max_time_ms: int

    def run(self) -> None:
        """
        Execute the item against the backend.

        Raises:
            WorkItemError: If a backend call fails before the deadline.
        """
        if self.kind in (WorkKind.CREATE, WorkKind.PING):
            self._execute(None)
        else:
            for ref in self.records.snapshot():
                if not self._execute(ref):
                    break
        self.statistics.add(self.kind)

    __call__ = run

    def _execute(self, ref: RecordRef | None) -> bool:
        # Returns False when a failure past the deadline was discarded; the
        # scenario is over, so the rest of the snapshot is skipped.
        try:
            if self.kind is WorkKind.CREATE:
                self.records.append(self.connector.create())
            elif self.kind is WorkKind.READ:
                self.connector.read(ref)
            elif self.kind is WorkKind.UPDATE:
                self.connector.update(ref)
            elif self.kind is WorkKind.DELETE:
                self.connector.delete(ref)
            else:
                self.connector.ping()
        except Exception as exc:
            if self.statistics.elapsed_ms() >= self.max_time_ms:
                # Requests racing the shutdown are expected to fail.
                logger.debug("Ignoring %s failure after deadline: %s", self.kind.name, exc)
                return False
            raise WorkItemError(self.kind, ref) from exc
        return True


class WorkProvider:
    """
    Supplies work items for one scenario.

    Args:
        config: The scenario being run.
        statistics: Live counters shared with the driver.
        factory: Creates one connector per calling thread.
        distribution: Work kind sampler; built from *config* if omitted.
    """

    def __init__(
        self,
        config: Configuration,
        statistics: Statistics,
        factory: ConnectorFactory,
        distribution: WorkDistribution | None = None,
    ) -> None:
        self.config = config
        self.statistics = statistics
        self.factory = factory
        self.distribution = distribution or WorkDistribution.from_configuration(config)
        self.records = CreatedRecords()
        self._local = threading.local()
        self._connectors: list[Connector] = []
        self._connectors_lock = threading.Lock()

    def connector(self) -> Connector:
        """Return the calling thread's connector, creating it on first use."""
        connector = getattr(self._local, "connector", None)
        if connector is None:
            connector = self.factory.create()
            self._local.connector = connector
            with self._connectors_lock:
                self._connectors.append(connector)
            logger.debug("Created connector for thread %s", threading.current_thread().name)
        return connector

    def prepare(self) -> None:
        """
        Reset the backend and seed ``initial_db_size`` records.

        Runs synchronously on the calling thread and must finish before
        any worker starts.

        Raises:
            PreparationError: If resetting or seeding fails.
        """
        try:
            connector = self.connector()
            connector.prepare()
            for _ in range(self.config.initial_db_size):
                self.records.append(connector.create())
        except Exception as exc:
            raise PreparationError(
                f"Preparing scenario {self.config.name!r} failed after "
                f"{len(self.records)} seeded records: {exc}"
            ) from exc
        logger.info(
            "Prepared scenario %s with %d seeded records", self.config.name, len(self.records)
        )

    def get_work(self) -> WorkItem:
        """Return the next work item for the calling thread."""
        return WorkItem(
            kind=self.distribution.sample(),
            connector=self.connector(),
            statistics=self.statistics,
            records=self.records,
            max_time_ms=self.config.max_time_ms,
        )

    def close(self) -> None:
        """Close every connector handed out by this provider."""
        with self._connectors_lock:
            connectors, self._connectors = self._connectors, []
        for connector in connectors:
            try:
                connector.close()
            except Exception:
                logger.warning("Closing connector %r failed", connector, exc_info=True)
