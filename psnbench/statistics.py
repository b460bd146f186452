"""
Live throughput statistics for a benchmark scenario.

Worker threads increment one counter per completed work item
while the driver thread periodically appends a report row to the
scenario's CSV file.  Counters are individually atomic; a report reads
them one after another without stopping the workers, so a row may miss
operations that complete while it is being taken.  Rows are snapshots,
not exact cut-offs.

Key Concepts:
- One small lock per counter keeps contention bounded to a single
  increment
- Monotonic millisecond clock for deadline and interval checks
- Interval TPS derived from the delta between two consecutive reports
"""

from __future__ import annotations

import csv
import threading
import time
from collections.abc import Callable
from typing import TextIO

from psnbench.distribution import DRAW_ORDER, WorkKind

REPORT_HEADER = (
    "elapsed_ms",
    "create",
    "read",
    "update",
    "delete",
    "ping",
    "interval_tps",
)

STORAGE_REPORT_HEADER = ("elapsed_ms", "storage")


def monotonic_ms() -> int:
    """Milliseconds from an arbitrary, never-decreasing origin."""
    return time.monotonic_ns() // 1_000_000


class _Counter:
    """Integer counter with an atomic increment."""

    __slots__ = ("_value", "_lock")

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def increment(self) -> None:
        with self._lock:
            self._value += 1

    @property
    def value(self) -> int:
        return self._value


class Statistics:
    """
    Concurrent operation counters plus periodic CSV reporting.

    Args:
        clock: Millisecond clock; injectable so tests can control time.
    """

    def __init__(self, clock: Callable[[], int] = monotonic_ms) -> None:
        self._clock = clock
        self._counters = {kind: _Counter() for kind in WorkKind}
        self._report_lock = threading.Lock()
        self._start_time: int | None = None
        self._last_time = 0
        self._last_total = 0
        self._last_tps = 0.0
        self._last_storage_time = 0

    # ---- lifecycle -----------------------------------------------------

    def start(self) -> None:
        """Record the scenario start; may only be called once."""
        if self._start_time is not None:
            raise RuntimeError("Statistics already started")
        now = self._clock()
        self._start_time = now
        self._last_time = now
        self._last_storage_time = now

    def now(self) -> int:
        return self._clock()

    def get_start_time(self) -> int:
        """Start timestamp; before :meth:`start` it is the current time."""
        if self._start_time is None:
            return self._clock()
        return self._start_time

    def get_last_time(self) -> int:
        """Timestamp of the most recent report (the start time before any)."""
        return self._last_time

    def get_last_storage_time(self) -> int:
        return self._last_storage_time

    def elapsed_ms(self) -> int:
        """Milliseconds since :meth:`start`; zero if not started."""
        if self._start_time is None:
            return 0
        return self._clock() - self._start_time

    # ---- counters ------------------------------------------------------

    def add(self, kind: WorkKind) -> None:
        self._counters[kind].increment()

    def add_create(self) -> None:
        self.add(WorkKind.CREATE)

    def add_read(self) -> None:
        self.add(WorkKind.READ)

    def add_update(self) -> None:
        self.add(WorkKind.UPDATE)

    def add_delete(self) -> None:
        self.add(WorkKind.DELETE)

    def add_ping(self) -> None:
        self.add(WorkKind.PING)

    def count(self, kind: WorkKind) -> int:
        return self._counters[kind].value

    def counts(self) -> dict[WorkKind, int]:
        """Snapshot of all counters, in draw order."""
        return {kind: self._counters[kind].value for kind in DRAW_ORDER}

    def total(self) -> int:
        return sum(self.counts().values())

    # ---- reporting -----------------------------------------------------

    def get_last_overall_tps(self) -> float:
        """Operations per second between the two most recent reports."""
        return self._last_tps

    def report(self, sink: TextIO) -> tuple:
        """
        Append one row of cumulative counters to *sink*.

        The row holds the elapsed milliseconds, the five cumulative
        counters and the transactions per second since the previous report
        (0 if no time has passed).  ``last_time`` moves to now.

        Args:
            sink: A text stream opened for appending.

        Returns:
            The row that was written.
        """
        with self._report_lock:
            now = self._clock()
            counts = self.counts()
            total = sum(counts.values())

            interval_ms = now - self._last_time
            if interval_ms > 0:
                self._last_tps = (total - self._last_total) * 1000.0 / interval_ms
            else:
                self._last_tps = 0.0

            row = (
                now - self.get_start_time(),
                *counts.values(),
                round(self._last_tps, 2),
            )
            csv.writer(sink).writerow(row)

            self._last_total = total
            self._last_time = now
            return row

    def report_storage(self, sink: TextIO, connector) -> tuple:
        """
        Append the backend's current storage consumption to *sink*.

        Args:
            sink: A text stream opened for appending.
            connector: Connector queried via ``storage_consumption()``.

        Returns:
            The row that was written.
        """
        now = self._clock()
        storage = connector.storage_consumption()
        row = (now - self.get_start_time(), "" if storage is None else storage)
        csv.writer(sink).writerow(row)
        self._last_storage_time = now
        return row
