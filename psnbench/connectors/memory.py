"""
In-process fake backend.

:class:`InMemoryBackend` stands in for a pseudonymisation service during
dry runs and tests: records live in a dictionary guarded by a lock, and
every call is recorded so tests can assert on exactly what the driver
did.  Connectors created by :class:`InMemoryConnectorFactory` share one
backend but nothing else, mirroring many clients against one server.
"""

from __future__ import annotations

import itertools
import threading
import time
from collections import Counter

from psnbench.connectors.base import Connector, ConnectorFactory, RecordRef
from psnbench.exceptions import ConnectorError

ID_TYPE = "mem"


class InMemoryBackend:
    """
    Thread-safe record store with call accounting.

    Args:
        latency_seconds: Artificial delay added to every call.
        fail_on: Operation names (``"create"``, ``"read"``...) that raise
            :class:`ConnectorError` instead of succeeding.
    """

    def __init__(self, latency_seconds: float = 0.0, fail_on: set[str] | None = None) -> None:
        self.latency_seconds = latency_seconds
        self.fail_on = set(fail_on or ())
        self.records: dict[RecordRef, dict[str, str]] = {}
        self.calls: Counter[str] = Counter()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def call(self, operation: str) -> None:
        with self._lock:
            self.calls[operation] += 1
        if self.latency_seconds:
            time.sleep(self.latency_seconds)
        if operation in self.fail_on:
            raise ConnectorError(f"{operation} rejected by backend", status_code=500)

    def reset(self) -> None:
        with self._lock:
            self.records.clear()

    def insert(self) -> RecordRef:
        with self._lock:
            ref = RecordRef(ID_TYPE, str(next(self._ids)))
            self.records[ref] = {"version": "0"}
            return ref

    def get(self, ref: RecordRef) -> dict[str, str] | None:
        with self._lock:
            return self.records.get(ref)

    def bump(self, ref: RecordRef) -> None:
        with self._lock:
            record = self.records.get(ref)
            if record is not None:
                record["version"] = str(int(record["version"]) + 1)

    def remove(self, ref: RecordRef) -> None:
        with self._lock:
            self.records.pop(ref, None)


class InMemoryConnector(Connector):
    """Connector over an :class:`InMemoryBackend`; missing records are ignored."""

    def __init__(self, backend: InMemoryBackend) -> None:
        self.backend = backend
        self.closed = False

    def prepare(self) -> None:
        self.backend.call("prepare")
        self.backend.reset()

    def create(self) -> RecordRef:
        self.backend.call("create")
        return self.backend.insert()

    def read(self, ref: RecordRef) -> None:
        self.backend.call("read")
        self.backend.get(ref)

    def update(self, ref: RecordRef) -> None:
        self.backend.call("update")
        self.backend.bump(ref)

    def delete(self, ref: RecordRef) -> None:
        self.backend.call("delete")
        self.backend.remove(ref)

    def ping(self) -> int:
        self.backend.call("ping")
        return 200

    def storage_consumption(self) -> str | None:
        return str(len(self.backend.records))

    def close(self) -> None:
        self.closed = True


class InMemoryConnectorFactory(ConnectorFactory):
    """Hands out connectors sharing one :class:`InMemoryBackend`."""

    def __init__(self, backend: InMemoryBackend | None = None) -> None:
        self.backend = backend or InMemoryBackend()
        self.created: list[InMemoryConnector] = []
        self._lock = threading.Lock()

    def create(self) -> InMemoryConnector:
        connector = InMemoryConnector(self.backend)
        with self._lock:
            self.created.append(connector)
        return connector
