"""
Backend connector contract.

A :class:`Connector` is the driver's only view of the system under test:
a uniform create/read/update/delete/ping surface over whatever protocol
the backend speaks.  Each worker thread owns exactly one connector for
its lifetime, so implementations may keep per-connection state (HTTP
sessions, backend session tokens) without any locking of their own.

Connectors raise :class:`~psnbench.exceptions.ConnectorError` for backend
failures; the work provider decides whether a failure matters based on
the scenario deadline.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RecordRef:
    """
    Identifier of a record created by :meth:`Connector.create`.

    Attributes:
        id_type: Namespace of the identifier (e.g. ``"pid"``).
        id_string: The identifier value within that namespace.
    """

    id_type: str
    id_string: str

    def __str__(self) -> str:
        return f"{self.id_type}:{self.id_string}"


class Connector(ABC):
    """Uniform CRUD + ping contract over one backend connection."""

    @abstractmethod
    def prepare(self) -> None:
        """Reset the backend to a clean state for a new scenario."""

    @abstractmethod
    def create(self) -> RecordRef:
        """Create one record and return a reference usable by the other calls."""

    @abstractmethod
    def read(self, ref: RecordRef) -> None:
        """Read the record identified by *ref*."""

    @abstractmethod
    def update(self, ref: RecordRef) -> None:
        """Modify the record identified by *ref*."""

    @abstractmethod
    def delete(self, ref: RecordRef) -> None:
        """Delete the record identified by *ref*."""

    @abstractmethod
    def ping(self) -> int:
        """Issue a cheap round-trip and return the status code."""

    def storage_consumption(self) -> str | None:
        """Backend-reported storage usage, or ``None`` if unsupported."""
        return None

    def close(self) -> None:
        """Release connection resources."""


class ConnectorFactory(ABC):
    """Creates one :class:`Connector` per worker thread."""

    @abstractmethod
    def create(self) -> Connector:
        """Return a new, unshared connector."""

    def close(self) -> None:
        """Release resources shared by all connectors of this factory."""
