"""
Exception hierarchy for the benchmark driver.

Every error raised deliberately by ``psnbench`` derives from
:class:`BenchmarkError` so that the command-line entry point can tell a
benchmark failure apart from a programming error.  The classes map onto
the failure categories the driver distinguishes at run time:

- configuration problems, detected before anything touches a backend
- backend (connector) failures
- preparation failures, which abort a single scenario
- in-flight work item failures raised before the scenario deadline
- credential refresh failures and misuse of the credential cache
"""

from __future__ import annotations

from typing import Any


class BenchmarkError(Exception):
    """Base class for all benchmark driver errors."""


class ConfigurationError(BenchmarkError, ValueError):
    """Raised when a scenario or settings value violates its constraints."""


class ConnectorError(BenchmarkError):
    """
    A backend call failed.

    Attributes:
        status_code: HTTP status returned by the backend, or ``None`` when
            the failure happened before a response was received.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PreparationError(BenchmarkError):
    """Seeding or resetting the backend failed; the scenario is aborted."""


class WorkItemError(BenchmarkError):
    """
    A work item failed before the scenario deadline.

    Attributes:
        kind: The :class:`~psnbench.distribution.WorkKind` being executed.
        record: The record reference in use when the failure happened, if any.
    """

    def __init__(self, kind: Any, record: Any = None) -> None:
        target = f" on {record}" if record is not None else ""
        super().__init__(f"{kind.name} failed{target}")
        self.kind = kind
        self.record = record


class CredentialRefreshError(BenchmarkError):
    """Fetching a fresh bearer credential failed."""


class CredentialCacheStateError(BenchmarkError, RuntimeError):
    """The credential cache was used before, or initialised more than once."""
