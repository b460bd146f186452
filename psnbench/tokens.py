"""
Bearer credential cache with single-flight refresh.

Backends protected by an identity provider need a valid access token on
every request.  Many worker threads ask for it at once, but only one of
them should ever talk to the identity provider when the token goes stale.

The cache holds an immutable :class:`CachedCredential` behind a single
reference.  Readers take that reference without locking; only a stale or
missing credential sends a caller into the refresh lock, where validity
is checked a second time so that threads queued behind a successful
refresh reuse its result instead of issuing a second request.

State machine::

    UNINITIALISED --initialize()--> READY (no credential)
    READY/STALE --get_token()--> REFRESHING --ok--> VALID
                                           --error--> STALE (previous value kept)
    VALID --time passes expiry - margin--> STALE

Key Concepts:
- Double-checked locking around the refresh call
- Immutable credential snapshot swapped atomically
- Failures surface to every caller waiting on the failed refresh, while
  later callers retry
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from psnbench.exceptions import CredentialCacheStateError, CredentialRefreshError

logger = logging.getLogger(__name__)

# A token source returns the access token and its lifetime in seconds as
# reported by the issuing server.
TokenSource = Callable[[], tuple[str, int]]

DEFAULT_SAFETY_MARGIN_SECONDS = 10


def epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CachedCredential:
    """An access token and the epoch millisecond at which it goes stale."""

    token: str
    expires_at_ms: int

    def is_valid(self, now_ms: int) -> bool:
        return now_ms < self.expires_at_ms


class CredentialCache:
    """
    Thread-safe, lazily refreshed holder of one bearer credential.

    One instance is created per run and handed to every connector that
    needs it.  :meth:`initialize` binds the token source exactly once.

    Args:
        safety_margin_seconds: Seconds subtracted from the server-reported
            lifetime so tokens are replaced before the server rejects them.
        clock: Epoch-millisecond clock; injectable for tests.
    """

    def __init__(
        self,
        safety_margin_seconds: int = DEFAULT_SAFETY_MARGIN_SECONDS,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self.safety_margin_seconds = safety_margin_seconds
        self._clock = clock
        self._source: TokenSource | None = None
        self._credential: CachedCredential | None = None
        self._init_lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._attempts = 0
        self._completed = 0
        self._last_failure: tuple[int, Exception] | None = None

    def initialize(self, source: TokenSource) -> None:
        """
        Bind the token source.

        Raises:
            CredentialCacheStateError: If the cache was already initialised.
        """
        with self._init_lock:
            if self._source is not None:
                raise CredentialCacheStateError("Credential cache is already initialized")
            self._source = source

    @property
    def initialized(self) -> bool:
        return self._source is not None

    @property
    def credential(self) -> CachedCredential | None:
        return self._credential

    @property
    def refresh_count(self) -> int:
        """Number of refresh attempts made so far, failed ones included."""
        return self._attempts

    def get_token(self) -> str:
        """
        Return a currently valid access token, refreshing it if needed.

        Raises:
            CredentialCacheStateError: If :meth:`initialize` was not called.
            CredentialRefreshError: If the refresh this caller performed or
                waited on failed.
        """
        if self._source is None:
            raise CredentialCacheStateError("Credential cache is not initialized")

        credential = self._credential
        if credential is not None and credential.is_valid(self._clock()):
            return credential.token

        # Refreshes finished before this caller queued; a failure recorded
        # after that point is the one this caller waited on.
        completed_seen = self._completed
        with self._refresh_lock:
            credential = self._credential
            if credential is not None and credential.is_valid(self._clock()):
                return credential.token

            failure = self._last_failure
            if failure is not None and failure[0] > completed_seen:
                raise CredentialRefreshError(
                    f"Failed to refresh the token: {failure[1]}"
                ) from failure[1]

            return self._refresh()

    def _refresh(self) -> str:
        # Caller holds the refresh lock.
        self._attempts += 1
        attempt = self._attempts
        try:
            token, expires_in = self._source()
        except Exception as exc:
            self._completed += 1
            self._last_failure = (self._completed, exc)
            logger.error("Credential refresh #%d failed: %s", attempt, exc)
            raise CredentialRefreshError(f"Failed to refresh the token: {exc}") from exc

        self._completed += 1
        lifetime_ms = max(int(expires_in) - self.safety_margin_seconds, 0) * 1000
        self._credential = CachedCredential(token, self._clock() + lifetime_ms)
        self._last_failure = None
        logger.debug("Credential refreshed (attempt %d, valid for %d ms)", attempt, lifetime_ms)
        return token
