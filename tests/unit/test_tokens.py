"""
Unit tests for the credential cache.

Key SDET Concepts Demonstrated:
- Fake token sources counting how often they are called
- Barriers to release many threads at the same instant
- Manual clocks to cross expiry boundaries without sleeping
"""

from __future__ import annotations

import threading
import time

import pytest

from psnbench.exceptions import CredentialCacheStateError, CredentialRefreshError
from psnbench.tokens import CachedCredential, CredentialCache


pytestmark = pytest.mark.unit


class _CountingSource:
    """Token source issuing ``token-1``, ``token-2``... with a fixed lifetime."""

    def __init__(self, lifetime_seconds: int = 300, delay: float = 0.0):
        self.lifetime_seconds = lifetime_seconds
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
            number = self.calls
        if self.delay:
            time.sleep(self.delay)
        return f"token-{number}", self.lifetime_seconds


class _FailingSource:
    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1
        raise ConnectionError("identity provider unreachable")


def test_cached_credential_validity_is_exclusive_of_expiry():
    credential = CachedCredential("t", expires_at_ms=5_000)

    assert credential.is_valid(4_999)
    assert not credential.is_valid(5_000)


def test_get_token_before_initialize_is_a_state_error():
    cache = CredentialCache()

    with pytest.raises(CredentialCacheStateError):
        cache.get_token()


def test_initialize_twice_is_a_state_error():
    cache = CredentialCache()
    cache.initialize(_CountingSource())

    with pytest.raises(CredentialCacheStateError):
        cache.initialize(_CountingSource())


def test_first_call_fetches_and_later_calls_reuse(clock):
    # Arrange
    source = _CountingSource(lifetime_seconds=60)
    cache = CredentialCache(safety_margin_seconds=10, clock=clock)
    cache.initialize(source)

    # Act
    first = cache.get_token()
    clock.advance(49_000)
    second = cache.get_token()

    # Assert
    assert first == second == "token-1"
    assert source.calls == 1
    assert cache.credential.expires_at_ms == 1_000 + 50_000


def test_token_is_refreshed_once_safety_margin_is_reached(clock):
    source = _CountingSource(lifetime_seconds=60)
    cache = CredentialCache(safety_margin_seconds=10, clock=clock)
    cache.initialize(source)
    cache.get_token()

    clock.advance(50_000)

    assert cache.get_token() == "token-2"
    assert source.calls == 2


def test_lifetime_shorter_than_margin_is_refreshed_on_next_call(clock):
    source = _CountingSource(lifetime_seconds=5)
    cache = CredentialCache(safety_margin_seconds=10, clock=clock)
    cache.initialize(source)

    assert cache.get_token() == "token-1"
    assert cache.get_token() == "token-2"


def test_concurrent_callers_share_a_single_refresh():
    # Arrange
    source = _CountingSource(delay=0.05)
    cache = CredentialCache()
    cache.initialize(source)
    callers = 16
    barrier = threading.Barrier(callers)
    tokens = []
    tokens_lock = threading.Lock()

    def call():
        barrier.wait()
        token = cache.get_token()
        with tokens_lock:
            tokens.append(token)

    # Act
    threads = [threading.Thread(target=call) for _ in range(callers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    # Assert
    assert source.calls == 1
    assert tokens == ["token-1"] * callers


def test_concurrent_callers_on_stale_credential_share_a_single_refresh(clock):
    # Arrange - one token issued, then the clock passes its refresh point
    source = _CountingSource(lifetime_seconds=60, delay=0.05)
    cache = CredentialCache(safety_margin_seconds=10, clock=clock)
    cache.initialize(source)
    assert cache.get_token() == "token-1"
    clock.advance(50_000)
    callers = 16
    barrier = threading.Barrier(callers)
    tokens = []
    tokens_lock = threading.Lock()

    def call():
        barrier.wait()
        token = cache.get_token()
        with tokens_lock:
            tokens.append(token)

    # Act
    threads = [threading.Thread(target=call) for _ in range(callers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    # Assert
    assert source.calls == 2
    assert tokens == ["token-2"] * callers


def test_refresh_failure_is_raised_and_chained():
    cache = CredentialCache()
    cache.initialize(_FailingSource())

    with pytest.raises(CredentialRefreshError) as excinfo:
        cache.get_token()

    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert cache.credential is None


def test_failed_refresh_keeps_previous_credential(clock):
    # Arrange
    outcomes = iter([("token-1", 60), ConnectionError("down"), ("token-3", 60)])

    def source():
        outcome = next(outcomes)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    cache = CredentialCache(safety_margin_seconds=10, clock=clock)
    cache.initialize(source)
    cache.get_token()
    clock.advance(60_000)

    # Act / Assert - failure surfaces, previous value stays in place
    with pytest.raises(CredentialRefreshError):
        cache.get_token()
    assert cache.credential.token == "token-1"

    # A later caller tries again and succeeds
    assert cache.get_token() == "token-3"
    assert cache.refresh_count == 3


def test_waiters_on_failed_refresh_all_see_the_failure():
    # Arrange
    release = threading.Event()
    calls = []

    def slow_failing_source():
        calls.append(1)
        release.wait(5)
        raise ConnectionError("identity provider unreachable")

    cache = CredentialCache()
    cache.initialize(slow_failing_source)
    errors = []
    errors_lock = threading.Lock()

    def call():
        try:
            cache.get_token()
        except CredentialRefreshError as exc:
            with errors_lock:
                errors.append(exc)

    leader = threading.Thread(target=call)
    leader.start()
    while not calls:
        time.sleep(0.001)
    waiters = [threading.Thread(target=call) for _ in range(4)]
    for waiter in waiters:
        waiter.start()
    time.sleep(0.05)

    # Act
    release.set()
    leader.join(5)
    for waiter in waiters:
        waiter.join(5)

    # Assert - one attempt, five callers failed
    assert len(calls) == 1
    assert len(errors) == 5
