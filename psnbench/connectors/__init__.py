"""
Backend connectors and the registry that selects one by name.

The scenario file names its backend (``benchmark.backend``) and carries a
section of the same name with that backend's options.  :func:`create_factory`
turns the pair into a :class:`ConnectorFactory`; nothing else in the
driver knows which backend is under test.
"""

from __future__ import annotations

from collections.abc import Callable

from psnbench.connectors.ace import ACEConnector, ACEConnectorFactory
from psnbench.connectors.base import Connector, ConnectorFactory, RecordRef
from psnbench.connectors.mainzelliste import MainzellisteConnector, MainzellisteConnectorFactory
from psnbench.connectors.memory import InMemoryBackend, InMemoryConnector, InMemoryConnectorFactory
from psnbench.connectors.trustdeck import TrustDeckConnector, TrustDeckConnectorFactory
from psnbench.exceptions import ConfigurationError
from psnbench.settings import Config
from psnbench.tokens import CredentialCache

FactoryBuilder = Callable[[dict, type[Config], CredentialCache], ConnectorFactory]


def _memory(options: dict, settings: type[Config], credentials: CredentialCache) -> ConnectorFactory:
    latency_ms = options.get("latencyMs", 0)
    if not isinstance(latency_ms, (int, float)) or isinstance(latency_ms, bool) or latency_ms < 0:
        raise ConfigurationError("memory.latencyMs must be a non-negative number")
    return InMemoryConnectorFactory(InMemoryBackend(latency_seconds=latency_ms / 1000.0))


def _mainzelliste(
    options: dict, settings: type[Config], credentials: CredentialCache
) -> ConnectorFactory:
    return MainzellisteConnectorFactory.from_options(options, settings)


def _ace(options: dict, settings: type[Config], credentials: CredentialCache) -> ConnectorFactory:
    return ACEConnectorFactory.from_options(options, settings, credentials)


def _trustdeck(
    options: dict, settings: type[Config], credentials: CredentialCache
) -> ConnectorFactory:
    return TrustDeckConnectorFactory.from_options(options, settings, credentials)


BACKENDS: dict[str, FactoryBuilder] = {
    "memory": _memory,
    "mainzelliste": _mainzelliste,
    "ace": _ace,
    "trustdeck": _trustdeck,
}


def create_factory(
    backend: str,
    options: dict | None,
    *,
    settings: type[Config],
    credentials: CredentialCache | None = None,
) -> ConnectorFactory:
    """
    Build the connector factory for a named backend.

    Args:
        backend: Registry key, e.g. ``"ace"``.
        options: The backend's section from the scenario file.
        settings: Runtime settings (timeouts, settle pause).
        credentials: Credential cache to share; a new one by default.

    Raises:
        ConfigurationError: Unknown backend or invalid options.
    """
    try:
        builder = BACKENDS[backend]
    except KeyError:
        raise ConfigurationError(
            f"Unknown backend {backend!r}; expected one of {', '.join(sorted(BACKENDS))}"
        ) from None
    if credentials is None:
        credentials = CredentialCache(settings.TOKEN_SAFETY_MARGIN_SECONDS)
    return builder(dict(options or {}), settings, credentials)


__all__ = [
    "ACEConnector",
    "ACEConnectorFactory",
    "BACKENDS",
    "Connector",
    "ConnectorFactory",
    "InMemoryBackend",
    "InMemoryConnector",
    "InMemoryConnectorFactory",
    "MainzellisteConnector",
    "MainzellisteConnectorFactory",
    "RecordRef",
    "TrustDeckConnector",
    "TrustDeckConnectorFactory",
    "create_factory",
]
