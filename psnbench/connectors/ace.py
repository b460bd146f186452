"""
ACE pseudonymisation service connector.

ACE keeps pseudonyms in *domains*.  The benchmark works in one dedicated
domain: :meth:`ACEConnector.prepare` wipes the service tables, waits for
the purge to settle, drops the domain's rights and roles and creates the
domain afresh.  Every pseudonym operation is then addressed by
``(id, idType)`` inside that domain.

All requests carry a bearer token from the run-wide
:class:`~psnbench.tokens.CredentialCache`.  The factory binds a
:class:`~psnbench.connectors.keycloak.KeycloakTokenSource` to the cache
the first time it is built, so every connector of every scenario shares a
single Keycloak session.

Key Concepts:
- REST resource paths kept as module constants
- ``404`` tolerated on read/update/delete/ping: the record (or an
  optional endpoint) may already be gone
- Purge failures ignored during prepare, domain creation failures not
"""

from __future__ import annotations

import logging
import time
import uuid

from psnbench.connectors.base import Connector, ConnectorFactory, RecordRef
from psnbench.connectors.http import DEFAULT_TIMEOUT_SECONDS, HttpClient, bearer
from psnbench.connectors.keycloak import KeycloakTokenSource
from psnbench.exceptions import ConfigurationError, ConnectorError
from psnbench.tokens import CredentialCache

logger = logging.getLogger(__name__)

API_ROOT = "api/pseudonymization"
DOMAIN_PATH = f"{API_ROOT}/domain"
DOMAIN_ROLES_PATH = f"{API_ROOT}/domain/{{domain}}/roles"
PSEUDONYM_PATH = f"{API_ROOT}/domains/{{domain}}/pseudonym"
CLEAR_TABLES_PATH = f"{API_ROOT}/tables"
STORAGE_PATH = f"{API_ROOT}/storage/{{identifier}}"
PING_PATH = f"{API_ROOT}/ping"


class ACEConnector(Connector):
    """
    Connector for one ACE client session.

    Args:
        client: HTTP client bound to the service base URL.
        credentials: Shared, initialised credential cache.
        domain_name: Benchmark domain to create and use.
        storage_identifier: Database name passed to the storage endpoint.
        settle_seconds: Pause after purging the tables.
    """

    DOMAIN_PREFIX = "TST"
    ID_TYPE = "ID"
    DOMAIN_VALID_FROM = "2000-01-01T18:00:00"
    PSEUDONYM_VALID_FROM = "2001-01-01T18:00:00"

    def __init__(
        self,
        client: HttpClient,
        credentials: CredentialCache,
        domain_name: str,
        storage_identifier: str = "ace",
        settle_seconds: float = 0.0,
    ) -> None:
        self.client = client
        self.credentials = credentials
        self.domain_name = domain_name
        self.storage_identifier = storage_identifier
        self.settle_seconds = settle_seconds

    def _call(self, method: str, path: str, *, tolerate=(), **kwargs):
        headers = bearer(self.credentials.get_token())
        return self.client.request(method, path, tolerate=tolerate, headers=headers, **kwargs)

    def _pseudonym_path(self) -> str:
        return PSEUDONYM_PATH.format(domain=self.domain_name)

    def _identifier(self, id_string: str) -> dict[str, str]:
        return {"id": id_string, "idType": self.ID_TYPE}

    @staticmethod
    def _new_identifier() -> str:
        return uuid.uuid4().hex

    def domain_body(self) -> dict[str, str]:
        return {
            "name": self.domain_name,
            "prefix": self.DOMAIN_PREFIX,
            "validFrom": self.DOMAIN_VALID_FROM,
        }

    # ---- maintenance ---------------------------------------------------

    def clear_tables(self) -> None:
        self._call("DELETE", CLEAR_TABLES_PATH)

    def delete_roles(self) -> None:
        self._call("DELETE", DOMAIN_ROLES_PATH.format(domain=self.domain_name))

    def create_domain(self) -> None:
        self._call("POST", DOMAIN_PATH, json=self.domain_body())

    def prepare(self) -> None:
        try:
            self.clear_tables()
        except ConnectorError as exc:
            logger.info("Clearing tables failed, continuing: %s", exc)
        if self.settle_seconds:
            time.sleep(self.settle_seconds)
        try:
            self.delete_roles()
        except ConnectorError as exc:
            logger.info("Removing roles of %s failed, continuing: %s", self.domain_name, exc)

        self.create_domain()
        logger.info("Domain %s created", self.domain_name)

    # ---- pseudonyms ----------------------------------------------------

    def create(self) -> RecordRef:
        ref = RecordRef(self.ID_TYPE, self._new_identifier())
        self._call("POST", self._pseudonym_path(), params=self._identifier(ref.id_string))
        return ref

    def read(self, ref: RecordRef) -> None:
        self._call(
            "GET", self._pseudonym_path(), params=self._identifier(ref.id_string), tolerate=(404,)
        )

    def update(self, ref: RecordRef) -> None:
        self._call(
            "PUT",
            self._pseudonym_path(),
            params=self._identifier(ref.id_string),
            json={**self._identifier(ref.id_string), "validFrom": self.PSEUDONYM_VALID_FROM},
            tolerate=(404,),
        )

    def delete(self, ref: RecordRef) -> None:
        self._call(
            "DELETE",
            self._pseudonym_path(),
            params=self._identifier(ref.id_string),
            tolerate=(404,),
        )

    def ping(self) -> int:
        return self._call("GET", PING_PATH, tolerate=(404,)).status_code

    def storage_consumption(self) -> str:
        try:
            response = self._call(
                "GET", STORAGE_PATH.format(identifier=self.storage_identifier)
            )
        except ConnectorError as exc:
            logger.debug("Storage endpoint unavailable: %s", exc)
            return ""
        return response.text

    def close(self) -> None:
        self.client.close()


class ACEConnectorFactory(ConnectorFactory):
    """
    Builds :class:`ACEConnector` instances sharing one credential cache.

    Args:
        uri: Service base URL.
        domain_name: Benchmark domain.
        credentials: Run-wide credential cache, initialised by
            :meth:`from_options` when it is not already.
        timeout: HTTP timeout in seconds.
        settle_seconds: Pause after purging tables in ``prepare``.
        storage_identifier: Database name for storage reporting.
    """

    connector_class: type[ACEConnector] = ACEConnector
    section = "ace"

    def __init__(
        self,
        uri: str,
        domain_name: str,
        credentials: CredentialCache,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        settle_seconds: float = 0.0,
        storage_identifier: str = "ace",
    ) -> None:
        self.uri = uri
        self.domain_name = domain_name
        self.credentials = credentials
        self.timeout = timeout
        self.settle_seconds = settle_seconds
        self.storage_identifier = storage_identifier

    @classmethod
    def from_options(
        cls, options: dict, settings, credentials: CredentialCache | None = None
    ) -> ACEConnectorFactory:
        if not options.get("uri"):
            raise ConfigurationError(f"{cls.section} section requires uri")
        if credentials is None:
            credentials = CredentialCache(settings.TOKEN_SAFETY_MARGIN_SECONDS)
        if not credentials.initialized:
            credentials.initialize(
                KeycloakTokenSource.from_options(options, timeout=settings.HTTP_TIMEOUT_SECONDS)
            )
        return cls(
            uri=options["uri"],
            domain_name=options.get("domainName") or "psnbench",
            credentials=credentials,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            settle_seconds=settings.PREPARE_SETTLE_SECONDS,
            storage_identifier=options.get("storageIdentifier") or cls.section,
        )

    def create(self) -> ACEConnector:
        return self.connector_class(
            HttpClient(self.uri, timeout=self.timeout),
            self.credentials,
            self.domain_name,
            storage_identifier=self.storage_identifier,
            settle_seconds=self.settle_seconds,
        )
