"""
TrustDeck connector.

TrustDeck is the successor of ACE and keeps its domain model: one
benchmark domain, pseudonyms addressed by ``(identifier, idType)``,
bearer tokens from Keycloak.  Only resource paths and defaults differ,
plus its error policy: the service answers with a status code for every
rejected request, and those are logged and skipped rather than failing
the calling worker.  Transport failures (no status code) still raise.
"""

from __future__ import annotations

import logging

from psnbench.connectors.ace import ACEConnector, ACEConnectorFactory
from psnbench.connectors.base import RecordRef
from psnbench.exceptions import ConnectorError

logger = logging.getLogger(__name__)

API_ROOT = "api"
DOMAIN_PATH = f"{API_ROOT}/domains"
DOMAIN_ROLES_PATH = f"{API_ROOT}/db-maintenance/domains/{{domain}}/rights-and-roles"
PSEUDONYM_PATH = f"{API_ROOT}/domains/{{domain}}/pseudonyms"
CLEAR_TABLES_PATH = f"{API_ROOT}/db-maintenance/tables"
STORAGE_PATH = f"{API_ROOT}/db-maintenance/storage/{{identifier}}"
PING_PATH = f"{API_ROOT}/ping"


class TrustDeckConnector(ACEConnector):
    DOMAIN_PREFIX = "PA-"
    ID_TYPE = "TestType"

    def _call(self, method: str, path: str, *, tolerate=(), **kwargs):
        try:
            return super()._call(method, path, tolerate=tolerate, **kwargs)
        except ConnectorError as exc:
            if exc.status_code is None:
                raise
            logger.info("%s %s rejected with status %s", method, path, exc.status_code)
            return None

    def _pseudonym_path(self) -> str:
        return PSEUDONYM_PATH.format(domain=self.domain_name)

    def _identifier(self, id_string: str) -> dict[str, str]:
        return {"identifier": id_string, "idType": self.ID_TYPE}

    def clear_tables(self) -> None:
        self._call("DELETE", CLEAR_TABLES_PATH)

    def delete_roles(self) -> None:
        self._call("DELETE", DOMAIN_ROLES_PATH.format(domain=self.domain_name))

    def create_domain(self) -> None:
        self._call("POST", DOMAIN_PATH, json=self.domain_body())

    def create(self) -> RecordRef:
        ref = RecordRef(self.ID_TYPE, self._new_identifier())
        self._call("POST", self._pseudonym_path(), json=self._identifier(ref.id_string))
        return ref

    def update(self, ref: RecordRef) -> None:
        self._call(
            "PUT",
            self._pseudonym_path(),
            params=self._identifier(ref.id_string),
            json={
                "identifierItem": self._identifier(ref.id_string),
                "validFrom": self.PSEUDONYM_VALID_FROM,
            },
            tolerate=(404,),
        )

    def ping(self) -> int:
        response = self._call("GET", PING_PATH, tolerate=(404,))
        return response.status_code if response is not None else 0

    def storage_consumption(self) -> str:
        response = self._call("GET", STORAGE_PATH.format(identifier=self.storage_identifier))
        return response.text if response is not None else ""


class TrustDeckConnectorFactory(ACEConnectorFactory):
    connector_class = TrustDeckConnector
    section = "trustdeck"
