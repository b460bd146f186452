"""
Mainzelliste connector.

Mainzelliste authorises every patient operation with a short-lived
*token* created inside a server-side *session*: the connector opens a
session with the API key once, then for each operation asks the session
for a token of the matching type and presents that token's id on the
actual request.

Operation mapping:

- create -> ``addPatient`` token, ``POST /patients?tokenId=...``
- read   -> ``readPatients`` token, ``GET /patients?tokenId=...``
- update -> ``editPatient`` token, ``PUT /patients/tokenId/{id}``
- delete -> ``deletePatient`` token, ``DELETE /patients/{id}/{idType}/{idString}``
- ping   -> ``GET /`` (version banner)

Sessions expire on the server.  When token creation answers ``404`` the
session is gone, so a new one is opened and the token requested again.
Records are never removed from the benchmark pool, so a patient that was
already deleted (``400``/``404``) is skipped on read, update and delete.

Patient identifying data is generated with Faker so the record linkage
on the server sees realistic, distinct inputs.
"""

from __future__ import annotations

import logging
import time

from faker import Faker

from psnbench.connectors.base import Connector, ConnectorFactory, RecordRef
from psnbench.connectors.http import DEFAULT_TIMEOUT_SECONDS, HttpClient, json_body
from psnbench.exceptions import ConfigurationError, ConnectorError

logger = logging.getLogger(__name__)

API_KEY_HEADER = "mainzellisteApiKey"
RESULT_FIELDS = ["vorname", "nachname", "geburtstag", "geburtsmonat", "geburtsjahr"]
EDITED_FIELD = "ort"

# Statuses Mainzelliste answers for an ID that no longer exists.
MISSING_RECORD_STATUSES = (400, 404)


class MainzellisteConnector(Connector):
    """
    Connector for one Mainzelliste session.

    Args:
        client: HTTP client bound to the Mainzelliste base URL.
        api_key: API key authorising session creation.
        settle_seconds: Pause taken by :meth:`prepare`.
        faker: Source of patient data; a German-locale Faker by default.
    """

    def __init__(
        self,
        client: HttpClient,
        api_key: str,
        settle_seconds: float = 0.0,
        faker: Faker | None = None,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.settle_seconds = settle_seconds
        self.faker = faker or Faker("de_DE")
        self.session_id: str | None = None

    # ---- session and tokens --------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {API_KEY_HEADER: self.api_key, "Accept": "application/json"}

    def open_session(self) -> str:
        response = self.client.request("POST", "sessions", headers=self._headers())
        body = json_body(response)
        session_id = body.get("sessionId") if isinstance(body, dict) else None
        if not session_id:
            raise ConnectorError("Session response missing sessionId")
        self.session_id = session_id
        logger.debug("Mainzelliste session %s opened", session_id)
        return session_id

    def _token(self, token_type: str, data: dict) -> str:
        if self.session_id is None:
            self.open_session()

        payload = {"type": token_type, "data": data}
        response = self.client.request(
            "POST",
            f"sessions/{self.session_id}/tokens",
            json=payload,
            headers=self._headers(),
            tolerate=(404,),
        )
        if response.status_code == 404:
            logger.info("Mainzelliste session %s expired; opening a new one", self.session_id)
            self.open_session()
            response = self.client.request(
                "POST",
                f"sessions/{self.session_id}/tokens",
                json=payload,
                headers=self._headers(),
            )

        body = json_body(response)
        token_id = body.get("id") if isinstance(body, dict) else None
        if not token_id:
            raise ConnectorError(f"{token_type} token response missing id")
        return token_id

    def _patient_fields(self) -> dict[str, str]:
        birthday = self.faker.date_of_birth(minimum_age=1, maximum_age=99)
        return {
            "vorname": self.faker.first_name(),
            "nachname": self.faker.last_name(),
            "geburtstag": f"{birthday.day:02d}",
            "geburtsmonat": f"{birthday.month:02d}",
            "geburtsjahr": str(birthday.year),
        }

    @staticmethod
    def _patient_id(ref: RecordRef) -> dict[str, str]:
        return {"idType": ref.id_type, "idString": ref.id_string}

    # ---- Connector -----------------------------------------------------

    def prepare(self) -> None:
        # Mainzelliste has no purge endpoint; sessions are the only state.
        self.open_session()
        if self.settle_seconds:
            time.sleep(self.settle_seconds)

    def create(self) -> RecordRef:
        token_id = self._token("addPatient", {})
        form = {**self._patient_fields(), "sureness": "true"}
        response = self.client.request(
            "POST",
            "patients",
            params={"tokenId": token_id},
            data=form,
            headers={"Accept": "application/json"},
        )
        body = json_body(response)
        first = body[0] if isinstance(body, list) and body else body
        if not isinstance(first, dict) or not first.get("idType") or not first.get("idString"):
            raise ConnectorError("addPatient response missing idType/idString")
        return RecordRef(first["idType"], first["idString"])

    def _tolerate_missing(self, operation, ref: RecordRef) -> None:
        try:
            operation(ref)
        except ConnectorError as exc:
            if exc.status_code not in MISSING_RECORD_STATUSES:
                raise
            logger.debug("Patient %s no longer exists: %s", ref, exc)

    def read(self, ref: RecordRef) -> None:
        self._tolerate_missing(self._read, ref)

    def update(self, ref: RecordRef) -> None:
        self._tolerate_missing(self._update, ref)

    def delete(self, ref: RecordRef) -> None:
        self._tolerate_missing(self._delete, ref)

    def _read(self, ref: RecordRef) -> None:
        token_id = self._token(
            "readPatients",
            {"searchIds": [self._patient_id(ref)], "resultFields": RESULT_FIELDS},
        )
        self.client.request(
            "GET",
            "patients",
            params={"tokenId": token_id},
            headers={"Accept": "application/json"},
        )

    def _update(self, ref: RecordRef) -> None:
        token_id = self._token(
            "editPatient", {"patientId": self._patient_id(ref), "fields": [EDITED_FIELD]}
        )
        self.client.request(
            "PUT",
            f"patients/tokenId/{token_id}",
            json={EDITED_FIELD: self.faker.city()},
        )

    def _delete(self, ref: RecordRef) -> None:
        token_id = self._token("deletePatient", {"patientId": self._patient_id(ref)})
        self.client.request(
            "DELETE",
            f"patients/{token_id}/{ref.id_type}/{ref.id_string}",
            tolerate=(404,),
        )

    def ping(self) -> int:
        return self.client.request("GET", "", headers={"Accept": "application/json"}).status_code

    def close(self) -> None:
        if self.session_id is not None:
            try:
                self.client.request(
                    "DELETE", f"sessions/{self.session_id}", headers=self._headers(), tolerate=(404,)
                )
            except ConnectorError as exc:
                logger.debug("Closing Mainzelliste session failed: %s", exc)
            self.session_id = None
        self.client.close()


class MainzellisteConnectorFactory(ConnectorFactory):
    """
    Builds one :class:`MainzellisteConnector` (and session) per worker.

    Args:
        uri: Mainzelliste base URL.
        api_key: API key with session rights.
        timeout: HTTP timeout in seconds.
        settle_seconds: Pause taken after preparing.
    """

    def __init__(
        self,
        uri: str,
        api_key: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        settle_seconds: float = 0.0,
    ) -> None:
        self.uri = uri
        self.api_key = api_key
        self.timeout = timeout
        self.settle_seconds = settle_seconds

    @classmethod
    def from_options(cls, options: dict, settings) -> MainzellisteConnectorFactory:
        if not options.get("uri") or not options.get("apiKey"):
            raise ConfigurationError("mainzelliste section requires uri and apiKey")
        return cls(
            uri=options["uri"],
            api_key=options["apiKey"],
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            settle_seconds=settings.PREPARE_SETTLE_SECONDS,
        )

    def create(self) -> MainzellisteConnector:
        connector = MainzellisteConnector(
            HttpClient(self.uri, timeout=self.timeout),
            self.api_key,
            settle_seconds=self.settle_seconds,
        )
        connector.open_session()
        return connector
