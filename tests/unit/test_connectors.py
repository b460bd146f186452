"""
Unit tests for the backend connectors and the backend registry.

REST connectors are exercised against a routing fake session that
answers by ``(method, path)``; the credential cache is initialised with
a static token source so no identity provider is involved.
"""

from __future__ import annotations

from urllib.parse import urlparse

import pytest
from faker import Faker

from psnbench.connectors import BACKENDS, create_factory
from psnbench.connectors.ace import ACEConnector, ACEConnectorFactory
from psnbench.connectors.base import RecordRef
from psnbench.connectors.http import HttpClient
from psnbench.connectors.mainzelliste import MainzellisteConnector, MainzellisteConnectorFactory
from psnbench.connectors.memory import InMemoryConnectorFactory
from psnbench.connectors.trustdeck import TrustDeckConnector, TrustDeckConnectorFactory
from psnbench.exceptions import ConfigurationError, ConnectorError
from psnbench.tokens import CredentialCache


pytestmark = pytest.mark.unit


class _FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.url = "http://fake/"

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class _RoutingSession:
    """
    Fake session answering from a route table.

    Routes map ``(method, path)`` to a response or to a list of responses
    consumed in order.  Unknown routes answer 500.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.requests = []

    def request(self, method, url, **kwargs):
        path = urlparse(url).path.lstrip("/")
        self.requests.append((method, path, kwargs))
        answer = self.routes.get((method, path), _FakeResponse(500, text="no route"))
        if isinstance(answer, list):
            answer = answer.pop(0)
        return answer

    def close(self):
        pass

    def calls(self, method, path):
        return [req for req in self.requests if req[0] == method and req[1] == path]


def _credentials():
    cache = CredentialCache()
    cache.initialize(lambda: ("bench-token", 300))
    return cache


# =============================================================================
# Mainzelliste
# =============================================================================

class TestMainzellisteConnector:
    def _connector(self, routes):
        session = _RoutingSession(routes)
        connector = MainzellisteConnector(
            HttpClient("http://ml", session=session), "api-key", faker=Faker("de_DE")
        )
        return connector, session

    def test_create_uses_add_patient_token_and_returns_first_id(self):
        # Arrange
        connector, session = self._connector(
            {
                ("POST", "sessions"): _FakeResponse(201, {"sessionId": "s1"}),
                ("POST", "sessions/s1/tokens"): _FakeResponse(201, {"id": "t1"}),
                ("POST", "patients"): _FakeResponse(
                    201, [{"idType": "pid", "idString": "0003Y0WZ"}]
                ),
            }
        )

        # Act
        ref = connector.create()

        # Assert
        assert ref == RecordRef("pid", "0003Y0WZ")
        session_call = session.calls("POST", "sessions")[0]
        assert session_call[2]["headers"]["mainzellisteApiKey"] == "api-key"
        token_call = session.calls("POST", "sessions/s1/tokens")[0]
        assert token_call[2]["json"] == {"type": "addPatient", "data": {}}
        patient_call = session.calls("POST", "patients")[0]
        assert patient_call[2]["params"] == {"tokenId": "t1"}
        form = patient_call[2]["data"]
        assert form["sureness"] == "true"
        assert form["vorname"] and form["nachname"]
        assert 1 <= int(form["geburtstag"]) <= 31
        assert 1 <= int(form["geburtsmonat"]) <= 12

    def test_expired_session_is_renewed_once(self):
        connector, session = self._connector(
            {
                ("POST", "sessions"): [
                    _FakeResponse(201, {"sessionId": "s1"}),
                    _FakeResponse(201, {"sessionId": "s2"}),
                ],
                ("POST", "sessions/s1/tokens"): _FakeResponse(404, text="session gone"),
                ("POST", "sessions/s2/tokens"): _FakeResponse(201, {"id": "t2"}),
                ("GET", "patients"): _FakeResponse(200, []),
            }
        )
        connector.open_session()

        connector.read(RecordRef("pid", "X"))

        assert connector.session_id == "s2"
        assert session.calls("GET", "patients")[0][2]["params"] == {"tokenId": "t2"}
        read_token = session.calls("POST", "sessions/s2/tokens")[0][2]["json"]
        assert read_token["type"] == "readPatients"
        assert read_token["data"]["searchIds"] == [{"idType": "pid", "idString": "X"}]

    def test_update_and_delete_use_their_token_paths(self):
        connector, session = self._connector(
            {
                ("POST", "sessions"): _FakeResponse(201, {"sessionId": "s1"}),
                ("POST", "sessions/s1/tokens"): [
                    _FakeResponse(201, {"id": "edit"}),
                    _FakeResponse(201, {"id": "del"}),
                ],
                ("PUT", "patients/tokenId/edit"): _FakeResponse(204),
                ("DELETE", "patients/del/pid/X"): _FakeResponse(404),
            }
        )
        ref = RecordRef("pid", "X")

        connector.update(ref)
        connector.delete(ref)

        assert "ort" in session.calls("PUT", "patients/tokenId/edit")[0][2]["json"]
        assert len(session.calls("DELETE", "patients/del/pid/X")) == 1

    def test_ping_returns_status_of_base_uri(self):
        connector, _ = self._connector({("GET", ""): _FakeResponse(200, {"version": "1.9"})})

        assert connector.ping() == 200

    def test_missing_session_id_is_an_error(self):
        connector, _ = self._connector({("POST", "sessions"): _FakeResponse(201, {})})

        with pytest.raises(ConnectorError, match="sessionId"):
            connector.open_session()

    def test_factory_requires_uri_and_api_key(self, settings):
        with pytest.raises(ConfigurationError, match="apiKey"):
            MainzellisteConnectorFactory.from_options({"uri": "http://ml"}, settings)


# =============================================================================
# ACE / TrustDeck
# =============================================================================

class TestACEConnector:
    def _connector(self, routes, connector_class=ACEConnector):
        session = _RoutingSession(routes)
        connector = connector_class(
            HttpClient("http://ace", session=session), _credentials(), "bench-domain"
        )
        return connector, session

    def test_requests_carry_bearer_token(self):
        connector, session = self._connector(
            {("POST", "api/pseudonymization/domains/bench-domain/pseudonym"): _FakeResponse(201)}
        )

        ref = connector.create()

        method, path, kwargs = session.requests[0]
        assert kwargs["headers"]["Authorization"] == "Bearer bench-token"
        assert kwargs["params"] == {"id": ref.id_string, "idType": "ID"}
        assert ref.id_type == "ID"

    @pytest.mark.parametrize("operation", ["read", "update", "delete"])
    def test_missing_pseudonym_is_tolerated(self, operation):
        path = "api/pseudonymization/domains/bench-domain/pseudonym"
        method = {"read": "GET", "update": "PUT", "delete": "DELETE"}[operation]
        connector, _ = self._connector({(method, path): _FakeResponse(404)})

        getattr(connector, operation)(RecordRef("ID", "abc"))

    def test_server_error_is_raised(self):
        connector, _ = self._connector({})

        with pytest.raises(ConnectorError) as excinfo:
            connector.read(RecordRef("ID", "abc"))

        assert excinfo.value.status_code == 500

    def test_prepare_ignores_purge_errors_but_creates_domain(self):
        # Arrange - clearing and role removal fail (no route), domain creation works
        connector, session = self._connector(
            {("POST", "api/pseudonymization/domain"): _FakeResponse(201)}
        )

        # Act
        connector.prepare()

        # Assert
        body = session.calls("POST", "api/pseudonymization/domain")[0][2]["json"]
        assert body == {
            "name": "bench-domain",
            "prefix": "TST",
            "validFrom": "2000-01-01T18:00:00",
        }
        assert session.calls("DELETE", "api/pseudonymization/tables")

    def test_prepare_fails_when_domain_cannot_be_created(self):
        connector, _ = self._connector({})

        with pytest.raises(ConnectorError):
            connector.prepare()

    def test_storage_consumption_returns_body_or_empty(self):
        connector, _ = self._connector(
            {("GET", "api/pseudonymization/storage/ace"): _FakeResponse(200, text="42 MB")}
        )
        assert connector.storage_consumption() == "42 MB"

        failing, _ = self._connector({})
        assert failing.storage_consumption() == ""

    def test_trustdeck_logs_rejections_instead_of_raising(self):
        connector, session = self._connector({}, connector_class=TrustDeckConnector)

        ref = connector.create()
        connector.read(ref)
        connector.prepare()

        assert ref.id_type == "TestType"
        assert session.calls("POST", "api/domains")[0][2]["json"]["prefix"] == "PA-"
        assert connector.ping() == 0


class TestACEConnectorFactory:
    OPTIONS = {
        "uri": "http://ace",
        "domainName": "bench",
        "keycloakAuthUri": "http://kc",
        "keycloakRealmName": "realm",
        "clientId": "client",
        "clientSecret": "secret",
        "username": "user",
        "password": "pass",
    }

    def test_factory_initialises_shared_cache_once(self, settings):
        cache = CredentialCache()

        first = ACEConnectorFactory.from_options(self.OPTIONS, settings, cache)
        second = TrustDeckConnectorFactory.from_options(self.OPTIONS, settings, cache)

        assert cache.initialized
        assert first.credentials is second.credentials is cache
        assert isinstance(second.create(), TrustDeckConnector)
        assert first.domain_name == "bench"

    def test_missing_keycloak_options_are_reported(self, settings):
        options = {"uri": "http://ace"}

        with pytest.raises(ConfigurationError, match="Keycloak"):
            ACEConnectorFactory.from_options(options, settings)


# =============================================================================
# Registry
# =============================================================================

def test_registry_lists_all_backends():
    assert set(BACKENDS) == {"memory", "mainzelliste", "ace", "trustdeck"}


def test_create_factory_builds_memory_backend(settings):
    factory = create_factory("memory", {"latencyMs": 5}, settings=settings)

    assert isinstance(factory, InMemoryConnectorFactory)
    assert factory.backend.latency_seconds == 0.005


def test_create_factory_rejects_unknown_backend(settings):
    with pytest.raises(ConfigurationError, match="Unknown backend 'oracle'"):
        create_factory("oracle", {}, settings=settings)


def test_memory_latency_must_be_non_negative(settings):
    with pytest.raises(ConfigurationError, match="latencyMs"):
        create_factory("memory", {"latencyMs": -1}, settings=settings)


def test_mainzelliste_skips_patients_that_no_longer_exist():
    session = _RoutingSession(
        {
            ("POST", "sessions"): _FakeResponse(201, {"sessionId": "s1"}),
            ("POST", "sessions/s1/tokens"): _FakeResponse(400, text="No patient found"),
        }
    )
    connector = MainzellisteConnector(HttpClient("http://ml", session=session), "api-key")

    connector.read(RecordRef("pid", "gone"))
    connector.update(RecordRef("pid", "gone"))

    assert len(session.calls("POST", "sessions/s1/tokens")) == 2
