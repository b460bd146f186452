"""
Keycloak access tokens for the ACE and TrustDeck connectors.

:class:`KeycloakTokenSource` is the token source bound into a
:class:`~psnbench.tokens.CredentialCache`.  It performs the OpenID
Connect *password* grant against the realm's token endpoint, and on
later calls tries the *refresh_token* grant first, falling back to a new
password grant when Keycloak no longer accepts the refresh token.

The token lifetime normally comes from the ``expires_in`` field of the
token response.  If a server omits it, the ``exp`` claim of the access
token itself is used; the token is decoded without signature
verification because the driver only needs to know when to ask again,
not whether to trust the token.

Key Concepts:
- OpenID Connect token endpoint (password and refresh grants)
- Reading JWT claims with PyJWT without verifying the signature
- Only ever called under the credential cache's refresh lock, so the
  held refresh token needs no locking of its own
"""

from __future__ import annotations

import logging
import time

import jwt

from psnbench.connectors.http import DEFAULT_TIMEOUT_SECONDS, HttpClient, json_body
from psnbench.exceptions import ConfigurationError, ConnectorError

logger = logging.getLogger(__name__)

TOKEN_PATH = "realms/{realm}/protocol/openid-connect/token"

REQUIRED_OPTIONS = (
    "keycloakAuthUri",
    "keycloakRealmName",
    "clientId",
    "clientSecret",
    "username",
    "password",
)


def seconds_until_expiry(token: str, now: float | None = None) -> int:
    """
    Lifetime left on a JWT according to its ``exp`` claim.

    Raises:
        ConnectorError: If the token cannot be decoded or has no ``exp``.
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as exc:
        raise ConnectorError(f"Access token is not a readable JWT: {exc}") from exc

    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise ConnectorError("Access token carries no exp claim")
    now = time.time() if now is None else now
    return max(int(exp - now), 0)


class KeycloakTokenSource:
    """
    Fetches access tokens for one Keycloak client and user.

    Args:
        auth_uri: Keycloak base URL (e.g. ``https://kc.example.org/auth``).
        realm: Realm name.
        client_id: Confidential client representing the service.
        client_secret: Secret of that client.
        username: Benchmark user.
        password: Password of the benchmark user.
        timeout: HTTP timeout in seconds.
        client: Pre-built :class:`HttpClient` (tests inject fakes here).
    """

    def __init__(
        self,
        auth_uri: str,
        realm: str,
        client_id: str,
        client_secret: str,
        username: str,
        password: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: HttpClient | None = None,
    ) -> None:
        self.client = client or HttpClient(auth_uri, timeout=timeout)
        self.token_path = TOKEN_PATH.format(realm=realm)
        self.client_id = client_id
        self.client_secret = client_secret
        self.username = username
        self.password = password
        self._refresh_token: str | None = None

    @classmethod
    def from_options(cls, options: dict, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> KeycloakTokenSource:
        missing = [key for key in REQUIRED_OPTIONS if not options.get(key)]
        if missing:
            raise ConfigurationError(
                f"Missing Keycloak authentication parameters: {', '.join(missing)}"
            )
        return cls(
            auth_uri=options["keycloakAuthUri"],
            realm=options["keycloakRealmName"],
            client_id=options["clientId"],
            client_secret=options["clientSecret"],
            username=options["username"],
            password=options["password"],
            timeout=timeout,
        )

    def __call__(self) -> tuple[str, int]:
        """Return ``(access_token, expires_in_seconds)``."""
        if self._refresh_token:
            try:
                return self._grant(
                    {"grant_type": "refresh_token", "refresh_token": self._refresh_token}
                )
            except ConnectorError as exc:
                logger.info("Refresh token rejected (%s); requesting a new token", exc)
                self._refresh_token = None

        return self._grant(
            {"grant_type": "password", "username": self.username, "password": self.password}
        )

    def _grant(self, form: dict[str, str]) -> tuple[str, int]:
        form = {**form, "client_id": self.client_id, "client_secret": self.client_secret}
        response = self.client.request("POST", self.token_path, data=form)
        body = json_body(response)

        token = body.get("access_token") if isinstance(body, dict) else None
        if not isinstance(token, str) or not token:
            raise ConnectorError("Token response missing access_token")

        expires_in = body.get("expires_in")
        if not isinstance(expires_in, int) or isinstance(expires_in, bool):
            expires_in = seconds_until_expiry(token)

        self._refresh_token = body.get("refresh_token") or None
        logger.debug("Obtained %s token valid for %d s", form["grant_type"], expires_in)
        return token, expires_in
