"""
Thin HTTP client shared by the REST-based connectors.

Wraps a ``requests.Session`` bound to one base URL.  Transport failures
(timeouts, refused connections, DNS errors) and unexpected status codes
are both translated into :class:`~psnbench.exceptions.ConnectorError`,
so connectors and the work provider only ever deal with one exception
type.  Status codes a caller explicitly tolerates are returned as-is.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from typing import Any
from urllib.parse import urljoin

import requests

from psnbench.exceptions import ConnectorError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class HttpClient:
    """
    Session-backed client for one service.

    Args:
        base_url: Root URL of the service.
        timeout: Seconds to wait for a response.
        session: Session to use; a new ``requests.Session`` by default.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    def url(self, path: str) -> str:
        return urljoin(self.base_url, path.lstrip("/"))

    def request(
        self,
        method: str,
        path: str,
        *,
        tolerate: Collection[int] = (),
        **kwargs: Any,
    ) -> requests.Response:
        """
        Send a request and return the response.

        Args:
            method: HTTP verb.
            path: Path relative to the base URL.
            tolerate: Error status codes that are returned instead of
                raised (e.g. ``404`` for an already-deleted record).
            **kwargs: Passed through to ``requests.Session.request``.

        Returns:
            The response, whose status is 2xx/3xx or in *tolerate*.

        Raises:
            ConnectorError: On transport failures and other error statuses.
        """
        url = self.url(path)
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.Timeout as exc:
            raise ConnectorError(f"{method} {url} timed out") from exc
        except requests.RequestException as exc:
            raise ConnectorError(f"{method} {url} failed: {exc}") from exc

        if response.status_code >= 400 and response.status_code not in tolerate:
            raise ConnectorError(
                f"{method} {url} returned {response.status_code}: {_excerpt(response)}",
                status_code=response.status_code,
            )
        logger.debug("%s %s -> %s", method, url, response.status_code)
        return response

    def close(self) -> None:
        self.session.close()


def json_body(response: requests.Response) -> Any:
    """
    Return the decoded JSON body.

    Raises:
        ConnectorError: If the body is not valid JSON.
    """
    try:
        return response.json()
    except ValueError as exc:
        raise ConnectorError(
            f"Expected JSON from {response.url}, got: {_excerpt(response)}",
            status_code=response.status_code,
        ) from exc


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}", "Accept": "application/json"}


def _excerpt(response: requests.Response, limit: int = 200) -> str:
    text = getattr(response, "text", "") or ""
    return text[:limit]
