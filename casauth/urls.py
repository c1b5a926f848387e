"""Building and cleaning the URLs used by the CAS protocol."""

from __future__ import annotations

import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

_CAS_PARAMETERS = frozenset({"gateway", "renew", "service", "ticket"})


def _join_paths(*elements: str) -> str:
    """Join path elements with slashes and clean the result lexically."""
    joined = "/".join(element for element in elements if element)
    if not joined:
        return ""
    cleaned = posixpath.normpath(joined)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def sanitised_url(url: str) -> str:
    """Return the URL without CAS specific query parameters.

    Remaining parameters are re-encoded in key order.
    """
    parts = urlsplit(url)
    grouped: dict[str, list[str]] = {}
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if key not in _CAS_PARAMETERS:
            grouped.setdefault(key, []).append(value)
    query = urlencode([(key, value) for key in sorted(grouped) for value in grouped[key]])
    return urlunsplit(parts._replace(query=query))


def join_url(base: str, path: str) -> str:
    """Append a path to the path of a base URL, dropping its query and fragment."""
    joined = _join_paths(urlsplit(base).path, path)
    return urljoin(base, joined)


class URLScheme(ABC):
    """Creates the URLs required to speak the CAS protocol."""

    @abstractmethod
    def login(self) -> str:
        """URL of the login page."""

    @abstractmethod
    def logout(self) -> str:
        """URL of the logout page."""

    @abstractmethod
    def validate(self) -> str:
        """URL of the CAS 1 validation endpoint."""

    @abstractmethod
    def service_validate(self) -> str:
        """URL of the service validation endpoint."""

    @abstractmethod
    def rest_granting_ticket(self) -> str:
        """URL for requesting a ticket granting ticket through the REST API."""

    @abstractmethod
    def rest_service_ticket(self, tgt: str) -> str:
        """URL for requesting a service ticket through the REST API."""

    @abstractmethod
    def rest_logout(self, tgt: str) -> str:
        """URL for destroying a ticket granting ticket through the REST API."""


@dataclass
class DefaultURLScheme(URLScheme):
    """A configurable URL scheme; the defaults are the standard CAS paths."""

    base: str
    login_path: str = "login"
    logout_path: str = "logout"
    validate_path: str = "validate"
    service_validate_path: str = "serviceValidate"
    rest_endpoint: str = "v1/tickets"

    def login(self) -> str:
        return join_url(self.base, self.login_path)

    def logout(self) -> str:
        return join_url(self.base, self.logout_path)

    def validate(self) -> str:
        return join_url(self.base, self.validate_path)

    def service_validate(self) -> str:
        return join_url(self.base, self.service_validate_path)

    def rest_granting_ticket(self) -> str:
        return join_url(self.base, self.rest_endpoint)

    def rest_service_ticket(self, tgt: str) -> str:
        return join_url(self.base, _join_paths(self.rest_endpoint, tgt))

    def rest_logout(self, tgt: str) -> str:
        return join_url(self.base, _join_paths(self.rest_endpoint, tgt))