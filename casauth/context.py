"""Per-request CAS state kept in the WSGI environment."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from casauth.service_response import AuthenticationResponse, UserAttributes

CLIENT_KEY = "casauth.client"
AUTHENTICATION_KEY = "casauth.authentication"

_NO_CLIENT = "cas: redirect to cas failed as no client associated with request"

StartResponse = Callable[..., Any]


def _internal_error(start_response: StartResponse, message: str) -> list[bytes]:
    start_response(
        "500 Internal Server Error",
        [
            ("Content-Type", "text/plain; charset=utf-8"),
            ("X-Content-Type-Options", "nosniff"),
        ],
    )
    return [(message + "\n").encode("utf-8")]


def _authentication(environ: dict) -> AuthenticationResponse | None:
    return environ.get(AUTHENTICATION_KEY)


def redirect_to_login(environ: dict, start_response: StartResponse) -> Iterable[bytes]:
    """Redirect the request to the CAS login page of its client."""
    client = environ.get(CLIENT_KEY)
    if client is None:
        return _internal_error(start_response, _NO_CLIENT)
    return client.redirect_to_login(environ, start_response)


def redirect_to_logout(environ: dict, start_response: StartResponse) -> Iterable[bytes]:
    """Redirect the request to the CAS logout page of its client."""
    client = environ.get(CLIENT_KEY)
    if client is None:
        return _internal_error(start_response, _NO_CLIENT)
    return client.redirect_to_logout(environ, start_response)


def is_authenticated(environ: dict) -> bool:
    """Whether the request has been authenticated with CAS."""
    return _authentication(environ) is not None


def username(environ: dict) -> str:
    """The authenticated user's login name, or an empty string."""
    response = _authentication(environ)
    return response.user if response is not None else ""


def attributes(environ: dict) -> UserAttributes | None:
    """The authenticated user's attributes, or None."""
    response = _authentication(environ)
    return response.attributes if response is not None else None


def authentication_date(environ: dict) -> datetime | None:
    """When authentication was performed; None if the server did not say."""
    response = _authentication(environ)
    return response.authentication_date if response is not None else None


def is_new_login(environ: dict) -> bool:
    """Whether the ticket was granted following a new authentication."""
    response = _authentication(environ)
    return response.is_new_login if response is not None else False


def is_remembered_login(environ: dict) -> bool:
    """Whether the ticket was granted through a long term authentication token."""
    response = _authentication(environ)
    return response.is_remembered_login if response is not None else False


def member_of(environ: dict) -> list[str] | None:
    """The groups the authenticated user belongs to, or None."""
    response = _authentication(environ)
    return response.member_of if response is not None else None