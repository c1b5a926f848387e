"""The CAS client and the WSGI middleware that protects applications with it."""

from __future__ import annotations

import html
import io
import logging
import secrets
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from operator import itemgetter
from typing import Any
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import requests
from werkzeug.http import dump_cookie, parse_cookie

from casauth.context import AUTHENTICATION_KEY, CLIENT_KEY, is_authenticated
from casauth.logout_request import parse_logout_request
from casauth.service_response import AuthenticationError
from casauth.stores import (
    InvalidTicketError,
    MemorySessionStore,
    MemoryStore,
    SessionStore,
    TicketStore,
)
from casauth.urls import DefaultURLScheme, URLScheme, sanitised_url
from casauth.validate import ServiceTicketValidator, ValidationError

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "_cas_session"

_SESSION_KEY = "casauth.session_id"
_COOKIES_KEY = "casauth.set_cookies"
_FORM_KEY = "casauth.form"

_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
_SESSION_ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
_PATH_SAFE = "/:@!$&'()*+,;=~-._"

_VALIDATION_ERRORS = (
    requests.RequestException,
    ValidationError,
    AuthenticationError,
    ValueError,
)

StartResponse = Callable[..., Any]
WSGIApp = Callable[[dict, StartResponse], Iterable[bytes]]


@dataclass
class CookieOptions:
    """Attributes given to the session cookie."""

    path: str | None = None
    domain: str | None = None
    max_age: int = 86400
    http_only: bool = False
    secure: bool = False
    same_site: str | None = None


@dataclass
class Options:
    """Client configuration; unset stores, scheme and session get defaults."""

    url: str
    store: TicketStore | None = None
    session: requests.Session | None = None
    send_service: bool = False
    url_scheme: URLScheme | None = None
    cookie: CookieOptions | None = None
    session_store: SessionStore | None = None


def _server_host(environ: dict) -> str:
    name = environ.get("SERVER_NAME", "")
    port = str(environ.get("SERVER_PORT", ""))
    default = "443" if environ.get("wsgi.url_scheme") == "https" else "80"
    return f"{name}:{port}" if port and port != default else name


def request_url(environ: dict) -> str:
    """The absolute URL of a request, honouring X-Forwarded-Host and -Proto."""
    host = (
        environ.get("HTTP_X_FORWARDED_HOST")
        or environ.get("HTTP_HOST")
        or _server_host(environ)
    )
    scheme = environ.get("HTTP_X_FORWARDED_PROTO") or (
        "https" if environ.get("wsgi.url_scheme") == "https" else "http"
    )
    raw_path = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")
    path = quote(raw_path.encode("latin-1", errors="replace"), safe=_PATH_SAFE) or "/"
    return urlunsplit((scheme, host, path, environ.get("QUERY_STRING", ""), ""))


def new_session_id() -> str:
    """A random 64 character alphanumeric session identifier."""
    return "".join(secrets.choice(_SESSION_ALPHABET) for _ in range(64))


def _add_query(url: str, key: str, value: str) -> str:
    parts = urlsplit(url)
    params = parse_qsl(parts.query, keep_blank_values=True)
    params.append((key, value))
    params.sort(key=itemgetter(0))
    return urlunsplit(parts._replace(query=urlencode(params)))


def _form(environ: dict) -> dict[str, str]:
    """Form values from a urlencoded body and the query; the body stays readable."""
    cached = environ.get(_FORM_KEY)
    if cached is not None:
        return cached
    try:
        length = int(environ.get("CONTENT_LENGTH") or 0)
    except ValueError:
        length = 0
    body = environ["wsgi.input"].read(length) if length > 0 else b""
    environ["wsgi.input"] = io.BytesIO(body)

    values: dict[str, str] = {}
    for source in (body.decode("utf-8", errors="replace"), environ.get("QUERY_STRING", "")):
        for key, value in parse_qsl(source, keep_blank_values=True):
            values.setdefault(key, value)
    environ[_FORM_KEY] = values
    return values


def is_single_logout_request(environ: dict) -> bool:
    """Whether the request is a urlencoded POST carrying a logoutRequest."""
    if environ.get("REQUEST_METHOD") != "POST":
        return False
    if environ.get("CONTENT_TYPE") != _FORM_CONTENT_TYPE:
        return False
    return bool(_form(environ).get("logoutRequest"))


def _drain_cookies(environ: dict) -> list[tuple[str, str]]:
    return [("Set-Cookie", cookie) for cookie in environ.pop(_COOKIES_KEY, [])]


def _error(
    environ: dict, start_response: StartResponse, message: str
) -> list[bytes]:
    start_response(
        "500 Internal Server Error",
        [
            ("Content-Type", "text/plain; charset=utf-8"),
            ("X-Content-Type-Options", "nosniff"),
            *_drain_cookies(environ),
        ],
    )
    return [(message + "\n").encode("utf-8")]


def _redirect(environ: dict, start_response: StartResponse, location: str) -> list[bytes]:
    headers = [("Location", location)]
    body = b""
    if environ.get("REQUEST_METHOD", "GET") in ("GET", "HEAD"):
        headers.append(("Content-Type", "text/html; charset=utf-8"))
        body = f'<a href="{html.escape(location)}">Found</a>.\n\n'.encode("utf-8")
    headers.extend(_drain_cookies(environ))
    start_response("302 Found", headers)
    return [body] if body else []


class Client:
    """Implements the CAS protocol for WSGI applications."""

    def __init__(self, options: Options) -> None:
        logger.debug("cas: new client with options %r", options)
        self.tickets: TicketStore = options.store if options.store is not None else MemoryStore()
        self.sessions: SessionStore = (
            options.session_store if options.session_store is not None else MemorySessionStore()
        )
        self.url_scheme: URLScheme = (
            options.url_scheme if options.url_scheme is not None else DefaultURLScheme(options.url)
        )
        self.http = options.session if options.session is not None else requests.Session()
        self.cookie = options.cookie if options.cookie is not None else CookieOptions()
        self.send_service = options.send_service
        self.validator = ServiceTicketValidator(options.url, self.http)

    def handle(self, app: WSGIApp) -> WSGIApp:
        """Wrap a WSGI application so that requests carry CAS authentication."""

        def cas_app(environ: dict, start_response: StartResponse) -> Iterable[bytes]:
            logger.debug(
                "cas: handling %s request for %s",
                environ.get("REQUEST_METHOD"),
                environ.get("PATH_INFO"),
            )
            environ[CLIENT_KEY] = self

            if is_single_logout_request(environ):
                return self._perform_single_logout(environ, start_response)

            self._get_session(environ)

            def start(status: str, headers: list, exc_info: Any = None) -> Any:
                return start_response(status, [*headers, *_drain_cookies(environ)], exc_info)

            return app(environ, start)

        return cas_app

    def handler(self, app: WSGIApp) -> WSGIApp:
        """Wrap an application so unauthenticated requests are sent to login.

        Requests for /logout are sent to the CAS logout page.
        """

        def guarded(environ: dict, start_response: StartResponse) -> Iterable[bytes]:
            environ[CLIENT_KEY] = self
            if not is_authenticated(environ):
                return self.redirect_to_login(environ, start_response)
            if environ.get("PATH_INFO") == "/logout":
                return self.redirect_to_logout(environ, start_response)
            return app(environ, start_response)

        return guarded

    def login_url_for_request(self, environ: dict) -> str:
        """The CAS login URL for a request."""
        return _add_query(self.url_scheme.login(), "service", sanitised_url(request_url(environ)))

    def logout_url_for_request(self, environ: dict) -> str:
        """The CAS logout URL for a request."""
        url = self.url_scheme.logout()
        if self.send_service:
            url = _add_query(url, "service", sanitised_url(request_url(environ)))
        return url

    def service_validate_url_for_request(self, ticket: str, environ: dict) -> str:
        """The CAS serviceValidate URL for a ticket and request."""
        return self.validator.service_validate_url(request_url(environ), ticket)

    def validate_url_for_request(self, ticket: str, environ: dict) -> str:
        """The CAS validate URL for a ticket and request."""
        return self.validator.validate_url(request_url(environ), ticket)

    def redirect_to_login(self, environ: dict, start_response: StartResponse) -> list[bytes]:
        """Answer with a redirect to the CAS login page."""
        location = self.login_url_for_request(environ)
        logger.debug("Redirecting client to %s with status 302", location)
        return _redirect(environ, start_response, location)

    def redirect_to_logout(self, environ: dict, start_response: StartResponse) -> list[bytes]:
        """Clear the session and answer with a redirect to the CAS logout page."""
        location = self.logout_url_for_request(environ)
        logger.debug("Logging out, redirecting client to %s with status 302", location)
        self._clear_session(environ)
        return _redirect(environ, start_response, location)

    def _perform_single_logout(
        self, environ: dict, start_response: StartResponse
    ) -> list[bytes]:
        raw = _form(environ).get("logoutRequest", "")
        try:
            request = parse_logout_request(raw.encode("utf-8"))
        except ValueError as exc:
            return _error(environ, start_response, str(exc))

        try:
            self.tickets.delete(request.session_index)
        except Exception as exc:  # a custom store may fail in its own way
            return _error(environ, start_response, str(exc))

        self.sessions.delete(request.session_index)
        start_response("200 OK", [("Content-Type", "text/plain; charset=utf-8")])
        return [b"OK\n"]

    def _validate_ticket(self, ticket: str, environ: dict) -> bool:
        success = self.validator.validate_ticket(request_url(environ), ticket)
        if success is None:
            return False
        self.tickets.write(ticket, success)
        return True

    def _get_session(self, environ: dict) -> None:
        session_id = self._get_cookie(environ)

        existing = self.sessions.get(session_id)
        if existing is not None:
            try:
                response = self.tickets.read(existing)
            except InvalidTicketError:
                logger.debug("Clearing ticket %s, no longer exists in ticket store", existing)
                self._clear_cookie(environ, session_id)
            else:
                logger.debug("Re-used ticket %s for %s", existing, response.user)
                environ[AUTHENTICATION_KEY] = response
                return

        ticket = dict(parse_qsl(environ.get("QUERY_STRING", ""))).get("ticket")
        if not ticket:
            return

        try:
            if not self._validate_ticket(ticket, environ):
                return
        except _VALIDATION_ERRORS as exc:
            logger.debug("Error validating ticket: %s", exc)
            return

        logger.debug("Recording session, %s -> %s", session_id, ticket)
        self.sessions.set(session_id, ticket)

        try:
            response = self.tickets.read(ticket)
        except InvalidTicketError:
            logger.debug("Clearing ticket %s, no longer exists in ticket store", ticket)
            self._clear_cookie(environ, session_id)
        else:
            logger.debug("Validated ticket %s for %s", ticket, response.user)
            environ[AUTHENTICATION_KEY] = response

    def _queue_cookie(self, environ: dict, session_id: str, max_age: int) -> None:
        header = dump_cookie(
            SESSION_COOKIE_NAME,
            session_id,
            max_age=max_age,
            path=self.cookie.path or None,
            domain=self.cookie.domain or None,
            secure=self.cookie.secure,
            httponly=self.cookie.http_only,
            samesite=self.cookie.same_site,
        )
        environ.setdefault(_COOKIES_KEY, []).append(header)

    def _get_cookie(self, environ: dict) -> str:
        session_id = environ.get(_SESSION_KEY)
        if session_id is None:
            session_id = parse_cookie(environ).get(SESSION_COOKIE_NAME)
        if session_id is None:
            session_id = new_session_id()
            logger.debug("Setting %s cookie with value: %s", SESSION_COOKIE_NAME, session_id)
            self._queue_cookie(environ, session_id, self.cookie.max_age)
        environ[_SESSION_KEY] = session_id
        return session_id

    def _clear_cookie(self, environ: dict, session_id: str) -> None:
        self._queue_cookie(environ, session_id, 0)

    def _clear_session(self, environ: dict) -> None:
        session_id = self._get_cookie(environ)
        ticket = self.sessions.get(session_id)
        if ticket is not None:
            try:
                self.tickets.delete(ticket)
            except Exception:  # removal failures must not block logout
                logger.exception("Failed to remove %s from the ticket store", session_id)
            self.sessions.delete(session_id)
        self._clear_cookie(environ, session_id)