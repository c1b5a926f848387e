"""Validation of service tickets against a CAS server."""

from __future__ import annotations

import logging
from operator import itemgetter
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests

from casauth.service_response import AuthenticationResponse, parse_service_response
from casauth.urls import join_url, sanitised_url

logger = logging.getLogger(__name__)

USER_AGENT = "casauth CAS client"

_NOT_LOGGED_IN = "no\n\n"


class ValidationError(Exception):
    """The CAS server answered a validation request with an error status."""


def _with_service_and_ticket(url: str, service_url: str, ticket: str) -> str:
    parts = urlsplit(url)
    params = parse_qsl(parts.query, keep_blank_values=True)
    params += [("service", sanitised_url(service_url)), ("ticket", ticket)]
    query = urlencode(sorted(params, key=itemgetter(0)))
    return urlunsplit(parts._replace(query=query))


class ServiceTicketValidator:
    """Validates service tickets, preferring the CAS 2 endpoint over CAS 1."""

    def __init__(self, cas_url: str, session: requests.Session | None = None) -> None:
        self.cas_url = cas_url
        self.session = session if session is not None else requests.Session()

    def service_validate_url(self, service_url: str, ticket: str) -> str:
        """URL of the CAS 2 service validation request for a ticket."""
        return _with_service_and_ticket(
            join_url(self.cas_url, "serviceValidate"), service_url, ticket
        )

    def validate_url(self, service_url: str, ticket: str) -> str:
        """URL of the CAS 1 validation request for a ticket."""
        return _with_service_and_ticket(join_url(self.cas_url, "validate"), service_url, ticket)

    def _get(self, url: str) -> tuple[int, bytes]:
        logger.debug("Attempting ticket validation with %s", url)
        with self.session.get(url, headers={"User-Agent": USER_AGENT}) as response:
            logger.debug("Request GET %s returned %s", url, response.status_code)
            return response.status_code, response.content

    def validate_ticket(self, service_url: str, ticket: str) -> AuthenticationResponse | None:
        """Validate a ticket for a service.

        Falls back to the CAS 1 endpoint when the service validation endpoint
        answers 404. Returns None when a CAS 1 server reports no login.
        """
        logger.debug("Validating ticket %s for service %s", ticket, service_url)
        status, body = self._get(self.service_validate_url(service_url, ticket))

        if status == 404:
            return self._validate_ticket_cas1(service_url, ticket)

        if status != 200:
            raise ValidationError(
                f"cas: validate ticket: {body.decode('utf-8', errors='replace')}"
            )

        logger.debug("Received authentication response\n%s", body)
        success = parse_service_response(body)
        logger.debug("Parsed service response: %r", success)
        return success

    def _validate_ticket_cas1(
        self, service_url: str, ticket: str
    ) -> AuthenticationResponse | None:
        status, data = self._get(self.validate_url(service_url, ticket))
        body = data.decode("utf-8", errors="replace")

        if status != 200:
            raise ValidationError(f"cas: validate ticket: {body}")

        logger.debug("Received authentication response\n%s", body)

        if body == _NOT_LOGGED_IN:
            return None
        if len(body) < 5:
            raise ValidationError(f"cas: validate ticket: malformed response {body!r}")

        success = AuthenticationResponse(user=body[4:-1])
        logger.debug("Parsed service response: %r", success)
        return success