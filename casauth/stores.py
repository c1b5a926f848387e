"""Storage for validated tickets and for session-to-ticket mappings."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from casauth.service_response import AuthenticationResponse


class InvalidTicketError(LookupError):
    """Raised when a ticket is not associated with an authentication response."""

    def __init__(self, ticket_id: str | None = None) -> None:
        super().__init__("cas: ticket store: invalid ticket")
        self.ticket_id = ticket_id


class TicketStore(ABC):
    """Stores and retrieves service ticket data."""

    @abstractmethod
    def read(self, ticket_id: str) -> AuthenticationResponse:
        """Return the response stored for a ticket, or raise InvalidTicketError."""

    @abstractmethod
    def write(self, ticket_id: str, response: AuthenticationResponse) -> None:
        """Store the response received from validating a ticket."""

    @abstractmethod
    def delete(self, ticket_id: str) -> None:
        """Remove the response stored for a ticket."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every stored response."""


class MemoryStore(TicketStore):
    """A thread-safe ticket store held in memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._store: dict[str, AuthenticationResponse] = {}

    def read(self, ticket_id: str) -> AuthenticationResponse:
        with self._lock:
            try:
                return self._store[ticket_id]
            except KeyError:
                raise InvalidTicketError(ticket_id) from None

    def write(self, ticket_id: str, response: AuthenticationResponse) -> None:
        with self._lock:
            self._store[ticket_id] = response

    def delete(self, ticket_id: str) -> None:
        with self._lock:
            self._store.pop(ticket_id, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


class SessionStore(ABC):
    """Maps session identifiers, taken from cookies, to service tickets."""

    @abstractmethod
    def get(self, session_id: str) -> str | None:
        """Return the ticket for a session, or None if there is none."""

    @abstractmethod
    def set(self, session_id: str, ticket: str) -> None:
        """Associate a session with a ticket."""

    @abstractmethod
    def delete(self, session_id: str) -> None:
        """Forget a session."""


class MemorySessionStore(SessionStore):
    """A thread-safe session store held in memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, str] = {}

    def get(self, session_id: str) -> str | None:
        with self._lock:
            return self._sessions.get(session_id)

    def set(self, session_id: str, ticket: str) -> None:
        with self._lock:
            self._sessions[session_id] = ticket

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)