"""SAML single logout requests sent by a CAS server."""

from __future__ import annotations

import re
import secrets
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

PROTOCOL_NS = "urn:oasis:names:tc:SAML:2.0:protocol"
ASSERTION_NS = "urn:oasis:names:tc:SAML:2.0:assertion"

_DAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
_MONTH_NUMBERS = {name.lower(): number for number, name in enumerate(_MONTHS, start=1)}

_RFC1123Z = re.compile(
    r"(?:Mon|Tue|Wed|Thu|Fri|Sat|Sun), (\d{2}) ([A-Za-z]{3}) (\d{4}) "
    r"(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))? ([+-])(\d{2})(\d{2})",
    re.IGNORECASE,
)
_ISO8601 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(?:Z|([+-])(\d{2})(\d{2}))"
)

_ESCAPES = {
    '"': "&#34;",
    "'": "&#39;",
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    "\t": "&#x9;",
    "\n": "&#xA;",
    "\r": "&#xD;",
}

_ID_ALPHABET = "abcdef0123456789"


def _escape(text: str) -> str:
    return "".join(_ESCAPES.get(char, char) for char in text)


def _offset(sign: str | None, hours: str | None, minutes: str | None) -> timezone:
    if sign is None:
        return timezone.utc
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    return timezone(-delta if sign == "-" else delta)


def _microseconds(fraction: str | None) -> int:
    return int((fraction or "0")[:6].ljust(6, "0"))


def _format_rfc1123z(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    total_minutes = int(moment.utcoffset().total_seconds()) // 60
    sign = "-" if total_minutes < 0 else "+"
    hours, minutes = divmod(abs(total_minutes), 60)
    return (
        f"{_DAYS[moment.weekday()]}, {moment.day:02d} {_MONTHS[moment.month - 1]} "
        f"{moment.year:04d} {moment:%H:%M:%S} {sign}{hours:02d}{minutes:02d}"
    )


def parse_date(raw: str) -> datetime:
    """Parse an RFC 1123 date with numeric zone, falling back to ISO 8601."""
    try:
        match = _RFC1123Z.fullmatch(raw)
        if match:
            day, month, year, hour, minute, second, fraction, sign, oh, om = match.groups()
            month_number = _MONTH_NUMBERS.get(month.lower())
            if month_number is not None:
                return datetime(
                    int(year), month_number, int(day), int(hour), int(minute), int(second),
                    _microseconds(fraction), tzinfo=_offset(sign, oh, om),
                )
        match = _ISO8601.fullmatch(raw)
        if match:
            year, month, day, hour, minute, second, fraction, sign, oh, om = match.groups()
            return datetime(
                int(year), int(month), int(day), int(hour), int(minute), int(second),
                _microseconds(fraction), tzinfo=_offset(sign, oh, om),
            )
    except ValueError as exc:
        raise ValueError(f"cannot parse {raw!r} as a date: {exc}") from exc
    raise ValueError(f"cannot parse {raw!r} as a date")


def new_logout_request_id() -> str:
    """Return a random 64 character hexadecimal identifier."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(64))


@dataclass
class LogoutRequest:
    """A CAS single logout request."""

    version: str = "2.0"
    issue_instant: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=new_logout_request_id)
    name_id: str = "@NOT_USED@"
    session_index: str = ""

    def to_xml(self) -> str:
        """Render the request as indented XML."""
        return "\n".join(
            [
                f'<LogoutRequest xmlns="{PROTOCOL_NS}" Version="{_escape(self.version)}" '
                f'IssueInstant="{_escape(_format_rfc1123z(self.issue_instant))}" '
                f'ID="{_escape(self.id)}">',
                f'  <NameID xmlns="{ASSERTION_NS}">{_escape(self.name_id)}</NameID>',
                f"  <SessionIndex>{_escape(self.session_index)}</SessionIndex>",
                "</LogoutRequest>",
            ]
        )


def _local_name(tag: str) -> str:
    return tag.rpartition("}")[2]


def _direct_text(element: ET.Element) -> str:
    return (element.text or "") + "".join(child.tail or "" for child in element)


def parse_logout_request(data: str | bytes) -> LogoutRequest:
    """Parse the XML of a single logout request; raise ValueError if invalid."""
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise ValueError(f"invalid logout request: {exc}") from exc

    expected = f"{{{PROTOCOL_NS}}}LogoutRequest"
    if root.tag != expected:
        raise ValueError(f"expected element {expected} but have {root.tag}")

    name_id = ""
    session_index = ""
    for child in root:
        if child.tag == f"{{{ASSERTION_NS}}}NameID":
            name_id = _direct_text(child)
        elif _local_name(child.tag) == "SessionIndex":
            session_index = _direct_text(child)

    return LogoutRequest(
        version=root.get("Version", ""),
        issue_instant=parse_date(root.get("IssueInstant", "")),
        id=root.get("ID", ""),
        name_id=name_id.strip(),
        session_index=session_index.strip(),
    )


def xml_logout_request(ticket: str) -> str:
    """Build the XML of a logout request for the given service ticket."""
    now = datetime.now(timezone.utc).replace(microsecond=0)
    return LogoutRequest(issue_instant=now, session_index=ticket).to_xml()