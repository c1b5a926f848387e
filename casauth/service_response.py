"""CAS service validation responses: the XML document model and its parser."""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from xml.sax.saxutils import escape as _escape_markup

import yaml

logger = logging.getLogger(__name__)

CAS_NS = "http://www.yale.edu/tp/cas"

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

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(?:(Z)|([+-])(\d{2}):(\d{2}))"
)

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


class ErrorCode(str, Enum):
    """Codes a CAS server reports in an authentication failure."""

    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_TICKET_SPEC = "INVALID_TICKET_SPEC"
    UNAUTHORIZED_SERVICE = "UNAUTHORIZED_SERVICE"
    UNAUTHORIZED_SERVICE_PROXY = "UNAUTHORIZED_SERVICE_PROXY"
    INVALID_PROXY_CALLBACK = "INVALID_PROXY_CALLBACK"
    INVALID_TICKET = "INVALID_TICKET"
    INVALID_SERVICE = "INVALID_SERVICE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AuthenticationError(Exception):
    """A CAS authentication failure response."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class UserAttributes(dict[str, list[str]]):
    """Additional data about a user; every attribute holds a list of values."""

    def first(self, name: str) -> str:
        """Return the first value of an attribute, or an empty string."""
        values = self.get(name)
        return values[0] if values else ""

    def add(self, name: str, value: str) -> None:
        """Append a value to an attribute."""
        self.setdefault(name, []).append(value)


@dataclass
class AuthenticationResponse:
    """Information about an authenticated user."""

    user: str
    proxy_granting_ticket: str = ""
    proxies: list[str] = field(default_factory=list)
    authentication_date: datetime | None = None
    is_new_login: bool = False
    is_remembered_login: bool = False
    member_of: list[str] = field(default_factory=list)
    attributes: UserAttributes = field(default_factory=UserAttributes)


@dataclass
class NamedAttribute:
    """A user attribute in the ``<attribute name="...">`` form; the value is raw XML."""

    name: str
    value: str


@dataclass
class AnyAttribute:
    """A user attribute carried as an element named after the attribute."""

    name: str
    value: str


@dataclass
class UserAttributeList:
    """The ``userAttributes`` element."""

    attributes: list[NamedAttribute] = field(default_factory=list)
    any_attributes: list[AnyAttribute] = field(default_factory=list)


@dataclass
class ResponseAttributes:
    """The ``attributes`` element of a successful response."""

    authentication_date: datetime | None = None
    long_term_authentication_request_token_used: bool = False
    is_from_new_login: bool = False
    member_of: list[str] = field(default_factory=list)
    user_attributes: UserAttributeList | None = None
    extra_attributes: list[AnyAttribute] = field(default_factory=list)


@dataclass
class AuthenticationFailure:
    """The ``authenticationFailure`` element; the message is raw XML."""

    code: str
    message: str


@dataclass
class AuthenticationSuccess:
    """The ``authenticationSuccess`` element."""

    user: str
    proxy_granting_ticket: str = ""
    proxies: list[str] | None = None
    attributes: ResponseAttributes | None = None
    extra_attributes: list[AnyAttribute] = field(default_factory=list)


@dataclass
class _Element:
    tag: str
    text: str = ""
    attrs: tuple[tuple[str, str], ...] = ()
    children: list[_Element] = field(default_factory=list)
    raw: bool = False

    def render(self, unit: str, depth: int, out: list[str]) -> None:
        if unit and depth:
            out.append("\n" + unit * depth)
        attrs = "".join(f' {name}="{_escape(value)}"' for name, value in self.attrs)
        out.append(f"<{self.tag}{attrs}>")
        if self.children:
            for child in self.children:
                child.render(unit, depth + 1, out)
            if unit:
                out.append("\n" + unit * depth)
        else:
            out.append(self.text if self.raw else _escape(self.text))
        out.append(f"</{self.tag}>")


@dataclass
class ServiceResponse:
    """A CAS ``serviceResponse`` document."""

    failure: AuthenticationFailure | None = None
    success: AuthenticationSuccess | None = None

    def to_xml(self, indent: int = 0) -> str:
        """Render the document; a positive indent pretty-prints with that many spaces."""
        root = _Element("serviceResponse", attrs=(("xmlns", CAS_NS),))
        if self.failure is not None:
            root.children.append(
                _Element(
                    "authenticationFailure",
                    text=self.failure.message,
                    attrs=(("code", self.failure.code),),
                    raw=True,
                )
            )
        if self.success is not None:
            root.children.append(_success_element(self.success))
        out: list[str] = []
        root.render(" " * indent, 0, out)
        return "".join(out)


def _escape(text: str) -> str:
    return "".join(_ESCAPES.get(char, char) for char in text)


def _format_rfc3339(moment: datetime | None) -> str:
    if moment is None:
        moment = _ZERO_TIME
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    base = (
        f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"
        f"T{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    )
    total_minutes = int(moment.utcoffset().total_seconds()) // 60
    if total_minutes == 0:
        return base + "Z"
    sign = "-" if total_minutes < 0 else "+"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{base}{sign}{hours:02d}:{minutes:02d}"


def _bool_text(value: bool) -> str:
    return "true" if value else "false"


def _user_attributes_element(user_attributes: UserAttributeList) -> _Element:
    element = _Element("userAttributes")
    for named in user_attributes.attributes:
        attrs = (("name", named.name),) if named.name else ()
        element.children.append(_Element("attribute", text=named.value, attrs=attrs, raw=True))
    element.children.extend(_Element(a.name, text=a.value) for a in user_attributes.any_attributes)
    return element


def _attributes_element(attributes: ResponseAttributes) -> _Element:
    element = _Element("attributes")
    element.children.append(
        _Element("authenticationDate", text=_format_rfc3339(attributes.authentication_date))
    )
    element.children.append(
        _Element(
            "longTermAuthenticationRequestTokenUsed",
            text=_bool_text(attributes.long_term_authentication_request_token_used),
        )
    )
    element.children.append(
        _Element("isFromNewLogin", text=_bool_text(attributes.is_from_new_login))
    )
    element.children.extend(_Element("memberOf", text=group) for group in attributes.member_of)
    if attributes.user_attributes is not None:
        element.children.append(_user_attributes_element(attributes.user_attributes))
    element.children.extend(_Element(a.name, text=a.value) for a in attributes.extra_attributes)
    return element


def _success_element(success: AuthenticationSuccess) -> _Element:
    element = _Element("authenticationSuccess")
    element.children.append(_Element("user", text=success.user))
    if success.proxy_granting_ticket:
        element.children.append(
            _Element("proxyGrantingTicket", text=success.proxy_granting_ticket)
        )
    if success.proxies is not None:
        proxies = _Element("proxies")
        proxies.children.extend(_Element("proxy", text=proxy) for proxy in success.proxies)
        element.children.append(proxies)
    if success.attributes is not None:
        element.children.append(_attributes_element(success.attributes))
    element.children.extend(_Element(a.name, text=a.value) for a in success.extra_attributes)
    return element


def failure_service_response(code: str, message: str) -> ServiceResponse:
    """Build a failure response document."""
    return ServiceResponse(failure=AuthenticationFailure(code=code, message=message))


def success_service_response(username: str, pgt: str) -> ServiceResponse:
    """Build a success response document for a user and proxy granting ticket."""
    return ServiceResponse(
        success=AuthenticationSuccess(user=username, proxy_granting_ticket=pgt)
    )


def parse_cas_time(value: str) -> datetime:
    """Parse an RFC 3339 timestamp, ignoring a trailing ``[Zone]`` suffix."""
    head, bracket, _ = value.rpartition("[")
    if bracket:
        value = head
    match = _RFC3339.fullmatch(value)
    if match is None:
        raise ValueError(f"cannot parse {value!r} as an RFC 3339 time")
    year, month, day, hour, minute, second, fraction, zulu, sign, oh, om = match.groups()
    if zulu:
        zone = timezone.utc
    else:
        delta = timedelta(hours=int(oh), minutes=int(om))
        zone = timezone(-delta if sign == "-" else delta)
    micro = int((fraction or "0")[:6].ljust(6, "0"))
    try:
        return datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second), micro,
            tzinfo=zone,
        )
    except ValueError as exc:
        raise ValueError(f"cannot parse {value!r} as an RFC 3339 time: {exc}") from exc


def _local(tag: str) -> str:
    return tag.rpartition("}")[2]


def _direct_text(element: ET.Element) -> str:
    return (element.text or "") + "".join(child.tail or "" for child in element)


def _inner_xml(element: ET.Element) -> str:
    parts = [_escape_markup(element.text or "")]
    parts.extend(ET.tostring(child, encoding="unicode") for child in element)
    return "".join(parts)


def _parse_bool(text: str) -> bool:
    value = text.strip()
    if not value or value in _FALSE_WORDS:
        return False
    if value in _TRUE_WORDS:
        return True
    raise ValueError(f"invalid boolean value {value!r}")


def _parse_user_attributes(element: ET.Element, into: UserAttributeList) -> None:
    for child in element:
        name = _local(child.tag)
        if name == "attribute":
            into.attributes.append(NamedAttribute(child.get("name", ""), _inner_xml(child)))
        else:
            into.any_attributes.append(AnyAttribute(name, _direct_text(child)))


def _parse_attributes(element: ET.Element) -> ResponseAttributes:
    attributes = ResponseAttributes()
    for child in element:
        name = _local(child.tag)
        if name == "authenticationDate":
            attributes.authentication_date = parse_cas_time(_direct_text(child))
        elif name == "longTermAuthenticationRequestTokenUsed":
            attributes.long_term_authentication_request_token_used = _parse_bool(
                _direct_text(child)
            )
        elif name == "isFromNewLogin":
            attributes.is_from_new_login = _parse_bool(_direct_text(child))
        elif name == "memberOf":
            attributes.member_of.append(_direct_text(child))
        elif name == "userAttributes":
            if attributes.user_attributes is None:
                attributes.user_attributes = UserAttributeList()
            _parse_user_attributes(child, attributes.user_attributes)
        else:
            attributes.extra_attributes.append(AnyAttribute(name, _direct_text(child)))
    return attributes


def _parse_success(element: ET.Element) -> AuthenticationSuccess:
    success = AuthenticationSuccess(user="")
    for child in element:
        name = _local(child.tag)
        if name == "user":
            success.user = _direct_text(child)
        elif name == "proxyGrantingTicket":
            success.proxy_granting_ticket = _direct_text(child)
        elif name == "proxies":
            if success.proxies is None:
                success.proxies = []
            success.proxies.extend(
                _direct_text(proxy) for proxy in child if _local(proxy.tag) == "proxy"
            )
        elif name == "attributes":
            success.attributes = _parse_attributes(child)
        else:
            success.extra_attributes.append(AnyAttribute(name, _direct_text(child)))
    return success


def _parse_document(data: str | bytes) -> ServiceResponse:
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise ValueError(f"invalid service response: {exc}") from exc

    expected = f"{{{CAS_NS}}}serviceResponse"
    if root.tag != expected:
        raise ValueError(f"expected element {expected} but have {root.tag}")

    document = ServiceResponse()
    for child in root:
        name = _local(child.tag)
        if name == "authenticationFailure":
            document.failure = AuthenticationFailure(child.get("code", ""), _inner_xml(child))
        elif name == "authenticationSuccess":
            document.success = _parse_success(child)
    return document


class _StringTimestampLoader(yaml.SafeLoader):
    """Safe loader that leaves timestamp-like scalars as strings."""


_StringTimestampLoader.yaml_implicit_resolvers = {
    first: [
        (tag, pattern)
        for tag, pattern in resolvers
        if tag != "tag:yaml.org,2002:timestamp"
    ]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _add_rubycas_attribute(attributes: UserAttributes, key: str, value: str) -> None:
    """Add an attribute that may be YAML encoded in the RubyCAS style."""
    if not value.startswith("---"):
        attributes.add(key, value)
        return
    if value == "--- true":
        attributes.add(key, "true")
        return
    if value == "--- false":
        attributes.add(key, "false")
        return

    try:
        decoded = yaml.load(value, Loader=_StringTimestampLoader)
    except yaml.YAMLError as exc:
        attributes.add(key, str(exc))
        return

    if isinstance(decoded, list):
        for item in decoded:
            if isinstance(item, str):
                attributes.add(key, item)
    elif isinstance(decoded, str):
        attributes.add(key, decoded)
    else:
        logger.debug("cas: service response: unable to parse %s value: %r", key, decoded)


def parse_service_response(data: str | bytes) -> AuthenticationResponse:
    """Parse a service validation response.

    Raises AuthenticationError for a failure response and ValueError for a
    document that cannot be read.
    """
    document = _parse_document(data)

    if document.failure is not None:
        raise AuthenticationError(document.failure.code, document.failure.message.strip())
    if document.success is None:
        raise ValueError("service response holds neither success nor failure")

    success = document.success
    response = AuthenticationResponse(
        user=success.user,
        proxy_granting_ticket=success.proxy_granting_ticket,
        proxies=list(success.proxies or []),
    )

    if (attrs := success.attributes) is not None:
        response.authentication_date = attrs.authentication_date
        response.is_remembered_login = attrs.long_term_authentication_request_token_used
        response.is_new_login = attrs.is_from_new_login
        response.member_of = list(attrs.member_of)

        if attrs.user_attributes is not None:
            for named in attrs.user_attributes.attributes:
                if named.name:
                    response.attributes.add(named.name, named.value.strip())
            for extra in attrs.user_attributes.any_attributes:
                response.attributes.add(extra.name, extra.value.strip())

        for extra in attrs.extra_attributes:
            response.attributes.add(extra.name, extra.value.strip())

    for extra in success.extra_attributes:
        _add_rubycas_attribute(response.attributes, extra.name, extra.value.strip())

    return response