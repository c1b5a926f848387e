from datetime import datetime, timedelta, timezone

import pytest

from casauth.logout_request import (
    LogoutRequest,
    new_logout_request_id,
    parse_date,
    parse_logout_request,
    xml_logout_request,
)

TICKET = "ST-io34f34vr7823vcr82346r782c4b78i2364i76cvr72364rv7263"

RFC_REQUEST = f"""<samlp:LogoutRequest xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"
  ID="8r7834d6r78346s7823d46678235d" Version="2.0" IssueInstant="Fri, 27 Feb 2015 13:31:34 -0000">
  <saml:NameID xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion">
    @NOT_USED@
  </saml:NameID>
  <samlp:SessionIndex>{TICKET}</samlp:SessionIndex>
</samlp:LogoutRequest>"""

ISO_REQUEST = f"""<samlp:LogoutRequest xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"
  ID="8r7834d6r78346s7823d46678235d" Version="2.0" IssueInstant="2018-03-22T10:52:57Z">
  <saml:NameID xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion">
    @NOT_USED@
  </saml:NameID>
  <samlp:SessionIndex>{TICKET}</samlp:SessionIndex>
</samlp:LogoutRequest>"""


def test_parse_logout_request():
    request = parse_logout_request(RFC_REQUEST.encode())

    assert request.version == "2.0"
    assert request.id == "8r7834d6r78346s7823d46678235d"
    assert request.name_id == "@NOT_USED@"
    assert request.session_index == TICKET
    assert request.issue_instant == datetime(2015, 2, 27, 13, 31, 34, tzinfo=timezone.utc)


def test_xml_logout_request_layout():
    request = LogoutRequest(
        version="2.0",
        issue_instant=datetime(2015, 2, 27, 13, 31, 34, tzinfo=timezone.utc),
        id="8r7834d6r78346s7823d46678235d",
        name_id="@NOT_USED@",
        session_index=TICKET,
    )

    expected = (
        '<LogoutRequest xmlns="urn:oasis:names:tc:SAML:2.0:protocol" Version="2.0" '
        'IssueInstant="Fri, 27 Feb 2015 13:31:34 +0000" ID="8r7834d6r78346s7823d46678235d">\n'
        '  <NameID xmlns="urn:oasis:names:tc:SAML:2.0:assertion">@NOT_USED@</NameID>\n'
        f"  <SessionIndex>{TICKET}</SessionIndex>\n"
        "</LogoutRequest>"
    )
    assert request.to_xml() == expected


def test_parse_logout_request_with_iso8601():
    request = parse_logout_request(ISO_REQUEST)
    assert request.issue_instant == datetime(2018, 3, 22, 10, 52, 57, tzinfo=timezone.utc)


def test_xml_logout_request_round_trip():
    request = parse_logout_request(xml_logout_request("ST-1"))
    assert request.session_index == "ST-1"
    assert request.name_id == "@NOT_USED@"
    assert request.version == "2.0"
    assert len(request.id) == 64
    assert abs(datetime.now(timezone.utc) - request.issue_instant) < timedelta(minutes=1)


def test_to_xml_escapes_values():
    request = LogoutRequest(
        issue_instant=datetime(2015, 2, 27, 13, 31, 34, tzinfo=timezone.utc),
        id="abc",
        session_index="a<b&c",
    )
    assert "<SessionIndex>a&lt;b&amp;c</SessionIndex>" in request.to_xml()
    assert parse_logout_request(request.to_xml()).session_index == "a<b&c"


def test_to_xml_naive_datetime_is_utc():
    request = LogoutRequest(issue_instant=datetime(2015, 2, 27, 13, 31, 34), id="abc")
    assert 'IssueInstant="Fri, 27 Feb 2015 13:31:34 +0000"' in request.to_xml()


def test_parse_logout_request_wrong_root():
    with pytest.raises(ValueError):
        parse_logout_request('<Other xmlns="urn:oasis:names:tc:SAML:2.0:protocol"/>')


def test_parse_logout_request_malformed_xml():
    with pytest.raises(ValueError):
        parse_logout_request("<samlp:LogoutRequest")


def test_parse_logout_request_missing_issue_instant():
    data = '<LogoutRequest xmlns="urn:oasis:names:tc:SAML:2.0:protocol" ID="x"/>'
    with pytest.raises(ValueError):
        parse_logout_request(data)


def test_parse_date_with_offset():
    expected = datetime(2015, 2, 27, 12, 31, 34, tzinfo=timezone.utc)
    assert parse_date("Fri, 27 Feb 2015 13:31:34 +0100") == expected
    assert parse_date("2015-02-27T13:31:34+0100") == expected


def test_parse_date_with_fraction():
    assert parse_date("2018-03-22T10:52:57.5Z") == datetime(
        2018, 3, 22, 10, 52, 57, 500000, tzinfo=timezone.utc
    )


@pytest.mark.parametrize(
    "raw",
    ["", "yesterday", "2018-03-22 10:52:57", "2018-13-22T10:52:57Z", "Fri, 32 Feb 2015 13:31:34 +0000"],
)
def test_parse_date_rejects_invalid(raw):
    with pytest.raises(ValueError):
        parse_date(raw)


def test_new_logout_request_id():
    first = new_logout_request_id()
    second = new_logout_request_id()
    assert len(first) == 64
    assert set(first) <= set("abcdef0123456789")
    assert first != second