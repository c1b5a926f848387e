# casauth

A client for the CAS (Central Authentication Service) protocol, packaged as
WSGI middleware. It redirects unauthenticated users to the CAS login page,
validates service tickets against the CAS server (the `serviceValidate`
endpoint, falling back to the older `validate` endpoint when that answers
404), keeps sessions in a cookie named `_cas_session`, and honours CAS single
logout requests.

## Installation

```
pip install casauth
```

## Protecting a WSGI application

```python
from casauth.client import Client, Options
from casauth.context import (
    attributes,
    is_authenticated,
    redirect_to_login,
    redirect_to_logout,
    username,
)


def app(environ, start_response):
    if not is_authenticated(environ):
        return redirect_to_login(environ, start_response)

    if environ.get("PATH_INFO") == "/logout":
        return redirect_to_logout(environ, start_response)

    attrs = attributes(environ)
    body = f"Hello {username(environ)} ({attrs.first('email')})\n".encode()
    start_response("200 OK", [("Content-Type", "text/plain")])
    return [body]


client = Client(Options(url="https://cas.example.com/cas/"))
application = client.handle(app)
```

`Client.handle(app)` wraps an application. For every request it:

- answers a single logout request (a urlencoded `POST` with a `logoutRequest`
  field) by removing the named ticket from the ticket store and replying
  `OK`, or with a 500 if the request cannot be parsed;
- otherwise finds the session cookie, or creates one, and looks up the
  ticket recorded for the session;
- if there is none and the query has a `ticket` parameter, validates it with
  the CAS server and records it for the session;
- then calls the wrapped application, adding any `Set-Cookie` headers to its
  response.

`Client.handler(app)` is a guard to put inside `handle`: it redirects every
unauthenticated request to the CAS login page and sends requests for
`/logout` to the CAS logout page, so the application needs no checks of its
own:

```python
application = client.handle(client.handler(app))
```

`Client.redirect_to_login` and `Client.redirect_to_logout` answer with a
`302 Found`; logout also forgets the session and expires the cookie.
`Client.login_url_for_request`, `logout_url_for_request`,
`service_validate_url_for_request` and `validate_url_for_request` return the
URLs without answering. The service URL sent to CAS is the request URL
(honouring `X-Forwarded-Host` and `X-Forwarded-Proto`) with the `gateway`,
`renew`, `service` and `ticket` parameters removed.

### Options

`Options(url, ...)` takes:

- `url`: the CAS server URL;
- `store`: a `TicketStore` (default `MemoryStore`);
- `session_store`: a `SessionStore` (default `MemorySessionStore`);
- `session`: a `requests.Session` used to talk to the server;
- `url_scheme`: a `URLScheme` (default `DefaultURLScheme(url)`);
- `send_service`: whether the logout URL carries a `service` parameter
  (default `False`);
- `cookie`: a `CookieOptions` with `path`, `domain`, `max_age` (default
  86400), `http_only`, `secure` and `same_site`.

## Reading the authenticated user

The functions in `casauth.context` read the result of validation from the
WSGI environ:

- `is_authenticated(environ)`
- `username(environ)`, empty if not authenticated
- `attributes(environ)`, a `UserAttributes` mapping of names to lists of
  values (`first(name)` returns the first value), or `None`
- `authentication_date(environ)`, `None` if the server did not send one
- `is_new_login(environ)` and `is_remembered_login(environ)`
- `member_of(environ)`

`redirect_to_login(environ, start_response)` and
`redirect_to_logout(environ, start_response)` redirect through the client
that `Client.handle` attached to the request, and answer with a 500 when no
client is attached.

## Storage

`casauth.stores` defines the `TicketStore` and `SessionStore` interfaces and
their thread-safe in-memory implementations, `MemoryStore` and
`MemorySessionStore`. Reading an unknown ticket raises `InvalidTicketError`.
Nothing is persisted: to keep sessions across restarts or share them between
processes, pass your own implementations in `Options`.

## Validating tickets directly

```python
from casauth.validate import ServiceTicketValidator

validator = ServiceTicketValidator("https://cas.example.com/cas/")
response = validator.validate_ticket("https://app.example.com/", "ST-1")
```

`validate_ticket` returns an `AuthenticationResponse`, or `None` when a
server speaking only the older protocol answers that no one is logged in.
It raises `ValidationError` for an error status, `AuthenticationError` for a
failure response and `ValueError` for a response it cannot read.

## Parsing and building responses

```python
from casauth.service_response import AuthenticationError, parse_service_response

try:
    response = parse_service_response(xml_bytes)
except AuthenticationError as err:
    print(err.code, err.message)
else:
    print(response.user, response.attributes)
```

The parser reads user attributes in the `<attribute name="...">` form, in
the form of elements named after the attribute, and in the RubyCAS form of
YAML-encoded values. `ErrorCode` lists the failure codes CAS defines.
`success_service_response`, `failure_service_response` and
`ServiceResponse.to_xml(indent)` build response documents.

`casauth.logout_request` parses single logout requests
(`parse_logout_request`) and builds them (`xml_logout_request(ticket)`,
`LogoutRequest.to_xml()`).

## URLs

`casauth.urls.DefaultURLScheme` builds the standard CAS endpoints (`login`,
`logout`, `validate`, `serviceValidate`, `v1/tickets`) relative to the server
URL; its paths are fields that can be changed. `sanitised_url` and
`join_url` are the helpers it and the client use.

## What this package does not do

It has no client for the CAS REST API: `DefaultURLScheme` can build the
`v1/tickets` URLs, but nothing in the package requests ticket granting or
service tickets with a username and password, and there is no HTTP Basic
authentication middleware. It is not a CAS server and has no command-line
program.

## Running the tests

```
pip install -e ".[test]"
pytest
```