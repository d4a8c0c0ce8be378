"""
casauth Core Types

Fundamental type definitions for the CAS ticket protocol client.

Design Principles:
- Immutable: results and principals use frozen attrs
- Validated: constraints enforced at construction
- Explicit outcomes: a redirect is a result value, not an interrupted call
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, MutableMapping, Optional, Union
from urllib.parse import parse_qsl, urlsplit

import attrs
from attrs import field, validators


CAS_VERSION_2_0 = "2.0"

# Query parameter carrying the service ticket on the return leg
TICKET_PARAM = "ticket"


# =============================================================================
# IDENTITY TYPES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class Principal:
    """
    Authenticated identity produced by a successful ticket validation.

    INVARIANT: username is non-empty

    Created fresh on every successful validation; ownership passes to the
    host session framework as soon as it is returned.
    """

    username: str = field(validator=[validators.instance_of(str), validators.min_len(1)])
    attributes: Dict[str, Any] = field(factory=dict, converter=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Principal:
        """
        Build a principal from a user mapping.

        Two shapes are accepted:
            {"username": "alice", "attributes": {"role": "admin"}}
            {"username": "alice", "role": "admin"}
        """
        if "username" not in data:
            raise ValueError("User mapping must contain a username")

        nested = data.get("attributes")
        if isinstance(nested, Mapping) and set(data) <= {"username", "attributes"}:
            return cls(username=data["username"], attributes=nested)

        attributes = {k: v for k, v in data.items() if k != "username"}
        return cls(username=data["username"], attributes=attributes)

    def as_user_dict(self) -> Dict[str, Any]:
        """Flat user mapping: username merged with the CAS attributes."""
        user = {"username": self.username}
        user.update(self.attributes)
        return user

    def __str__(self) -> str:
        return self.username


# =============================================================================
# OUTCOME TYPES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class AuthOutcome:
    """Base class of the values returned by an authentication attempt."""

    @property
    def success(self) -> bool:
        return False


@attrs.define(frozen=True, slots=True)
class Authenticated(AuthOutcome):
    """The request carries a validated CAS identity."""

    principal: Principal = field(validator=validators.instance_of(Principal))

    @property
    def success(self) -> bool:
        return True


@attrs.define(frozen=True, slots=True)
class Failed(AuthOutcome):
    """
    Authentication failed.

    Attributes:
        reason: Human-readable failure reason
        code: CAS failure code or casauth error class code
    """

    reason: str = field(validator=[validators.instance_of(str), validators.min_len(1)])
    code: Optional[str] = None


@attrs.define(frozen=True, slots=True)
class Redirecting(AuthOutcome):
    """
    The current request must end with an HTTP 302 to ``url``.

    The host pipeline terminates the response; the flow resumes on the
    next request.
    """

    url: str = field(validator=[validators.instance_of(str), validators.min_len(1)])
    status: int = 302


@attrs.define(frozen=True, slots=True)
class SingleSignOut(AuthOutcome):
    """
    A back-channel logout notification from the CAS server was consumed.

    ``session_index`` is the service ticket the ended session was opened with.
    The host should answer the CAS server with an empty 200 response.
    """

    session_index: str


AuthResult = Union[Authenticated, Failed, Redirecting, SingleSignOut]


# =============================================================================
# REQUEST
# =============================================================================


@attrs.define
class CasRequest:
    """
    Inbound HTTP request as seen by the CAS client.

    ``session`` is the host-owned session mapping; the client only reads
    and writes its own keys in it.
    """

    url: str = field(validator=validators.instance_of(str))
    method: str = field(default="GET", converter=str.upper)
    form: Dict[str, str] = field(factory=dict)
    remote_addr: str = ""
    session: MutableMapping[str, Any] = field(factory=dict)

    @property
    def scheme(self) -> str:
        return urlsplit(self.url).scheme

    @property
    def host(self) -> str:
        return urlsplit(self.url).netloc

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    @property
    def params(self) -> Dict[str, str]:
        """Query string parameters (last value wins)."""
        return dict(parse_qsl(urlsplit(self.url).query, keep_blank_values=True))

    @property
    def is_post(self) -> bool:
        return self.method == "POST"

    @property
    def ticket(self) -> Optional[str]:
        """Service ticket from the query string, if present and non-empty."""
        return self.params.get(TICKET_PARAM) or None

    @classmethod
    def from_wsgi(
        cls,
        environ: Mapping[str, Any],
        session: Optional[MutableMapping[str, Any]] = None,
    ) -> CasRequest:
        """
        Build a request from a WSGI environ.

        Form data is read only for urlencoded POST bodies.
        """
        from wsgiref.util import request_uri

        method = environ.get("REQUEST_METHOD", "GET")
        form: Dict[str, str] = {}
        content_type = environ.get("CONTENT_TYPE", "")
        if method.upper() == "POST" and content_type.startswith(
            "application/x-www-form-urlencoded"
        ):
            try:
                length = int(environ.get("CONTENT_LENGTH") or 0)
            except ValueError:
                length = 0
            body = environ["wsgi.input"].read(length) if length > 0 else b""
            # Undecodable bytes become U+FFFD; the logout parser then rejects them
            form = dict(
                parse_qsl(body.decode("utf-8", errors="replace"), keep_blank_values=True)
            )

        return cls(
            url=request_uri(dict(environ), include_query=True),
            method=method,
            form=form,
            remote_addr=environ.get("REMOTE_ADDR", ""),
            session=session if session is not None else {},
        )
