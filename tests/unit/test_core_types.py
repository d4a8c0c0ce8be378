"""
Unit tests for casauth.core.types module.

Tests principal construction, outcome types and request parsing.
"""

import io

import attrs
import pytest

from casauth.core.types import (
    Authenticated,
    CasRequest,
    Failed,
    Principal,
    Redirecting,
    SingleSignOut,
)


class TestPrincipal:
    """Tests for Principal type."""

    def test_principal_creation(self):
        """Test principal creation with attributes."""
        principal = Principal(username="alice", attributes={"role": "admin"})
        assert principal.username == "alice"
        assert principal.attributes == {"role": "admin"}

    def test_principal_empty_username_rejected(self):
        """Test empty username is rejected."""
        with pytest.raises(ValueError):
            Principal(username="")

    def test_principal_immutable(self):
        """Test principal is immutable."""
        principal = Principal(username="alice")
        with pytest.raises(attrs.exceptions.FrozenInstanceError):
            principal.username = "bob"

    def test_from_mapping_nested(self):
        """Test nested mapping shape."""
        principal = Principal.from_mapping({"username": "alice2", "attributes": {}})
        assert principal == Principal(username="alice2", attributes={})

    def test_from_mapping_flat(self):
        """Test flat mapping shape."""
        principal = Principal.from_mapping({"username": "alice", "role": "admin"})
        assert principal.attributes == {"role": "admin"}

    def test_from_mapping_requires_username(self):
        with pytest.raises(ValueError):
            Principal.from_mapping({"role": "admin"})

    def test_as_user_dict(self):
        """Test flat user mapping merges username and attributes."""
        principal = Principal(username="alice", attributes={"role": "admin"})
        assert principal.as_user_dict() == {"username": "alice", "role": "admin"}


class TestOutcomes:
    """Tests for authentication outcome types."""

    def test_authenticated_is_success(self):
        outcome = Authenticated(Principal(username="alice"))
        assert outcome.success

    def test_failed_is_not_success(self):
        outcome = Failed(reason="Ticket is invalid", code="INVALID_TICKET")
        assert not outcome.success
        assert outcome.code == "INVALID_TICKET"

    def test_failed_requires_reason(self):
        with pytest.raises(ValueError):
            Failed(reason="")

    def test_redirecting_defaults_to_302(self):
        outcome = Redirecting(url="https://sso.example.com/login")
        assert outcome.status == 302
        assert not outcome.success

    def test_single_sign_out(self):
        outcome = SingleSignOut(session_index="ST-1")
        assert not outcome.success

    def test_authenticated_requires_principal(self):
        with pytest.raises(TypeError):
            Authenticated(principal={"username": "alice"})


class TestCasRequest:
    """Tests for CasRequest."""

    def test_url_parts(self):
        request = CasRequest(url="https://app.example.com/a/b?x=1&ticket=ST-1")
        assert request.scheme == "https"
        assert request.host == "app.example.com"
        assert request.path == "/a/b"
        assert request.params == {"x": "1", "ticket": "ST-1"}
        assert request.ticket == "ST-1"

    def test_empty_ticket_is_none(self):
        request = CasRequest(url="https://app.example.com/?ticket=")
        assert request.ticket is None

    def test_method_uppercased(self):
        request = CasRequest(url="https://app.example.com/", method="post")
        assert request.is_post

    def test_from_wsgi_get(self):
        environ = {
            "REQUEST_METHOD": "GET",
            "wsgi.url_scheme": "https",
            "HTTP_HOST": "app.example.com",
            "PATH_INFO": "/protected",
            "QUERY_STRING": "ticket=ST-9",
            "REMOTE_ADDR": "10.0.0.1",
        }
        session = {"k": "v"}
        request = CasRequest.from_wsgi(environ, session)
        assert request.url == "https://app.example.com/protected?ticket=ST-9"
        assert request.remote_addr == "10.0.0.1"
        assert request.session is session

    def test_from_wsgi_post_form(self):
        body = b"logoutRequest=%3CLogoutRequest%2F%3E"
        environ = {
            "REQUEST_METHOD": "POST",
            "wsgi.url_scheme": "https",
            "HTTP_HOST": "app.example.com",
            "PATH_INFO": "/",
            "CONTENT_TYPE": "application/x-www-form-urlencoded",
            "CONTENT_LENGTH": str(len(body)),
            "wsgi.input": io.BytesIO(body),
        }
        request = CasRequest.from_wsgi(environ)
        assert request.is_post
        assert request.form == {"logoutRequest": "<LogoutRequest/>"}
        assert request.session == {}

    def test_from_wsgi_post_form_invalid_utf8(self):
        """A body that is not UTF-8 still yields a request."""
        body = b"logoutRequest=\xff\xfe"
        environ = {
            "REQUEST_METHOD": "POST",
            "wsgi.url_scheme": "https",
            "HTTP_HOST": "app.example.com",
            "PATH_INFO": "/",
            "CONTENT_TYPE": "application/x-www-form-urlencoded",
            "CONTENT_LENGTH": str(len(body)),
            "wsgi.input": io.BytesIO(body),
        }
        request = CasRequest.from_wsgi(environ)
        assert request.form == {"logoutRequest": "\ufffd\ufffd"}
