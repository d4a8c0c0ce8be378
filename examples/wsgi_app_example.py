#!/usr/bin/env python3
"""
WSGI Application Protected by CAS

Demonstrates how a host application wires casauth into its request
pipeline:

1. Build a CasRequest from the WSGI environ and the host's session
2. Run the authenticator once per request
3. Turn Redirecting into a 302, Failed into a 403
4. Answer back-channel logout notifications with an empty 200
5. Route /logout through the two-leg CAS logout

Sessions are kept in memory, keyed by a cookie. Run with:

    CAS_HOST=sso.example.com CAS_CONTEXT=/cas python examples/wsgi_app_example.py
"""

import secrets
from http.cookies import SimpleCookie
from wsgiref.simple_server import make_server

from casauth import (
    Authenticated,
    CasRequest,
    Failed,
    LogoutEvent,
    Redirecting,
    SingleSignOut,
    create_authenticator,
    default_client,
    load_env_config,
)
from casauth.logout import SettingsAuthSubsystem


SESSIONS = {}
TICKET_SESSIONS = {}
AUTH_SETTINGS = SettingsAuthSubsystem({"logout_redirect": "/bye"})


@default_client().on_single_sign_out
def end_session(session_index):
    """Drop the local session opened with the given service ticket."""
    session_id = TICKET_SESSIONS.pop(session_index, None)
    SESSIONS.pop(session_id, None)


def load_session(environ):
    """Return (session_id, session); unknown visitors get an unstored session."""
    cookie = SimpleCookie(environ.get("HTTP_COOKIE", ""))
    session_id = cookie["sid"].value if "sid" in cookie else None
    if session_id in SESSIONS:
        return session_id, SESSIONS[session_id]
    return None, {}


def save_session(session_id, session):
    """Store a session once it holds data; returns the cookie headers to send."""
    if not session:
        return []
    if session_id is None:
        session_id = secrets.token_urlsafe(16)
        SESSIONS[session_id] = session
        ticket = session.get("casauth", {}).get("ticket")
        if ticket:
            TICKET_SESSIONS[ticket] = session_id
    return [("Set-Cookie", f"sid={session_id}; HttpOnly; Path=/")]


def app(environ, start_response):
    session_id, session = load_session(environ)
    request = CasRequest.from_wsgi(environ, session)
    auth = create_authenticator(global_config=load_env_config(), request=request)

    if request.path == "/bye":
        start_response("200 OK", [("Content-Type", "text/plain")])
        return [b"Signed out.\n"]

    if request.path == "/logout":
        outcome = auth.logout(LogoutEvent(request=request, subject=AUTH_SETTINGS))
        if isinstance(outcome, Redirecting):
            start_response("302 Found", [("Location", outcome.url)])
            return [b""]
        session.clear()
        SESSIONS.pop(session_id, None)
        start_response("302 Found", [("Location", "/bye")])
        return [b""]

    outcome = auth.authenticate(request)
    if isinstance(outcome, SingleSignOut):
        start_response("200 OK", [("Content-Type", "text/plain")])
        return [b""]
    if isinstance(outcome, Redirecting):
        start_response("302 Found", [("Location", outcome.url)])
        return [b""]
    if isinstance(outcome, Failed):
        start_response("403 Forbidden", [("Content-Type", "text/plain")])
        return [f"CAS authentication failed: {outcome.reason}\n".encode()]

    assert isinstance(outcome, Authenticated)
    headers = save_session(session_id, session)
    body = f"Hello {outcome.principal.username}\n{outcome.principal.attributes}\n"
    start_response("200 OK", headers + [("Content-Type", "text/plain")])
    return [body.encode()]


def main():
    with make_server("", 8000, app) as server:
        print("Serving on http://localhost:8000")
        server.serve_forever()


if __name__ == "__main__":
    main()
