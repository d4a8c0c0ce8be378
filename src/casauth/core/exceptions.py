"""
casauth Exception Types

Custom exceptions for CAS client errors.
"""

from typing import Optional


class CasAuthError(Exception):
    """Base exception for all casauth errors."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigurationError(CasAuthError):
    """
    Client configuration is invalid.

    Raised at initialization time, before any network call is made.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, code="CONFIGURATION_ERROR")


class ProtocolError(CasAuthError):
    """
    Protocol-level error.

    The CAS server answered, but the response could not be understood
    (malformed XML, missing user element, unexpected status).
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, code="PROTOCOL_ERROR")


class TransportError(CasAuthError):
    """
    The CAS server could not be reached.

    Covers connection failures, timeouts and TLS certificate mismatches.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, code="TRANSPORT_ERROR")


class TicketValidationError(CasAuthError):
    """
    CAS server rejected the service ticket.

    Maps to the authenticationFailure codes of CAS protocol 2.0.
    """

    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_TICKET_SPEC = "INVALID_TICKET_SPEC"
    UNAUTHORIZED_SERVICE_PROXY = "UNAUTHORIZED_SERVICE_PROXY"
    INVALID_PROXY_CALLBACK = "INVALID_PROXY_CALLBACK"
    INVALID_TICKET = "INVALID_TICKET"
    INVALID_SERVICE = "INVALID_SERVICE"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    ERROR_MESSAGES = {
        INVALID_REQUEST: "Required validation parameters were missing",
        INVALID_TICKET_SPEC: "Ticket failed to meet validation requirements",
        UNAUTHORIZED_SERVICE_PROXY: "Service is not authorized to perform proxy authentication",
        INVALID_PROXY_CALLBACK: "Proxy callback is invalid",
        INVALID_TICKET: "Ticket is invalid, expired or already used",
        INVALID_SERVICE: "Ticket was not issued for this service",
        INTERNAL_ERROR: "CAS server internal error",
    }

    def __init__(self, code: str, message: Optional[str] = None) -> None:
        if not message:
            message = self.ERROR_MESSAGES.get(code, f"CAS validation error {code}")
        super().__init__(message, code)


class StateError(CasAuthError):
    """
    Invalid state transition.

    An operation was attempted that is not valid in the current flow state.
    """

    pass


class InvariantViolation(CasAuthError):
    """
    Flow invariant was violated.

    Indicates the flow reached a state it must never reach, such as an
    authenticated state without a username.
    """

    pass
