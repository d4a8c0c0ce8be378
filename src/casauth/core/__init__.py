"""
casauth Core Module

Foundational types and abstractions used by the CAS client.

Components:
- types: Principal, authentication outcomes, CasRequest
- state_machine: Base state machine with invariant checking
- exceptions: Custom exception types
"""

from casauth.core.types import (
    CAS_VERSION_2_0,
    AuthOutcome,
    AuthResult,
    Authenticated,
    CasRequest,
    Failed,
    Principal,
    Redirecting,
    SingleSignOut,
)
from casauth.core.state_machine import StateMachineBase, Transition
from casauth.core.exceptions import (
    CasAuthError,
    ConfigurationError,
    InvariantViolation,
    ProtocolError,
    StateError,
    TicketValidationError,
    TransportError,
)

__all__ = [
    # Types
    "CAS_VERSION_2_0",
    "AuthOutcome",
    "AuthResult",
    "Authenticated",
    "CasRequest",
    "Failed",
    "Principal",
    "Redirecting",
    "SingleSignOut",
    # State Machine
    "StateMachineBase",
    "Transition",
    # Exceptions
    "CasAuthError",
    "ConfigurationError",
    "InvariantViolation",
    "ProtocolError",
    "StateError",
    "TicketValidationError",
    "TransportError",
]
