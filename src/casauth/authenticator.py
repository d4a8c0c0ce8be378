"""
casauth Authenticator

Forced CAS authentication for a host application's request pipeline.

The authenticator is constructed per request (like any pluggable
authenticator) and shares the process-wide CasClient. Its ``authenticate``
call never blocks on the browser: when a login redirect is needed it
returns ``Redirecting`` and the host ends the response; the flow resumes
on the next request, when the CAS server sends the browser back with a
ticket.

Flow states (per request):
- UNAUTHENTICATED: no CAS identity yet
- AWAITING_TICKET: redirected to CAS login
- AUTHENTICATED: ticket validated (or session already authenticated)
- FAILED: ticket rejected, server unreachable, malformed response
- SIGNED_OUT: back-channel logout notification consumed
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

import attrs
import structlog
from attrs import field

from casauth.client import CasClient, default_client
from casauth.config import CasConfig, resolve_config
from casauth.core.state_machine import StateMachineBase, TransitionEntry
from casauth.core.types import (
    AuthResult,
    Authenticated,
    CasRequest,
    Failed,
    Principal,
    Redirecting,
    SingleSignOut,
)
from casauth.hooks import AttributeOverrideHook
from casauth.logout import LOGOUT_EVENT, LogoutCoordinator, LogoutEvent, UrlBuilder

logger = structlog.get_logger()


# =============================================================================
# FLOW STATE MACHINE
# =============================================================================


class FlowState(Enum):
    """Authentication flow states."""

    UNAUTHENTICATED = auto()
    AWAITING_TICKET = auto()
    AUTHENTICATED = auto()
    FAILED = auto()
    SIGNED_OUT = auto()


@attrs.define
class FlowContext:
    """Per-request flow context."""

    username: Optional[str] = None
    redirect_url: Optional[str] = None
    error_code: Optional[str] = None
    error_message: str = ""
    session_index: Optional[str] = None


@attrs.define(frozen=True)
class LoginRedirectIssued:
    url: str


@attrs.define(frozen=True)
class TicketValidated:
    username: str


@attrs.define(frozen=True)
class ValidationFailed:
    reason: str
    code: Optional[str] = None


@attrs.define(frozen=True)
class LogoutNotified:
    session_index: str


def authenticated_requires_username(state: FlowState, ctx: FlowContext) -> bool:
    """Invariant: an authenticated flow always carries a non-empty username."""
    if state == FlowState.AUTHENTICATED:
        return bool(ctx.username)
    return True


def failed_requires_reason(state: FlowState, ctx: FlowContext) -> bool:
    """Invariant: a failed flow carries a reason and never a username."""
    if state == FlowState.FAILED:
        return ctx.username is None and bool(ctx.error_message)
    return True


@attrs.define
class AuthFlowStateMachine(StateMachineBase[FlowState, Any, FlowContext]):
    """State machine for one forced-authentication call."""

    def __attrs_post_init__(self) -> None:
        self.add_invariant("authenticated_requires_username", authenticated_requires_username)
        self.add_invariant("failed_requires_reason", failed_requires_reason)

    @classmethod
    def start(cls) -> AuthFlowStateMachine:
        return cls(_state=FlowState.UNAUTHENTICATED, _context=FlowContext())

    def initial_state(self) -> FlowState:
        return FlowState.UNAUTHENTICATED

    def transition_table(self) -> Dict[Tuple[FlowState, type], TransitionEntry]:
        return {
            (FlowState.UNAUTHENTICATED, LoginRedirectIssued): (
                FlowState.AWAITING_TICKET,
                self._handle_redirect,
            ),
            (FlowState.UNAUTHENTICATED, TicketValidated): (
                FlowState.AUTHENTICATED,
                self._handle_validated,
            ),
            (FlowState.UNAUTHENTICATED, ValidationFailed): (
                FlowState.FAILED,
                self._handle_failed,
            ),
            (FlowState.UNAUTHENTICATED, LogoutNotified): (
                FlowState.SIGNED_OUT,
                self._handle_logout_notified,
            ),
        }

    @staticmethod
    def _handle_redirect(event: LoginRedirectIssued, ctx: FlowContext) -> FlowContext:
        return attrs.evolve(ctx, redirect_url=event.url)

    @staticmethod
    def _handle_validated(event: TicketValidated, ctx: FlowContext) -> FlowContext:
        return attrs.evolve(ctx, username=event.username, error_code=None, error_message="")

    @staticmethod
    def _handle_failed(event: ValidationFailed, ctx: FlowContext) -> FlowContext:
        return attrs.evolve(
            ctx,
            username=None,
            error_code=event.code,
            error_message=event.reason,
        )

    @staticmethod
    def _handle_logout_notified(event: LogoutNotified, ctx: FlowContext) -> FlowContext:
        return attrs.evolve(ctx, session_index=event.session_index)


# =============================================================================
# AUTHENTICATOR
# =============================================================================


def _to_config(value: Union[CasConfig, Mapping[str, Any]]) -> CasConfig:
    if isinstance(value, CasConfig):
        return value
    return resolve_config(local_config=value)


@attrs.define
class CasAuthenticator:
    """
    CAS authenticator for the host's identity framework.

    An instance serves one request: ``flow`` holds the state of its latest
    ``authenticate`` call, so do not share an instance between threads.
    Construct one per request; the CasClient behind it is shared.

    Example:
        auth = CasAuthenticator({"cas_host": "sso.example.com", "cas_context": "/cas"})

        outcome = auth.authenticate(CasRequest.from_wsgi(environ, session))
        if isinstance(outcome, Redirecting):
            start_response("302 Found", [("Location", outcome.url)])
        elif isinstance(outcome, Authenticated):
            session["user"] = outcome.principal.as_user_dict()
    """

    config: CasConfig = field(converter=_to_config)
    client: CasClient = field(factory=default_client)
    hook: AttributeOverrideHook = field(factory=AttributeOverrideHook)
    url_builder: Optional[UrlBuilder] = None

    _flow: Optional[AuthFlowStateMachine] = None
    _logout: Optional[LogoutCoordinator] = None
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def __attrs_post_init__(self) -> None:
        self.client.initialize(self.config)
        self._logout = LogoutCoordinator(client=self.client, url_builder=self.url_builder)

    @property
    def flow(self) -> Optional[AuthFlowStateMachine]:
        """Flow state machine of the most recent ``authenticate`` call."""
        return self._flow

    def authenticate(self, request: CasRequest) -> AuthResult:
        """
        Force CAS authentication for the request.

        Back-channel logout notifications are consumed first and never
        treated as a login attempt.

        Returns:
            Authenticated(principal), Failed(reason), Redirecting(url), or
            SingleSignOut(session_index)

        Raises:
            Any exception raised by an attribute override listener
        """
        flow = AuthFlowStateMachine.start()
        self._flow = flow

        notification = self.client.handle_logout_requests(request, check_client=False)
        if isinstance(notification, SingleSignOut):
            flow.process_event(LogoutNotified(session_index=notification.session_index))
            return notification
        if isinstance(notification, Failed):
            flow.process_event(ValidationFailed(reason=notification.reason, code=notification.code))
            return notification

        outcome = self.client.force_authentication(request)
        if isinstance(outcome, Redirecting):
            flow.process_event(LoginRedirectIssued(url=outcome.url))
            return outcome
        if isinstance(outcome, Failed):
            flow.process_event(ValidationFailed(reason=outcome.reason, code=outcome.code))
            self._logger.info("authentication_failed", code=outcome.code, reason=outcome.reason)
            return outcome

        principal = self.hook.dispatch(outcome.principal)
        flow.process_event(TicketValidated(username=principal.username))
        self._logger.info("authenticated", user=principal.username)
        return Authenticated(principal)

    def get_user(self, request: CasRequest) -> Optional[Principal]:
        """
        Principal for a request whose session is already CAS-authenticated.

        Makes no network call and issues no redirect; returns None when the
        session carries no CAS user. Use ``authenticate`` to start a login.
        """
        username = self.client.get_user(request)
        if not username:
            return None
        draft = Principal(username=username, attributes=self.client.get_attributes(request))
        return self.hook.dispatch(draft)

    def logout(self, event: LogoutEvent) -> Optional[Redirecting]:
        """Host logout event handler; see LogoutCoordinator."""
        return self._logout.on_logout(event)

    def implemented_events(self) -> Dict[str, Callable[[LogoutEvent], Optional[Redirecting]]]:
        """Host events this authenticator subscribes to."""
        return {LOGOUT_EVENT: self.logout}


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================


def create_authenticator(
    local_config: Optional[Mapping[str, Any]] = None,
    global_config: Optional[Mapping[str, Any]] = None,
    request: Optional[CasRequest] = None,
    client: Optional[CasClient] = None,
    hook: Optional[AttributeOverrideHook] = None,
    url_builder: Optional[UrlBuilder] = None,
) -> CasAuthenticator:
    """
    Create an authenticator from raw configuration sources.

    Args:
        local_config: Authenticator options (override global ones)
        global_config: Application-wide CAS settings
        request: Current request, used to derive the service base URL
        client: CAS client to share (default: the process-wide client)
        hook: Attribute override hook
        url_builder: Post-logout destination resolver

    Example:
        auth = create_authenticator(
            {"hostname": "sso.example.com", "uri": "/cas"},
            global_config=load_env_config(),
            request=request,
        )
    """
    config = resolve_config(global_config, local_config, request)
    return CasAuthenticator(
        config=config,
        client=client if client is not None else default_client(),
        hook=hook if hook is not None else AttributeOverrideHook(),
        url_builder=url_builder,
    )
