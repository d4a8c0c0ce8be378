"""
casauth Protocol Client

Process-wide CAS 2.0 client.

The client owns the protocol state shared by every request handled in the
process: server coordinates, transport settings and the single sign-out
session terminator. It is initialized exactly once; the authenticator is
constructed per request and calls ``initialize`` every time, so later calls
are no-ops.

Protocol walkthrough:
1. Request without CAS session and without ticket
   -> Redirecting(https://cas/login?service=<service url>)
2. CAS server redirects back with ?ticket=ST-...
   -> GET https://cas/serviceValidate?service=...&ticket=ST-...
   -> Authenticated(principal) or Failed(reason)
3. Later requests find the user in the host session
   -> Authenticated(principal) without a network call
4. Logout
   -> Redirecting(https://cas/logout?url=<return url>)
5. CAS server POSTs logoutRequest (back channel) when the central session ends
   -> SingleSignOut(session_index)
"""

from __future__ import annotations

import socket
import threading
import xml.etree.ElementTree as ET
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from urllib.parse import parse_qsl, urlencode, urlsplit

import attrs
import structlog
from returns.result import Failure, Result, Success

from casauth.config import CasConfig, resolve_config
from casauth.core.exceptions import (
    CasAuthError,
    ProtocolError,
    StateError,
    TicketValidationError,
    TransportError,
)
from casauth.core.types import (
    CAS_VERSION_2_0,
    TICKET_PARAM,
    AuthResult,
    Authenticated,
    CasRequest,
    Failed,
    Principal,
    Redirecting,
    SingleSignOut,
)
from casauth.transport import CasTransport

logger = structlog.get_logger()


CAS_NAMESPACE = "http://www.yale.edu/tp/cas"
NS = {"cas": CAS_NAMESPACE}

# Key under which the client keeps its state in the host session
SESSION_KEY = "casauth"

# Form field carrying the back-channel SAML logout request
LOGOUT_REQUEST_FIELD = "logoutRequest"

# Elements of authenticationSuccess that are not user attributes
_NON_ATTRIBUTE_ELEMENTS = frozenset({"user", "proxyGrantingTicket", "proxies"})

SessionTerminator = Callable[[str], None]


def _local_name(tag: str) -> str:
    """Strip the namespace from an ElementTree tag."""
    return tag.rsplit("}", 1)[-1]


def _add_attribute(attributes: Dict[str, Any], name: str, value: Any) -> None:
    """Add an attribute value; repeated names collect into a list."""
    if name not in attributes:
        attributes[name] = value
    elif isinstance(attributes[name], list):
        attributes[name].append(value)
    else:
        attributes[name] = [attributes[name], value]


def _parse_attributes(success: ET.Element) -> Dict[str, Any]:
    """
    Collect user attributes from an authenticationSuccess element.

    Handles the three layouts found in CAS 2.0 deployments:
        <cas:attributes><cas:role>admin</cas:role></cas:attributes>
        <cas:role>admin</cas:role>                    (directly under success)
        <cas:attribute name="role" value="admin"/>
    """
    attributes: Dict[str, Any] = {}
    for child in success:
        name = _local_name(child.tag)
        if name in _NON_ATTRIBUTE_ELEMENTS:
            continue
        if name == "attributes":
            for item in child:
                _add_attribute(attributes, _local_name(item.tag), (item.text or "").strip())
        elif name == "attribute" and "name" in child.attrib:
            _add_attribute(attributes, child.attrib["name"], child.attrib.get("value", ""))
        else:
            _add_attribute(attributes, name, (child.text or "").strip())
    return attributes


def parse_service_response(payload: Union[str, bytes]) -> Result[Principal, CasAuthError]:
    """
    Parse a CAS 2.0 serviceValidate response.

    Pass the raw response bytes so the XML declaration (UTF-8 by default)
    decides the encoding, not the HTTP Content-Type charset.

    Returns:
        Success(Principal) for authenticationSuccess
        Failure(TicketValidationError) for authenticationFailure
        Failure(ProtocolError) for anything else
    """
    try:
        root = ET.fromstring(payload.strip())
    except ET.ParseError as e:
        return Failure(ProtocolError(f"Malformed CAS response: {e}"))

    if _local_name(root.tag) != "serviceResponse":
        return Failure(ProtocolError(f"Unexpected CAS response element: {root.tag}"))

    success = root.find("cas:authenticationSuccess", NS)
    if success is not None:
        username = (success.findtext("cas:user", default="", namespaces=NS) or "").strip()
        if not username:
            return Failure(ProtocolError("CAS response has no user"))
        return Success(Principal(username=username, attributes=_parse_attributes(success)))

    failure = root.find("cas:authenticationFailure", NS)
    if failure is not None:
        code = failure.attrib.get("code", TicketValidationError.INTERNAL_ERROR)
        return Failure(TicketValidationError(code, (failure.text or "").strip()))

    return Failure(ProtocolError("CAS response has neither success nor failure"))


def parse_logout_request(payload: str) -> Result[str, CasAuthError]:
    """Extract the SessionIndex (service ticket) from a SAML LogoutRequest."""
    try:
        root = ET.fromstring(payload.strip())
    except ET.ParseError as e:
        return Failure(ProtocolError(f"Malformed logout request: {e}"))

    for element in root.iter():
        if _local_name(element.tag) == "SessionIndex":
            index = (element.text or "").strip()
            if index:
                return Success(index)
    return Failure(ProtocolError("Logout request has no SessionIndex"))


# =============================================================================
# CAS CLIENT
# =============================================================================


@attrs.define
class CasClient:
    """
    Process-wide CAS protocol client.

    One instance is shared by every authenticator in the process (see
    ``default_client``). ``initialize`` is guarded by a lock so concurrent
    first requests cannot both configure it.

    Example:
        client = CasClient()
        client.initialize(CasConfig(cas_host="sso.example.com", cas_context="/cas"))

        outcome = client.force_authentication(request)
        if isinstance(outcome, Redirecting):
            return redirect(outcome.url)
    """

    _lock: threading.Lock = attrs.Factory(threading.Lock)
    _initialized: bool = False
    _config: Optional[CasConfig] = None
    _transport: Optional[CasTransport] = None
    _debug: bool = False
    _session_terminators: List[SessionTerminator] = attrs.Factory(list)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    # -------------------------------------------------------------------------
    # Initialization
    # -------------------------------------------------------------------------

    def initialize(self, config: Any) -> None:
        """
        Initialize the client once per process.

        Later calls are no-ops and do not touch the transport.

        Args:
            config: CasConfig, or a settings mapping resolved with
                ``resolve_config``

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        if not isinstance(config, CasConfig):
            config = resolve_config(local_config=config)

        with self._lock:
            if self._initialized:
                self._logger.debug("client_already_initialized", cas_host=self._config.cas_host)
                return

            transport = CasTransport(timeout=config.timeout)
            if config.extra_transport_options:
                transport.set_options(config.extra_transport_options)
            if config.cert_path:
                transport.set_ca_cert(config.cert_path)
            else:
                transport.disable_server_validation()

            self._config = config
            self._transport = transport
            self._debug = config.debug
            self._initialized = True

        if self._debug:
            self._logger = self._logger.bind(cas_host=config.cas_host)
        self._logger.info(
            "client_initialized",
            version=CAS_VERSION_2_0,
            cas_host=config.cas_host,
            cas_port=config.cas_port,
            cas_context=config.cas_context,
            service_base_url=config.service_base_url,
            debug=config.debug,
        )

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def version(self) -> str:
        return CAS_VERSION_2_0

    @property
    def config(self) -> CasConfig:
        return self._require_initialized()

    @property
    def transport(self) -> CasTransport:
        self._require_initialized()
        return self._transport

    @property
    def debug_enabled(self) -> bool:
        return self._debug

    def _require_initialized(self) -> CasConfig:
        if not self._initialized or self._config is None:
            raise StateError("CAS client is not initialized")
        return self._config

    def _trace(self, event: str, **kw: Any) -> None:
        """Protocol-level debug logging, emitted only when debug is enabled."""
        if self._debug:
            self._logger.debug(event, **kw)

    # -------------------------------------------------------------------------
    # URLs
    # -------------------------------------------------------------------------

    @property
    def server_base_url(self) -> str:
        """
        Base URL of the CAS server, always ending with a slash.

        The port is omitted when it is the HTTPS default.
        """
        config = self._require_initialized()
        context = "/" + config.cas_context.strip("/")
        if not context.endswith("/"):
            context += "/"
        port = "" if config.cas_port == 443 else f":{config.cas_port}"
        return f"https://{config.cas_host}{port}{context}"

    def login_url(self, service: str, renew: bool = False, gateway: bool = False) -> str:
        params = {"service": service}
        if renew:
            params["renew"] = "true"
        if gateway:
            params["gateway"] = "true"
        return f"{self.server_base_url}login?{urlencode(params)}"

    def logout_url(self, return_url: Optional[str] = None) -> str:
        url = f"{self.server_base_url}logout"
        if return_url:
            url += "?" + urlencode({"url": return_url})
        return url

    @property
    def service_validate_url(self) -> str:
        return f"{self.server_base_url}serviceValidate"

    def service_url(self, request: CasRequest) -> str:
        """
        URL the CAS server redirects back to for this request.

        The configured service base URL (or the request's scheme and host)
        followed by the request path and query, without the ticket parameter.
        """
        config = self._require_initialized()
        base = config.service_base_url or f"{request.scheme}://{request.host}"
        parts = urlsplit(request.url)
        query = urlencode(
            [
                (key, value)
                for key, value in parse_qsl(parts.query, keep_blank_values=True)
                if key != TICKET_PARAM
            ]
        )
        url = base.rstrip("/") + (parts.path or "/")
        if query:
            url += "?" + query
        return url

    # -------------------------------------------------------------------------
    # Session state
    # -------------------------------------------------------------------------

    def is_authenticated(self, request: CasRequest) -> bool:
        """True if the host session carries a CAS-authenticated user."""
        return bool(self.get_user(request))

    def get_user(self, request: CasRequest) -> Optional[str]:
        state = request.session.get(SESSION_KEY) or {}
        return state.get("user") or None

    def get_attributes(self, request: CasRequest) -> Dict[str, Any]:
        state = request.session.get(SESSION_KEY) or {}
        return dict(state.get("attributes") or {})

    def _remember(self, request: CasRequest, principal: Principal, ticket: str) -> None:
        request.session[SESSION_KEY] = {
            "user": principal.username,
            "attributes": dict(principal.attributes),
            "ticket": ticket,
        }

    def _forget(self, request: CasRequest) -> None:
        request.session.pop(SESSION_KEY, None)

    # -------------------------------------------------------------------------
    # Ticket validation
    # -------------------------------------------------------------------------

    def validate_ticket(self, ticket: str, service: str) -> Result[Principal, CasAuthError]:
        """
        Validate a service ticket against the CAS server.

        No retries: a failure is reported once.

        Returns:
            Success(Principal) or Failure(CasAuthError)
        """
        self._require_initialized()
        url = self.service_validate_url
        self._trace("ticket_validation_request", url=url, service=service, ticket=ticket)

        try:
            response = self._transport.get(url, params={"service": service, "ticket": ticket})
        except TransportError as e:
            self._logger.warning("ticket_validation_transport_error", error=e.message)
            return Failure(e)

        self._trace("ticket_validation_response", status=response.status_code, body=response.text)

        result = parse_service_response(response.content)
        if isinstance(result, Failure):
            error = result.failure()
            self._logger.warning(
                "ticket_validation_failed",
                code=error.code,
                error=error.message,
            )
        else:
            self._logger.info("ticket_validated", user=result.unwrap().username)
        return result

    def force_authentication(self, request: CasRequest) -> AuthResult:
        """
        Require a CAS identity for this request.

        Returns:
            Authenticated if the session is already authenticated or the
                request's ticket validates
            Failed if the ticket does not validate
            Redirecting to the CAS login page otherwise
        """
        self._require_initialized()

        user = self.get_user(request)
        if user:
            self._trace("previously_authenticated", user=user)
            return Authenticated(Principal(username=user, attributes=self.get_attributes(request)))

        service = self.service_url(request)
        ticket = request.ticket
        if ticket is None:
            url = self.login_url(service)
            self._logger.info("redirecting_to_cas_login", service=service)
            return Redirecting(url)

        result = self.validate_ticket(ticket, service)
        if isinstance(result, Failure):
            error = result.failure()
            return Failed(reason=error.message, code=error.code)

        principal = result.unwrap()
        self._remember(request, principal, ticket)
        return Authenticated(principal)

    # -------------------------------------------------------------------------
    # Logout
    # -------------------------------------------------------------------------

    def on_single_sign_out(self, terminator: SessionTerminator) -> SessionTerminator:
        """
        Register a callable that ends the host session opened with a ticket.

        Called with the session index (service ticket) of each back-channel
        logout request. Can be used as a decorator.
        """
        self._session_terminators.append(terminator)
        return terminator

    def handle_logout_requests(
        self,
        request: CasRequest,
        check_client: bool = True,
        allowed_clients: Iterable[str] = (),
    ) -> Optional[AuthResult]:
        """
        Consume a back-channel logout request from the CAS server.

        Args:
            request: Inbound request
            check_client: Only accept requests from ``allowed_clients``
            allowed_clients: Host names or addresses allowed to send logout
                requests (default: the CAS host)

        Returns:
            None if the request is not a logout request
            SingleSignOut once the matching session has been terminated
            Failed if the logout request is rejected or malformed
        """
        if not request.is_post or LOGOUT_REQUEST_FIELD not in request.form:
            return None

        config = self._require_initialized()
        if check_client:
            allowed = list(allowed_clients) or [config.cas_host]
            if not self._is_allowed_client(request.remote_addr, allowed):
                self._logger.warning("logout_request_rejected", remote_addr=request.remote_addr)
                return Failed(
                    reason=f"Logout request from unauthorized client {request.remote_addr}",
                    code="UNAUTHORIZED_CLIENT",
                )

        self._trace("logout_request_received", payload=request.form[LOGOUT_REQUEST_FIELD])
        result = parse_logout_request(request.form[LOGOUT_REQUEST_FIELD])
        if isinstance(result, Failure):
            error = result.failure()
            self._logger.warning("logout_request_invalid", error=error.message)
            return Failed(reason=error.message, code=error.code)

        session_index = result.unwrap()
        state = request.session.get(SESSION_KEY) or {}
        if state.get("ticket") == session_index:
            self._forget(request)
        for terminator in list(self._session_terminators):
            terminator(session_index)

        self._logger.info("single_sign_out", session_index=session_index)
        return SingleSignOut(session_index=session_index)

    def _is_allowed_client(self, remote_addr: str, allowed: Iterable[str]) -> bool:
        if not remote_addr:
            return False
        for host in allowed:
            if remote_addr == host:
                return True
            try:
                _, _, addresses = socket.gethostbyname_ex(host)
            except OSError as e:
                self._logger.debug("client_lookup_failed", host=host, error=str(e))
                continue
            if remote_addr in addresses:
                return True
        return False

    def logout(self, request: CasRequest, return_url: Optional[str] = None) -> Redirecting:
        """
        End the CAS session.

        Clears the client's session state and returns the redirect to the CAS
        logout page; the CAS server sends the browser on to ``return_url``.
        """
        self._require_initialized()
        self._forget(request)
        url = self.logout_url(return_url)
        self._logger.info("redirecting_to_cas_logout", return_url=return_url)
        return Redirecting(url)


# =============================================================================
# PROCESS-WIDE CLIENT
# =============================================================================


_default_client: Optional[CasClient] = None
_default_client_lock = threading.Lock()


def default_client() -> CasClient:
    """Return the process-wide CAS client, creating it on first use."""
    global _default_client
    with _default_client_lock:
        if _default_client is None:
            _default_client = CasClient()
        return _default_client


def reset_default_client() -> None:
    """Drop the process-wide client. Intended for test harnesses."""
    global _default_client
    with _default_client_lock:
        _default_client = None
