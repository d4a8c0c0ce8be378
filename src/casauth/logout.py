"""
casauth Logout Coordination

Client-initiated CAS logout, which straddles a redirect:

Step 1. The user triggers the host's logout. While the CAS session is
        still alive, the coordinator returns a redirect to the CAS logout
        page carrying the absolute post-logout URL. The CAS server ends the
        central session and sends the browser back to that URL.

Step 2. The browser lands back on the logout URL. The CAS session is gone,
        so the coordinator does nothing and the host's own logout cleanup
        (destroying its local session) runs as usual.

Back-channel single sign-out (a logoutRequest POSTed by the CAS server)
is a different request entirely and is consumed by
``CasClient.handle_logout_requests``, not here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional
from urllib.parse import urljoin, urlsplit

import attrs
import structlog

from casauth.client import CasClient
from casauth.core.types import CasRequest, Redirecting

logger = structlog.get_logger()


LOGOUT_EVENT = "auth.logout"
LOGOUT_REDIRECT_KEY = "logout_redirect"

UrlBuilder = Callable[[str], str]


class AuthSubsystem(ABC):
    """
    Host authentication subsystem that can originate a logout event.

    Only subjects of this type are consulted for a post-logout destination.
    """

    @abstractmethod
    def get_config(self, key: str, default: Any = None) -> Any:
        ...


@attrs.define
class SettingsAuthSubsystem(AuthSubsystem):
    """AuthSubsystem backed by a plain settings mapping."""

    settings: Dict[str, Any] = attrs.Factory(dict)

    def get_config(self, key: str, default: Any = None) -> Any:
        return self.settings.get(key, default)


@attrs.define(frozen=True)
class LogoutEvent:
    """The host's logout trigger."""

    request: CasRequest
    subject: Any = None
    name: str = LOGOUT_EVENT


@attrs.define
class LogoutCoordinator:
    """
    Runs step 1 of the logout handshake and falls through on step 2.

    Attributes:
        client: Shared CAS client
        url_builder: Resolves a symbolic destination to an absolute URL;
            defaults to joining it onto the service base URL
        default_redirect: Destination used when none is configured
    """

    client: CasClient
    url_builder: Optional[UrlBuilder] = None
    default_redirect: str = "/"
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def on_logout(self, event: LogoutEvent) -> Optional[Redirecting]:
        """
        Handle the host's logout event.

        Returns:
            Redirecting to the CAS logout page while the CAS session is alive,
            None once it is gone
        """
        if not self.client.is_authenticated(event.request):
            self._logger.debug("logout_fallthrough")
            return None

        target = self.redirect_target(event)
        return_url = self.absolute_url(target, event.request)
        return self.client.logout(event.request, return_url)

    def redirect_target(self, event: LogoutEvent) -> str:
        """Configured post-logout destination of the event's subject, or the default."""
        target = None
        if isinstance(event.subject, AuthSubsystem):
            target = event.subject.get_config(LOGOUT_REDIRECT_KEY)
        return target or self.default_redirect

    def absolute_url(self, target: str, request: CasRequest) -> str:
        if self.url_builder is not None:
            return self.url_builder(target)
        if urlsplit(target).scheme:
            return target
        base = self.client.config.service_base_url or f"{request.scheme}://{request.host}"
        return urljoin(base.rstrip("/") + "/", target.lstrip("/"))
