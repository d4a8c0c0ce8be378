"""
casauth - CAS Single Sign-On client

Drives a host application's authentication through the Central
Authentication Service (CAS) 2.0 ticket protocol: login redirects, service
ticket validation, attribute override hooks, client-initiated logout and
back-channel single sign-out.

Example Usage:
    from casauth import CasAuthenticator, CasRequest, Authenticated, Redirecting

    auth = CasAuthenticator({
        "cas_host": "sso.example.com",
        "cas_context": "/cas",
        "cert_path": "/etc/ssl/certs/cas-ca.pem",
    })

    outcome = auth.authenticate(CasRequest.from_wsgi(environ, session))
    if isinstance(outcome, Redirecting):
        ...  # respond 302 Location: outcome.url
    elif isinstance(outcome, Authenticated):
        print(f"Hello {outcome.principal.username}")
"""

from casauth.core.types import (
    Authenticated,
    CasRequest,
    Failed,
    Principal,
    Redirecting,
    SingleSignOut,
)
from casauth.config import CasConfig, load_env_config, resolve_config
from casauth.client import CasClient, default_client
from casauth.hooks import AttributeOverrideHook, AuthenticateEvent
from casauth.logout import AuthSubsystem, LogoutCoordinator, LogoutEvent
from casauth.authenticator import CasAuthenticator, create_authenticator

__version__ = "0.1.0"

__all__ = [
    # Main API
    "CasAuthenticator",
    "CasClient",
    "CasConfig",
    "create_authenticator",
    "default_client",
    "load_env_config",
    "resolve_config",
    # Hooks and logout
    "AttributeOverrideHook",
    "AuthenticateEvent",
    "AuthSubsystem",
    "LogoutCoordinator",
    "LogoutEvent",
    # Types
    "Authenticated",
    "CasRequest",
    "Failed",
    "Principal",
    "Redirecting",
    "SingleSignOut",
    # Metadata
    "__version__",
]
