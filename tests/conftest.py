"""
Pytest configuration and shared fixtures for casauth tests.
"""

import pytest
import responses

from casauth.client import CasClient, reset_default_client
from casauth.config import CasConfig
from casauth.core.types import CasRequest
from casauth.hooks import AttributeOverrideHook


CAS_BASE = "https://sso.example.com/cas/"
VALIDATE_URL = CAS_BASE + "serviceValidate"
APP_URL = "https://app.example.com"


# =============================================================================
# CAS RESPONSE PAYLOADS
# =============================================================================


def success_response(user: str = "alice", attributes: str = "") -> str:
    """CAS 2.0 authenticationSuccess payload."""
    return f"""
<cas:serviceResponse xmlns:cas="http://www.yale.edu/tp/cas">
    <cas:authenticationSuccess>
        <cas:user>{user}</cas:user>
        {attributes}
    </cas:authenticationSuccess>
</cas:serviceResponse>
"""


def failure_response(code: str = "INVALID_TICKET", message: str = "Ticket ST-1 not recognized") -> str:
    """CAS 2.0 authenticationFailure payload."""
    return f"""
<cas:serviceResponse xmlns:cas="http://www.yale.edu/tp/cas">
    <cas:authenticationFailure code="{code}">
        {message}
    </cas:authenticationFailure>
</cas:serviceResponse>
"""


LOGOUT_REQUEST = """
<samlp:LogoutRequest xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"
    xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion"
    ID="LR-1" Version="2.0" IssueInstant="2026-10-19T12:00:00Z">
    <saml:NameID>@NOT_USED@</saml:NameID>
    <samlp:SessionIndex>ST-1-abc</samlp:SessionIndex>
</samlp:LogoutRequest>
"""


# =============================================================================
# CONFIG AND CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def fresh_default_client():
    """Start and end the test without a process-wide client."""
    reset_default_client()
    yield
    reset_default_client()


@pytest.fixture
def cas_config() -> CasConfig:
    """Standard CAS configuration."""
    return CasConfig(
        cas_host="sso.example.com",
        cas_context="/cas",
        service_base_url=APP_URL,
        cert_path="/etc/ssl/cas-ca.pem",
    )


@pytest.fixture
def client(cas_config: CasConfig) -> CasClient:
    """Initialized CAS client."""
    client = CasClient()
    client.initialize(cas_config)
    return client


@pytest.fixture
def hook() -> AttributeOverrideHook:
    return AttributeOverrideHook()


@pytest.fixture
def mocked_responses():
    """Stub the CAS server."""
    with responses.RequestsMock() as rsps:
        yield rsps


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def make_request(path: str = "/protected", session=None, **kwargs) -> CasRequest:
    """Helper to create a request against the application."""
    return CasRequest(
        url=APP_URL + path,
        session=session if session is not None else {},
        **kwargs,
    )


@pytest.fixture
def request_factory():
    return make_request


# =============================================================================
# PYTEST MARKERS
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests requiring a real CAS server"
    )


@pytest.fixture
def cas_success():
    """Builder for authenticationSuccess payloads."""
    return success_response


@pytest.fixture
def cas_failure():
    """Builder for authenticationFailure payloads."""
    return failure_response


@pytest.fixture
def logout_request_xml() -> str:
    return LOGOUT_REQUEST
