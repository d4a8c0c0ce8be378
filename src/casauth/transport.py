"""
casauth HTTP Transport

Server-to-server HTTP transport for CAS ticket validation.

Wraps a requests Session and exposes the knobs the CAS client sets at
initialization:
- extra transport options, passed through to every request
- CAS server certificate policy (CA bundle or validation disabled)
- per-call timeout
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import attrs
import requests
import structlog

from casauth.core.exceptions import ConfigurationError, TransportError

logger = structlog.get_logger()


# Keyword arguments accepted by requests.Session.request
REQUEST_OPTIONS = frozenset({
    "headers",
    "cookies",
    "auth",
    "timeout",
    "allow_redirects",
    "proxies",
    "stream",
    "cert",
})

# Attributes set directly on the session
SESSION_OPTIONS = frozenset({
    "trust_env",
    "max_redirects",
})


@attrs.define
class CasTransport:
    """
    HTTP transport used to talk to the CAS server.

    Example:
        transport = CasTransport(timeout=5.0)
        transport.set_ca_cert("/etc/ssl/cas-ca.pem")
        transport.set_option("proxies", {"https": "http://proxy:3128"})
        response = transport.get(url, params={"ticket": "ST-1", "service": svc})
    """

    timeout: float = 10.0

    _session: requests.Session = attrs.Factory(requests.Session)
    _options: Dict[str, Any] = attrs.Factory(dict)
    _verify: Any = True
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def options(self) -> Dict[str, Any]:
        """Extra options applied to every request (copy)."""
        return dict(self._options)

    @property
    def verify(self) -> Any:
        """Certificate policy: True, False, or a CA bundle path."""
        return self._verify

    def set_option(self, key: str, value: Any) -> None:
        """
        Set an extra transport option.

        Raises:
            ConfigurationError: If the option is not understood by the transport
        """
        if key in SESSION_OPTIONS:
            setattr(self._session, key, value)
        elif key in REQUEST_OPTIONS:
            self._options[key] = value
        else:
            raise ConfigurationError(f"Unsupported transport option: {key}")
        self._logger.debug("transport_option_set", option=key)

    def set_options(self, options: Mapping[str, Any]) -> None:
        for key, value in options.items():
            self.set_option(key, value)

    def disable_server_validation(self) -> None:
        """Do not validate the CAS server certificate."""
        self._verify = False
        self._logger.warning(
            "cas_server_validation_disabled",
            message="CAS server certificate will not be validated",
        )

    def set_ca_cert(self, cert_path: str) -> None:
        """Validate the CAS server certificate against the given CA bundle."""
        self._verify = cert_path
        self._logger.debug("cas_server_ca_cert_set", cert_path=cert_path)

    def get(self, url: str, params: Optional[Mapping[str, str]] = None) -> requests.Response:
        """
        Perform a GET request against the CAS server.

        Raises:
            TransportError: On connection, TLS, timeout or HTTP status errors
        """
        kwargs = dict(self._options)
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self._session.get(url, params=params, verify=self._verify, **kwargs)
            response.raise_for_status()
        except requests.exceptions.SSLError as e:
            raise TransportError(f"TLS validation of CAS server failed: {e}")
        except requests.exceptions.Timeout as e:
            raise TransportError(f"CAS server timed out: {e}")
        except requests.exceptions.RequestException as e:
            raise TransportError(f"CAS server request failed: {e}")
        return response

    def close(self) -> None:
        self._session.close()
