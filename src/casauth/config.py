"""
casauth Configuration

Resolution of CAS client settings from the host's configuration sources.

Settings can come from a global source (e.g. a ``CAS`` section of the
host application's config, or the process environment) and a local
source (the options the authenticator is constructed with). Local values
override global ones. Older key names are rewritten before merging.

Recognized keys:
    cas_host             CAS server domain, e.g. "sso.example.com" (required)
    cas_port             CAS server port (default 443)
    cas_context          URL path the CAS server listens on, e.g. "/cas"
    client_service_name  Base URL of this application, "scheme://host[:port]"
    cert_path            CA bundle used to validate the CAS server certificate
    curlopts             Extra transport options (alias: extra_transport_options)
    debug                Enable protocol-level debug logging (default False)
    timeout              Seconds to wait for the CAS server (default 10)

Legacy aliases:
    hostname -> cas_host, port -> cas_port, uri -> cas_context
"""

from __future__ import annotations

import os
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import attrs
import structlog
from attrs import field

from casauth.core.exceptions import ConfigurationError
from casauth.core.types import CasRequest

logger = structlog.get_logger()


LEGACY_KEYS = {
    "hostname": "cas_host",
    "port": "cas_port",
    "uri": "cas_context",
}

DEFAULT_CONFIG: Dict[str, Any] = {
    "cas_host": None,
    "cas_port": 443,
    "cas_context": "",
    "client_service_name": None,
    "debug": False,
}

ENV_KEYS = {
    "CAS_HOST": "cas_host",
    "CAS_PORT": "cas_port",
    "CAS_CONTEXT": "cas_context",
    "CAS_SERVICE_NAME": "client_service_name",
    "CAS_CERT_PATH": "cert_path",
    "CAS_DEBUG": "debug",
    "CAS_TIMEOUT": "timeout",
}

_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _to_port(value: Any) -> int:
    if value is None or value == "":
        return 443
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"cas_port must be an integer, got {value!r}")
    if not 0 < port < 65536:
        raise ConfigurationError(f"cas_port out of range: {port}")
    return port


def _to_timeout(value: Any) -> float:
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"timeout must be a number, got {value!r}")
    if timeout <= 0:
        raise ConfigurationError("timeout must be positive")
    return timeout


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _frozen_mapping(value: Any) -> Mapping[str, Any]:
    return MappingProxyType(dict(value or {}))


# =============================================================================
# CONFIGURATION
# =============================================================================


@attrs.define(frozen=True)
class CasConfig:
    """
    Resolved CAS client configuration.

    Created once per process and immutable thereafter.

    Attributes:
        cas_host: CAS server domain (required, non-empty)
        cas_port: CAS server port
        cas_context: URL path prefix of the CAS server, may be empty
        service_base_url: Base URL of this application; derived from the
            current request when None
        cert_path: CA bundle path; None disables server certificate
            validation
        extra_transport_options: Passed verbatim to the HTTP transport (read-only)
        debug: Enable protocol-level debug logging
        timeout: Seconds to wait for the CAS server on each call
    """

    cas_host: str = field()
    cas_port: int = field(default=443, converter=_to_port)
    cas_context: str = field(default="", converter=lambda v: "" if v is None else str(v))
    service_base_url: Optional[str] = field(default=None, converter=_optional_str)
    cert_path: Optional[str] = field(default=None, converter=_optional_str)
    extra_transport_options: Mapping[str, Any] = field(factory=dict, converter=_frozen_mapping)
    debug: bool = field(default=False, converter=_to_bool)
    timeout: float = field(default=10.0, converter=_to_timeout)

    @cas_host.validator
    def _check_host(self, attribute: attrs.Attribute, value: Any) -> None:
        if not isinstance(value, str) or not value.strip():
            raise ConfigurationError("cas_host is required and must be a non-empty string")

    @classmethod
    def from_mapping(cls, settings: Mapping[str, Any]) -> CasConfig:
        """
        Build a config from a flat settings mapping (canonical key names).

        Unknown keys are ignored.
        """
        options: Dict[str, Any] = {}
        options.update(settings.get("curlopts") or {})
        options.update(settings.get("extra_transport_options") or {})

        kwargs: Dict[str, Any] = {
            "cas_host": settings.get("cas_host"),
            "cas_port": settings.get("cas_port", 443),
            "cas_context": settings.get("cas_context", ""),
            "service_base_url": settings.get("client_service_name"),
            "cert_path": settings.get("cert_path"),
            "extra_transport_options": options,
            "debug": settings.get("debug", False),
        }
        if settings.get("timeout") not in (None, ""):
            kwargs["timeout"] = settings["timeout"]
        return cls(**kwargs)


# =============================================================================
# RESOLUTION
# =============================================================================


def remap_legacy_keys(raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Rewrite legacy key names to their canonical form.

    A legacy key is used only when the canonical key is absent or empty.

    Example:
        {"hostname": "sso.example.com", "port": 8443, "uri": "/cas"}
        -> {"cas_host": "sso.example.com", "cas_port": 8443, "cas_context": "/cas"}
    """
    config = dict(raw or {})
    for legacy, canonical in LEGACY_KEYS.items():
        if not config.get(canonical) and config.get(legacy):
            config[canonical] = config.pop(legacy)
    return config


def resolve_config(
    global_config: Optional[Mapping[str, Any]] = None,
    local_config: Optional[Mapping[str, Any]] = None,
    request: Optional[CasRequest] = None,
) -> CasConfig:
    """
    Merge configuration sources into a CasConfig.

    Legacy keys are rewritten in each source before merging; local values
    override global ones. When no ``client_service_name`` is configured and
    a request is given, it is derived from the request's scheme and host.

    Raises:
        ConfigurationError: If the merged settings are invalid
    """
    settings = dict(DEFAULT_CONFIG)
    settings.update(remap_legacy_keys(global_config))
    settings.update(remap_legacy_keys(local_config))

    if not settings.get("client_service_name") and request is not None:
        settings["client_service_name"] = f"{request.scheme}://{request.host}"

    config = CasConfig.from_mapping(settings)
    logger.debug(
        "config_resolved",
        cas_host=config.cas_host,
        cas_port=config.cas_port,
        cas_context=config.cas_context,
        service_base_url=config.service_base_url,
        server_validation=config.cert_path is not None,
    )
    return config


def load_env_config(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Read a global settings mapping from environment variables.

    Only variables that are set are included.
    """
    environ = os.environ if environ is None else environ
    return {key: environ[var] for var, key in ENV_KEYS.items() if var in environ}
