from .config import load_config
from .errors import (
    BindConflictError,
    CredentialMissingError,
    ListenerError,
    ProxyError,
    StartupConfigError,
    UpstreamTransportError,
)
from .models import ProxyConfig, RouteEntry

__all__ = [
    "load_config",
    "BindConflictError",
    "CredentialMissingError",
    "ListenerError",
    "ProxyError",
    "StartupConfigError",
    "UpstreamTransportError",
    "ProxyConfig",
    "RouteEntry",
]
