"""Error taxonomy for the proxy.

Startup errors are fatal and abort the process. Per-request errors are
turned into a response for that request only.
"""


class ProxyError(Exception):
    """Base class for every error raised by confproxy."""


class StartupConfigError(ProxyError):
    """Configuration is missing, unreadable, malformed or incomplete."""


class CredentialMissingError(StartupConfigError):
    """HTTPS was requested but the certificate or key file does not exist."""

    def __init__(self, path: str, kind: str):
        self.path = path
        self.kind = kind
        super().__init__(f"{kind} file does not exist: {path}")


class BindConflictError(StartupConfigError):
    """Two routes would be bound to the same pattern."""

    def __init__(self, pattern: str, first: str, second: str):
        self.pattern = pattern
        self.host_keys = (first, second)
        super().__init__(
            f"pattern {pattern!r} is bound by both {first!r} and {second!r}"
        )


class UpstreamTransportError(ProxyError):
    """The outbound call failed before an upstream response was received."""

    def __init__(self, url: str, cause: Exception):
        self.url = url
        self.cause = cause
        super().__init__(str(cause))


class ListenerError(ProxyError):
    """A listener stopped abnormally."""
