import re
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

DEFAULT_SCHEME = "https"
ALLOWED_SCHEMES = ("http", "https")

# RFC 9110 token
_METHOD_TOKEN = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class RouteEntry(_FrozenModel):
    """A single routing rule.

    A route is either static (``static_file_path`` set) or forwarding. When
    both are populated the static mode wins and the rewrite fields are
    ignored.
    """

    method: str = Field("", validation_alias=AliasChoices("Method", "method"))
    match_path: str = Field(
        "", validation_alias=AliasChoices("PathAccess", "matchPath", "match_path")
    )
    rewrite_path: str = Field(
        "", validation_alias=AliasChoices("PathRedirect", "rewritePath", "rewrite_path")
    )
    rewrite_host: str = Field(
        "", validation_alias=AliasChoices("DominRedirect", "rewriteHost", "rewrite_host")
    )
    scheme: str = Field("", validation_alias=AliasChoices("Scheme", "scheme"))
    static_file_path: str = Field(
        "",
        validation_alias=AliasChoices("PathFile", "staticFilePath", "static_file_path"),
    )

    @field_validator("*", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return "" if value is None else value

    @field_validator("method")
    @classmethod
    def _check_method(cls, value: str) -> str:
        value = value.strip()
        if value and not _METHOD_TOKEN.fullmatch(value):
            raise ValueError(f"invalid HTTP method: {value!r}")
        return value

    @field_validator("scheme")
    @classmethod
    def _check_scheme(cls, value: str) -> str:
        value = value.strip().lower()
        if value and value not in ALLOWED_SCHEMES:
            raise ValueError(
                f"unsupported scheme {value!r}, expected one of {ALLOWED_SCHEMES}"
            )
        return value

    @property
    def is_static(self) -> bool:
        return bool(self.static_file_path)

    @property
    def effective_scheme(self) -> str:
        return self.scheme or DEFAULT_SCHEME


class ProxyConfig(_FrozenModel):
    """Top-level configuration, loaded once and never mutated."""

    own_address: str = Field(
        "", validation_alias=AliasChoices("YourIp", "ownAddress", "own_address")
    )
    http_port: str = Field(
        "", validation_alias=AliasChoices("HttpPort", "httpPort", "http_port")
    )
    https_port: str = Field(
        "", validation_alias=AliasChoices("HttpsPort", "httpsPort", "https_port")
    )
    cert_path: str = Field(
        "", validation_alias=AliasChoices("CertFilePath", "certPath", "cert_path")
    )
    key_path: str = Field(
        "", validation_alias=AliasChoices("KeyFilePath", "keyPath", "key_path")
    )
    routes: Dict[str, RouteEntry] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("RedirectMap", "routeTable", "routes"),
    )

    @field_validator(
        "own_address", "http_port", "https_port", "cert_path", "key_path",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value) -> Optional[str]:
        if value is None:
            return ""
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("routes", mode="before")
    @classmethod
    def _none_as_no_routes(cls, value):
        return {} if value is None else value

    @property
    def tls_configured(self) -> bool:
        return bool(self.https_port and self.cert_path and self.key_path)

    @property
    def missing_tls_fields(self) -> List[str]:
        """TLS settings left empty while at least one other TLS setting is set."""
        fields = {
            "httpsPort": self.https_port,
            "certPath": self.cert_path,
            "keyPath": self.key_path,
        }
        if not any(fields.values()):
            return []
        return [name for name, value in fields.items() if not value]

