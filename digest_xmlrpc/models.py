"""Internal data models for digest-xmlrpc.

All models use Pydantic v2. See DESIGN.md "Data Model" for how they map onto
the client's call flow.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Target Models
# =============================================================================


class Credentials(BaseModel):
    """A username/password pair for basic or digest authentication.

    Accepts the ``{"user": ..., "pass": ...}`` shape used in client options.
    Either half may be missing; such a pair is ignored for basic auth and
    rejected when a digest challenge has to be answered.
    """

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    user: str | None = Field(default=None, description="Username")
    password: str | None = Field(default=None, alias="pass", description="Password")

    @property
    def complete(self) -> bool:
        return self.user is not None and self.password is not None


class TargetConfig(BaseModel):
    """Canonical description of the server a Client talks to.

    Created once at client construction and never mutated afterwards. Calls
    take a private copy of the headers via request_headers() and put their
    Content-Length and digest Authorization on that copy.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    host: str = Field(min_length=1, description="Server hostname or IP address")
    port: int = Field(ge=1, le=65535, description="Server port")
    path: str = Field(default="/", description="Request path for every method call")
    secure: bool = Field(default=False, description="True to use HTTPS, False for plain HTTP")
    headers: dict[str, str] = Field(
        default_factory=dict, description="Headers sent with every request"
    )
    basic_auth: Credentials | None = Field(default=None, description="Basic credentials")
    digest_auth: Credentials | None = Field(
        default=None, description="Digest credentials, used only when challenged"
    )
    response_encoding: str = Field(default="utf-8", description="Text encoding of responses")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify the server certificate")
    ca_bundle: str | None = Field(default=None, description="Path to a CA bundle")
    cert: str | None = Field(default=None, description="Client certificate for mTLS")
    key: str | None = Field(default=None, description="Client private key for mTLS")
    key_password: str | None = Field(default=None, description="Password for the client key")
    ciphers: str | None = Field(default=None, description="OpenSSL cipher string")

    @field_validator("path")
    @classmethod
    def normalize_path(cls, v: str) -> str:
        if not v:
            return "/"
        if not v.startswith("/"):
            return "/" + v
        return v

    @property
    def scheme(self) -> str:
        return "https" if self.secure else "http"

    @property
    def base_url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{self.scheme}://{host}:{self.port}"

    def request_headers(self) -> dict[str, str]:
        """Return a fresh copy of the configured headers for one call."""
        return dict(self.headers)


# =============================================================================
# Call Models
# =============================================================================


class MethodCall(BaseModel):
    """One XML-RPC invocation: a method name and its ordered parameters."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    method_name: str = Field(min_length=1, description="Remote method name")
    params: tuple[Any, ...] = Field(default=(), description="Positional parameters")


class DigestChallenge(BaseModel):
    """A parsed ``WWW-Authenticate: Digest ...`` challenge.

    Fields other than realm, nonce, qop and algorithm are kept in ``extra``
    in the order the server sent them.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    realm: str = Field(description="Protection space announced by the server")
    nonce: str = Field(description="Server nonce, may contain '='")
    qop: str = Field(default="auth", description="Quality of protection")
    algorithm: str | None = Field(default=None, description="Hash algorithm, if announced")
    extra: dict[str, str] = Field(default_factory=dict, description="Other challenge fields")


class TransportResponse(BaseModel):
    """One HTTP response as delivered by a transport.

    Header keys are lowercase. Header values are arrays for repeated headers.
    """

    model_config = ConfigDict(extra="forbid")

    status_code: int = Field(description="HTTP status code")
    headers: dict[str, list[str]] = Field(
        default_factory=dict, description="Response headers (lowercase keys, array values)"
    )
    content: bytes = Field(default=b"", description="Raw response body")
    elapsed_ms: float = Field(default=0.0, description="Response time in milliseconds")

    def header_values(self, name: str) -> list[str]:
        return self.headers.get(name.lower(), [])


# =============================================================================
# Config File Models
# =============================================================================


class TargetOptions(BaseModel):
    """One named target in a YAML client config file.

    Either ``uri`` or ``host`` + ``port`` must be given; build_target()
    enforces that.
    """

    model_config = ConfigDict(extra="forbid")

    uri: str | None = Field(default=None, description="Server URI, e.g. http://host:8080/RPC2")
    host: str | None = Field(default=None, description="Server hostname")
    port: int | None = Field(default=None, description="Server port")
    path: str | None = Field(default=None, description="Request path")
    secure: bool = Field(default=False, description="Use HTTPS")
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Headers to include (supports ${ENV_VAR} substitution)",
    )
    basic_auth: Credentials | None = Field(default=None, description="Basic credentials")
    digest_auth: Credentials | None = Field(default=None, description="Digest credentials")
    response_encoding: str | None = Field(default=None, description="Response text encoding")
    timeout: float | None = Field(default=None, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify the server certificate")
    ca_bundle: str | None = Field(default=None, description="Path to a CA bundle")
    cert: str | None = Field(default=None, description="Client certificate for mTLS")
    key: str | None = Field(default=None, description="Client private key for mTLS")
    key_password: str | None = Field(default=None, description="Password for the client key")
    ciphers: str | None = Field(default=None, description="OpenSSL cipher string")

    def to_options(self) -> dict[str, Any]:
        """Return the options accepted by build_target() for this target."""
        return self.model_dump(exclude_none=True, exclude={"secure"}, by_alias=True)


class ClientConfigFile(BaseModel):
    """Top-level YAML client config file structure."""

    model_config = ConfigDict(extra="forbid")

    targets: dict[str, TargetOptions] = Field(description="Target name -> options mapping")
