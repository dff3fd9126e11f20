"""Transport - Sends one POST to the target and captures the response.

select_transport() makes the only decision in this module: plain HTTP or
HTTPS, from the client's is_secure flag. Both transports wrap an
httpx.AsyncClient and translate httpx failures into TransportError.
"""

from __future__ import annotations

import logging
import ssl
import time
from typing import Any

import httpx

from digest_xmlrpc.errors import ConfigurationError, TransportError
from digest_xmlrpc.models import TargetConfig, TransportResponse

logger = logging.getLogger(__name__)


class Transport:
    """Opens connections to a target, writes requests, and delivers responses.

    Usage:
        transport = select_transport(target.secure)(target)
        try:
            response = await transport.send("/RPC2", headers, body)
        finally:
            await transport.aclose()
    """

    scheme = "http"

    def __init__(
        self,
        target: TargetConfig,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            target: Target configuration (host, port, TLS settings, timeout).
            http_transport: Optional httpx transport to send through instead
                            of the network (e.g. httpx.MockTransport).
        """
        kwargs = self._build_client_kwargs(target)
        if http_transport is not None:
            kwargs["transport"] = http_transport
        self._base_url = kwargs["base_url"]
        self._client = httpx.AsyncClient(**kwargs)

    @property
    def base_url(self) -> str:
        return self._base_url

    def _build_client_kwargs(self, target: TargetConfig) -> dict[str, Any]:
        host = f"[{target.host}]" if ":" in target.host else target.host
        return {
            "base_url": f"{self.scheme}://{host}:{target.port}",
            "timeout": target.timeout,
        }

    async def send(
        self,
        path: str,
        headers: dict[str, str],
        content: bytes,
    ) -> TransportResponse:
        """POST content to path and return the response.

        Raises:
            TransportError: If the request fails (connection, DNS, timeout,
                            protocol error, or non-ASCII header data).
        """
        logger.debug("POST %s%s (%d bytes)", self._base_url, path, len(content))
        try:
            start_time = time.perf_counter()
            http_response = await self._client.post(path, headers=headers, content=content)
            elapsed_ms = (time.perf_counter() - start_time) * 1000
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to {self._base_url} timed out: {e}") from e
        except httpx.ConnectError as e:
            raise TransportError(f"Connection to {self._base_url} failed: {e}") from e
        except httpx.RequestError as e:
            raise TransportError(f"Request to {self._base_url} failed: {e}") from e
        except UnicodeEncodeError as e:
            raise TransportError(
                f"Encoding error: non-ASCII characters in request headers. "
                f"Character: {e.object[e.start:e.end]!r} at position {e.start}."
            ) from e

        return _convert_response(http_response, elapsed_ms)

    async def aclose(self) -> None:
        await self._client.aclose()


class HttpTransport(Transport):
    """Plain HTTP transport."""

    scheme = "http"


class HttpsTransport(Transport):
    """HTTPS transport with optional custom verification, mTLS and ciphers."""

    scheme = "https"

    def _build_client_kwargs(self, target: TargetConfig) -> dict[str, Any]:
        kwargs = super()._build_client_kwargs(target)
        customized = (
            target.ca_bundle or target.cert or target.ciphers or not target.verify_ssl
        )
        if customized:
            kwargs["verify"] = _build_ssl_context(target)
        return kwargs


def select_transport(is_secure: bool) -> type[Transport]:
    """Return HttpsTransport when is_secure is true, otherwise HttpTransport."""
    return HttpsTransport if is_secure else HttpTransport


def _build_ssl_context(target: TargetConfig) -> ssl.SSLContext:
    """Build an SSL context from the target's TLS settings.

    Raises:
        ConfigurationError: If the CA bundle, client certificate or cipher
                            string cannot be loaded.
    """
    try:
        ssl_context = ssl.create_default_context(cafile=target.ca_bundle)
    except (OSError, ssl.SSLError) as e:
        raise ConfigurationError(f"Cannot load CA bundle '{target.ca_bundle}': {e}") from e

    if not target.verify_ssl:
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE

    if target.cert:
        try:
            ssl_context.load_cert_chain(target.cert, target.key, target.key_password)
        except (OSError, ssl.SSLError) as e:
            raise ConfigurationError(f"Cannot load client certificate '{target.cert}': {e}") from e

    if target.ciphers:
        try:
            ssl_context.set_ciphers(target.ciphers)
        except ssl.SSLError as e:
            raise ConfigurationError(f"Invalid cipher string '{target.ciphers}': {e}") from e

    return ssl_context


def _convert_response(response: httpx.Response, elapsed_ms: float) -> TransportResponse:
    """Convert an httpx Response to a TransportResponse."""
    headers: dict[str, list[str]] = {}
    for key, value in response.headers.multi_items():
        headers.setdefault(key.lower(), []).append(value)

    return TransportResponse(
        status_code=response.status_code,
        headers=headers,
        content=response.content,
        elapsed_ms=elapsed_ms,
    )
