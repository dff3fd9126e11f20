"""Client - Makes XML-RPC method calls over HTTP(S).

A call serializes the method and params, POSTs them to the target, and then
dispatches on the status code:

    404            -> NotFoundError, no retry
    401            -> answer the Digest challenge and resend once
    anything else  -> decode the body as a method response

The retry is never repeated: whatever the second response is (other than a
404) goes to the codec as-is. Transport errors are never retried.

See DESIGN.md "Call Orchestrator" for details.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

import httpx

from digest_xmlrpc.codec import deserialize_method_response, serialize_method_call
from digest_xmlrpc.config_loader import build_target, load_client_config, select_target
from digest_xmlrpc.digest import (
    build_digest_params,
    parse_challenge,
    render_authorization_header,
    select_digest_challenge,
)
from digest_xmlrpc.errors import AuthChallengeError, NotFoundError
from digest_xmlrpc.models import MethodCall, TargetConfig, TransportResponse
from digest_xmlrpc.transport import select_transport

logger = logging.getLogger(__name__)

HTTP_METHOD = "POST"

CallCallback = Callable[[BaseException | None, Any], None]


class Client:
    """XML-RPC client for one target.

    Usage:
        async with Client("http://localhost:9090/RPC2") as client:
            value = await client.method_call("add", [2, 3])

    Or with digest credentials, answered only when the server challenges:
        client = Client(
            {"host": "localhost", "port": 9090, "path": "/RPC2",
             "digest_auth": {"user": "bob", "pass": "secret"}},
            is_secure=False,
        )
    """

    def __init__(
        self,
        options: str | Mapping[str, Any],
        is_secure: bool = False,
        *,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            options: URI string or options mapping (see build_target()).
            is_secure: True to call over HTTPS, False for plain HTTP.
            http_transport: Optional httpx transport to send through instead
                            of the network (e.g. httpx.MockTransport).

        Raises:
            ConfigurationError: If options cannot be turned into a target.
        """
        self._target = build_target(options, is_secure)
        self._transport = select_transport(is_secure)(self._target, http_transport=http_transport)

    @classmethod
    def from_config(
        cls,
        config_path: Path,
        target_name: str,
        *,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> "Client":
        """Create a client for a named target in a YAML config file."""
        config = load_client_config(config_path)
        options, is_secure = select_target(config, target_name)
        return cls(options, is_secure, http_transport=http_transport)

    @property
    def target(self) -> TargetConfig:
        return self._target

    @property
    def is_secure(self) -> bool:
        return self._target.secure

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP connections."""
        await self._transport.aclose()

    async def method_call(self, method_name: str, params: Sequence[Any] = ()) -> Any:
        """Call a remote method and return its decoded result.

        Args:
            method_name: Remote method name.
            params: Positional parameters, serialized in order.

        Returns:
            The value of the method response.

        Raises:
            NotFoundError: If the server answers 404 (first try or retry).
            AuthChallengeError: If a 401 challenge cannot be answered.
            TransportError: If the request fails at the HTTP level.
            Fault: If the server returns an XML-RPC fault.
            ResponseDecodeError: If the response body is not a method response.
        """
        call = MethodCall(method_name=method_name, params=tuple(params))
        body = serialize_method_call(call.method_name, call.params).encode("utf-8")

        # Per-call copy: Content-Length and a digest Authorization never
        # reach the shared target or any other call.
        headers = self._target.request_headers()
        _set_header(headers, "Content-Length", str(len(body)))

        logger.debug("Calling %s on %s%s", call.method_name, self._transport.base_url, self._target.path)
        response = await self._transport.send(self._target.path, headers, body)
        _log_response(call, response)

        if response.status_code == 404:
            raise NotFoundError()

        if response.status_code == 401:
            _set_header(headers, "Authorization", self._answer_challenge(response))
            logger.debug("Retrying %s with digest credentials", call.method_name)
            response = await self._transport.send(self._target.path, headers, body)
            _log_response(call, response)

            if response.status_code == 404:
                raise NotFoundError()
            if response.status_code == 401:
                logger.warning(
                    "%s%s rejected the digest credentials for %s",
                    self._transport.base_url, self._target.path, call.method_name,
                )

        return deserialize_method_response(response.content, self._target.response_encoding)

    def submit(
        self,
        method_name: str,
        params: Sequence[Any],
        callback: CallCallback,
    ) -> asyncio.Task[Any]:
        """Schedule a call and report its outcome through ``callback(error, value)``.

        The callback runs exactly once: ``(None, value)`` on success, or
        ``(error, None)`` on any failure, including cancellation of the
        returned task. Must be called from a running event loop.
        """
        task = asyncio.get_running_loop().create_task(self.method_call(method_name, params))

        def report(done: asyncio.Task[Any]) -> None:
            if done.cancelled():
                callback(asyncio.CancelledError(), None)
                return
            error = done.exception()
            if error is not None:
                callback(error, None)
            else:
                callback(None, done.result())

        task.add_done_callback(report)
        return task

    def _answer_challenge(self, response: TransportResponse) -> str:
        """Build the Digest Authorization header answering a 401 response."""
        credentials = self._target.digest_auth
        if credentials is None or not credentials.complete:
            raise AuthChallengeError(
                "Server requested authentication but no digest credentials are configured"
            )

        header_value = select_digest_challenge(response.header_values("www-authenticate"))
        challenge = parse_challenge(header_value)
        logger.debug("Answering digest challenge for realm '%s'", challenge.realm)

        params = build_digest_params(credentials, challenge, HTTP_METHOD, self._target.path)
        return render_authorization_header(params)


def _set_header(headers: dict[str, str], name: str, value: str) -> None:
    """Set a header, replacing any existing spelling of the same name."""
    for existing in [key for key in headers if key.lower() == name.lower()]:
        del headers[existing]
    headers[name] = value


def _log_response(call: MethodCall, response: TransportResponse) -> None:
    logger.debug(
        "%s answered %d in %.1f ms",
        call.method_name, response.status_code, response.elapsed_ms,
    )
