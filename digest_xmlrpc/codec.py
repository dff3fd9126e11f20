"""XML-RPC payload codec.

Thin boundary around the standard library's xmlrpc.client marshaller: method
calls go out as UTF-8 ``<methodCall>`` documents, and method responses come
back decoded with the target's response encoding. Server faults propagate as
``xmlrpc.client.Fault``; anything else the marshaller rejects becomes
ResponseDecodeError.
"""

from __future__ import annotations

import xmlrpc.client
from collections.abc import Sequence
from typing import Any
from xml.parsers.expat import ExpatError

from digest_xmlrpc.errors import ResponseDecodeError

Fault = xmlrpc.client.Fault


def serialize_method_call(method_name: str, params: Sequence[Any]) -> str:
    """Serialize a method call to an XML-RPC request document.

    ``None`` is sent as ``<nil/>``; bytes as ``<base64>``; datetime as
    ``<dateTime.iso8601>``.
    """
    return xmlrpc.client.dumps(
        tuple(params),
        methodname=method_name,
        encoding="utf-8",
        allow_none=True,
    )


def deserialize_method_response(content: bytes, encoding: str = "utf-8") -> Any:
    """Decode an XML-RPC method response body into its value.

    Raises:
        Fault: If the response is a ``<fault>``.
        ResponseDecodeError: If the body cannot be decoded with ``encoding``
            or is not a well-formed method response.
    """
    try:
        text = content.decode(encoding)
    except LookupError as e:
        raise ResponseDecodeError(f"Unknown response encoding '{encoding}'") from e
    except UnicodeDecodeError as e:
        raise ResponseDecodeError(f"Response body is not valid {encoding}: {e}") from e

    try:
        params, _ = xmlrpc.client.loads(text, use_builtin_types=True)
    except (ExpatError, xmlrpc.client.ResponseError, ValueError) as e:
        snippet = text[:80] + ("..." if len(text) > 80 else "")
        raise ResponseDecodeError(f"Invalid XML-RPC response: {e!r}; body: {snippet!r}") from e

    return params[0] if params else None
