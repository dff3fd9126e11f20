"""Tests for the XML-RPC payload codec boundary.

Tests cover:
- serialize_method_call output shape
- deserialize_method_response values, faults, encodings and bad bodies
"""

import xmlrpc.client
from datetime import datetime

import pytest

from digest_xmlrpc.codec import Fault, deserialize_method_response, serialize_method_call
from digest_xmlrpc.errors import ResponseDecodeError


class TestSerializeMethodCall:
    """Method calls are rendered as <methodCall> documents."""

    def test_method_name_and_params(self) -> None:
        body = serialize_method_call("math.add", [2, 3])
        assert "<methodName>math.add</methodName>" in body
        assert "<int>2</int>" in body
        assert "<int>3</int>" in body

    def test_xml_declaration(self) -> None:
        body = serialize_method_call("ping", [])
        assert body.startswith("<?xml version='1.0'")
        assert "<methodCall>" in body

    def test_none_sent_as_nil(self) -> None:
        assert "<nil/>" in serialize_method_call("echo", [None])

    def test_server_side_parse(self) -> None:
        """What the server unmarshals matches what was sent."""
        params, method = xmlrpc.client.loads(
            serialize_method_call("store", ["héllo", {"k": [1, 2.5]}, True])
        )
        assert method == "store"
        assert params == ("héllo", {"k": [1, 2.5]}, True)

    def test_unmarshallable_param(self) -> None:
        with pytest.raises(TypeError):
            serialize_method_call("echo", [object()])


class TestDeserializeMethodResponse:
    """Response bodies decode to the single returned value."""

    def test_struct_value(self) -> None:
        body = xmlrpc.client.dumps(({"sum": 5, "ok": True},), methodresponse=True)
        assert deserialize_method_response(body.encode("utf-8")) == {"sum": 5, "ok": True}

    def test_builtin_types(self) -> None:
        when = datetime(2024, 1, 2, 3, 4, 5)
        body = xmlrpc.client.dumps(([when, b"\x00\x01"],), methodresponse=True)
        assert deserialize_method_response(body.encode("utf-8")) == [when, b"\x00\x01"]

    def test_fault_passed_through(self) -> None:
        body = xmlrpc.client.dumps(Fault(4, "Too many parameters"), methodresponse=True)
        with pytest.raises(Fault) as exc_info:
            deserialize_method_response(body.encode("utf-8"))
        assert exc_info.value.faultCode == 4
        assert exc_info.value.faultString == "Too many parameters"

    def test_response_encoding(self) -> None:
        body = (
            "<?xml version='1.0' encoding='iso-8859-1'?>"
            "<methodResponse><params><param><value><string>café</string></value>"
            "</param></params></methodResponse>"
        ).encode("iso-8859-1")
        assert deserialize_method_response(body, "iso-8859-1") == "café"

    def test_wrong_encoding(self) -> None:
        body = "<methodResponse>é</methodResponse>".encode("iso-8859-1")
        with pytest.raises(ResponseDecodeError, match="not valid utf-8"):
            deserialize_method_response(body, "utf-8")

    def test_unknown_encoding(self) -> None:
        with pytest.raises(ResponseDecodeError, match="Unknown response encoding"):
            deserialize_method_response(b"<x/>", "no-such-codec")

    @pytest.mark.parametrize(
        "body",
        [
            b"",
            b"Unauthorized",
            b"<html><body>Forbidden</body></html>",
            b"<methodResponse><params><param><value><int>x</int></value></param></params></methodResponse>",
        ],
    )
    def test_undecodable_bodies(self, body: bytes) -> None:
        with pytest.raises(ResponseDecodeError, match="Invalid XML-RPC response"):
            deserialize_method_response(body)
