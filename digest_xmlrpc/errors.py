"""Exception hierarchy for digest-xmlrpc.

Every failure a call can end in is one of these, except server-declared
faults, which surface as ``xmlrpc.client.Fault`` exactly as the codec
raised them.
"""

from __future__ import annotations


class DigestXmlRpcError(Exception):
    """Base class for digest-xmlrpc errors."""


class ConfigurationError(DigestXmlRpcError):
    """Raised when client options or a config file cannot be turned into a target."""


class TransportError(DigestXmlRpcError):
    """Raised when a request fails (connection error, timeout, etc.)."""


class NotFoundError(DigestXmlRpcError):
    """Raised when the server answers 404. The message is always "Not Found"."""

    def __init__(self, status_code: int = 404) -> None:
        super().__init__("Not Found")
        self.status_code = status_code


class AuthChallengeError(DigestXmlRpcError):
    """Raised when a 401 challenge is malformed, unsupported, or cannot be answered."""


class ResponseDecodeError(DigestXmlRpcError):
    """Raised when a response body is not a decodable XML-RPC method response."""
