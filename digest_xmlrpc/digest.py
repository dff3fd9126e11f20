"""HTTP Digest authentication (RFC 2617, MD5 profile), single round.

Parses a ``WWW-Authenticate: Digest ...`` challenge, computes the response
hash, and renders the ``Authorization`` header for the one retry a call is
allowed. The client nonce is empty and the nonce count is fixed at "1":
nothing is remembered between calls.

Example:
    challenge = parse_challenge('Digest realm="test", nonce="abc123", qop="auth"')
    params = build_digest_params(credentials, challenge, "POST", "/RPC2")
    header = render_authorization_header(params)
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable, Mapping

from digest_xmlrpc.errors import AuthChallengeError
from digest_xmlrpc.models import Credentials, DigestChallenge

SCHEME_PREFIX = "Digest "
NONCE_COUNT = "1"
CLIENT_NONCE = ""
SUPPORTED_ALGORITHM = "MD5"

_QUOTED_PAIR = re.compile(r"\\(.)")


def select_digest_challenge(header_values: Iterable[str]) -> str:
    """Pick the first Digest challenge among WWW-Authenticate header values.

    Raises:
        AuthChallengeError: If no value uses the Digest scheme.
    """
    values = list(header_values)
    for value in values:
        if value[: len(SCHEME_PREFIX)].lower() == SCHEME_PREFIX.lower():
            return value
    if not values:
        raise AuthChallengeError("401 response carried no WWW-Authenticate header")
    raise AuthChallengeError(
        f"Server did not offer Digest authentication: {', '.join(values)}"
    )


def parse_challenge(header_value: str) -> DigestChallenge:
    """Parse a Digest challenge header value.

    The scheme prefix is stripped, the rest is split on commas that are not
    inside double quotes, and each token is split on its first ``=`` so
    values such as base64 nonces keep their own ``=`` characters. One pair of
    surrounding double quotes is removed from each value.

    Raises:
        AuthChallengeError: If the scheme is not Digest, a token has no ``=``
            or an empty name, realm or nonce is missing, or the announced
            algorithm is not MD5.
    """
    if header_value[: len(SCHEME_PREFIX)].lower() != SCHEME_PREFIX.lower():
        raise AuthChallengeError(f"Not a Digest challenge: {header_value!r}")

    fields: dict[str, str] = {}
    for token in _split_tokens(header_value[len(SCHEME_PREFIX):]):
        name, sep, value = token.partition("=")
        name = name.strip()
        if not sep or not name:
            raise AuthChallengeError(f"Malformed challenge parameter: {token!r}")
        fields[name] = _unquote(value.strip())

    for required in ("realm", "nonce"):
        if required not in fields:
            raise AuthChallengeError(f"Digest challenge is missing '{required}'")

    algorithm = fields.pop("algorithm", None)
    if algorithm is not None and algorithm.upper() != SUPPORTED_ALGORITHM:
        raise AuthChallengeError(
            f"Unsupported digest algorithm '{algorithm}' (only {SUPPORTED_ALGORITHM})"
        )

    realm = fields.pop("realm")
    nonce = fields.pop("nonce")
    qop = fields.pop("qop", "auth")
    return DigestChallenge(realm=realm, nonce=nonce, qop=qop, algorithm=algorithm, extra=fields)


def compute_digest(
    username: str,
    password: str,
    realm: str,
    nonce: str,
    http_method: str,
    uri: str,
    qop: str = "auth",
    nonce_count: str = NONCE_COUNT,
    client_nonce: str = CLIENT_NONCE,
) -> str:
    """Compute the Digest response hash as lowercase hex.

    ha1 = MD5(username:realm:password)
    ha2 = MD5(method:uri)
    response = MD5(ha1:nonce:nc:cnonce:qop:ha2)
    """
    ha1 = _md5_hex(f"{username}:{realm}:{password}")
    ha2 = _md5_hex(f"{http_method}:{uri}")
    return _md5_hex(f"{ha1}:{nonce}:{nonce_count}:{client_nonce}:{qop}:{ha2}")


def build_digest_params(
    credentials: Credentials,
    challenge: DigestChallenge,
    http_method: str,
    uri: str,
) -> dict[str, str]:
    """Build the ordered Authorization parameters answering a challenge."""
    response = compute_digest(
        username=credentials.user,
        password=credentials.password,
        realm=challenge.realm,
        nonce=challenge.nonce,
        http_method=http_method,
        uri=uri,
        qop=challenge.qop,
    )
    return {
        "username": credentials.user,
        "realm": challenge.realm,
        "nonce": challenge.nonce,
        "uri": uri,
        "qop": challenge.qop,
        "response": response,
        "nc": NONCE_COUNT,
        "cnonce": CLIENT_NONCE,
    }


def render_authorization_header(params: Mapping[str, str]) -> str:
    """Render ``Digest key="value", ...`` in the mapping's order."""
    return SCHEME_PREFIX + ", ".join(f'{key}="{value}"' for key, value in params.items())


def _split_tokens(text: str) -> list[str]:
    """Split on commas outside double quotes, dropping empty tokens.

    Inside quotes a backslash escapes the next character (quoted-pair).
    """
    tokens: list[str] = []
    current: list[str] = []
    in_quotes = False
    escaped = False
    for char in text:
        if escaped:
            escaped = False
        elif in_quotes and char == "\\":
            escaped = True
        elif char == '"':
            in_quotes = not in_quotes
        if char == "," and not in_quotes:
            tokens.append("".join(current))
            current = []
            continue
        current.append(char)
    tokens.append("".join(current))
    return [token.strip() for token in tokens if token.strip()]


def _unquote(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return _QUOTED_PAIR.sub(r"\1", value[1:-1])
    return value


def _md5_hex(value: str) -> str:
    return hashlib.md5(value.encode("utf-8"), usedforsecurity=False).hexdigest()
