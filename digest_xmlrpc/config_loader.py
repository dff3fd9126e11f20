"""Config Loader - Turns client options into a TargetConfig.

Accepts either a URI string or an options mapping, fills in the default
request headers, and derives a Basic Authorization header when basic
credentials are given. Also loads named targets from YAML config files with
environment variable substitution.

See DESIGN.md "Connection Configuration" for details.
"""

from __future__ import annotations

import base64
import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlsplit

import yaml
from pydantic import ValidationError

from digest_xmlrpc.errors import ConfigurationError
from digest_xmlrpc.models import ClientConfigFile, Credentials, TargetConfig

logger = logging.getLogger(__name__)

USER_AGENT = "digest-xmlrpc Python Client"

# Applied only for header names the caller did not supply (case-insensitive).
DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": USER_AGENT,
    "Content-Type": "text/xml",
    "Accept": "text/xml",
    "Accept-Charset": "UTF8",
    "Connection": "Keep-Alive",
}

# Alternate option names accepted in options mappings.
_OPTION_ALIASES = {
    "hostname": "host",
    "pathname": "path",
    "responseEncoding": "response_encoding",
}

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def build_target(options: str | Mapping[str, Any], is_secure: bool = False) -> TargetConfig:
    """Build the TargetConfig for a client.

    Args:
        options: A URI string (e.g. ``http://localhost:9090/RPC2``) or a
            mapping with at least ``host`` and ``port``. A mapping may also
            carry a ``uri`` key; explicit keys override what the URI gives.
        is_secure: True for HTTPS. This flag, not the URI scheme, decides
            the transport.

    Returns:
        A frozen TargetConfig with default headers applied.

    Raises:
        ConfigurationError: If options is neither a string nor a mapping, or
            host and port cannot be resolved, or any field is invalid.
    """
    if isinstance(options, str):
        fields = _fields_from_uri(options, is_secure)
    elif isinstance(options, Mapping):
        fields = _fields_from_mapping(options, is_secure)
    else:
        raise ConfigurationError(
            f"Client options must be a URI string or a mapping, got {type(options).__name__}"
        )

    try:
        target = TargetConfig.model_validate({**fields, "secure": is_secure})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid client options: {e}") from e

    headers = apply_default_headers(target.headers, target.basic_auth)
    return target.model_copy(update={"headers": headers})


def apply_default_headers(
    headers: Mapping[str, str],
    basic_auth: Credentials | None = None,
) -> dict[str, str]:
    """Return headers with the Basic Authorization header and defaults filled in.

    Never overwrites a header the caller supplied, so applying it twice gives
    the same result as applying it once.
    """
    result = dict(headers)
    present = {name.lower() for name in result}

    if "authorization" not in present and basic_auth is not None and basic_auth.complete:
        token = f"{basic_auth.user}:{basic_auth.password}".encode("utf-8")
        result["Authorization"] = "Basic " + base64.b64encode(token).decode("ascii")

    for name, value in DEFAULT_HEADERS.items():
        if name.lower() not in present:
            result[name] = value

    return result


def _fields_from_uri(uri: str, is_secure: bool) -> dict[str, Any]:
    """Split a URI into TargetConfig fields. Userinfo becomes basic credentials."""
    try:
        parts = urlsplit(uri)
        port = parts.port
    except ValueError as e:
        raise ConfigurationError(f"Invalid URI '{uri}': {e}") from e

    if not parts.hostname:
        raise ConfigurationError(f"URI has no host: '{uri}'")

    if parts.scheme and (parts.scheme == "https") != is_secure:
        logger.debug(
            "URI scheme '%s' does not match is_secure=%s; using %s",
            parts.scheme, is_secure, "https" if is_secure else "http",
        )

    fields: dict[str, Any] = {
        "host": parts.hostname,
        "port": port if port is not None else (443 if is_secure else 80),
        "path": parts.path or "/",
    }
    if parts.username is not None and parts.password is not None:
        fields["basic_auth"] = {
            "user": unquote(parts.username),
            "pass": unquote(parts.password),
        }
    return fields


def _fields_from_mapping(options: Mapping[str, Any], is_secure: bool) -> dict[str, Any]:
    """Normalize an options mapping into TargetConfig fields."""
    fields: dict[str, Any] = {}
    for key, value in options.items():
        canonical = _OPTION_ALIASES.get(key, key)
        if canonical in fields and canonical != key:
            continue
        fields[canonical] = value

    uri = fields.pop("uri", None)
    if uri is not None:
        if not isinstance(uri, str):
            raise ConfigurationError(f"'uri' must be a string, got {type(uri).__name__}")
        fields = {**_fields_from_uri(uri, is_secure), **fields}

    if not fields.get("host") or fields.get("port") is None:
        raise ConfigurationError("Client options must resolve both 'host' and 'port'")

    return fields


# =============================================================================
# YAML Config Files
# =============================================================================


def load_client_config(config_path: Path) -> ClientConfigFile:
    """Load a client config file from YAML with ${ENV_VAR} substitution."""
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file: {e}") from e

    if not isinstance(raw_config, dict):
        raise ConfigurationError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config)

    try:
        return ClientConfigFile.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config structure: {e}") from e


def select_target(config: ClientConfigFile, name: str) -> tuple[dict[str, Any], bool]:
    """Return (options, is_secure) for the named target, ready for build_target()."""
    if name not in config.targets:
        available = ", ".join(config.targets.keys()) or "(none)"
        raise ConfigurationError(f"Target '{name}' not found in config. Available: {available}")

    target = config.targets[name]
    return target.to_options(), target.secure


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    return data


def _substitute_string(s: str) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigurationError if env var is not set."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigurationError(f"Environment variable '{var_name}' is not set")
        return value

    return _ENV_VAR_PATTERN.sub(replacer, s)
