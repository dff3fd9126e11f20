"""CLI entry point for digest-xmlrpc.

Handles argument parsing and dispatches to call or list-targets mode.
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import logging
import sys
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

from digest_xmlrpc.client import Client
from digest_xmlrpc.codec import Fault
from digest_xmlrpc.config_loader import build_target, load_client_config, select_target
from digest_xmlrpc.errors import ConfigurationError, DigestXmlRpcError

EXIT_OK = 0
EXIT_CALL_FAILED = 1
EXIT_USAGE = 2


def positive_float(value: str) -> float:
    """Parse and validate a positive float value.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive number.
    """
    try:
        result = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number '{value}'.")
    if result <= 0:
        raise argparse.ArgumentTypeError(f"Value must be positive, got {result}.")
    return result


def parse_param(value: str) -> Any:
    """Parse one method parameter as a YAML value.

    ``42`` becomes an int, ``[1, 2]`` a list, ``{a: 1}`` a dict, ``"42"`` a
    string. Plain dates become midnight datetimes, since XML-RPC has no date
    type.

    Raises:
        argparse.ArgumentTypeError: If value is not valid YAML.
    """
    try:
        result = yaml.safe_load(value)
    except yaml.YAMLError as e:
        raise argparse.ArgumentTypeError(f"Invalid parameter '{value}': {e}")
    if isinstance(result, date) and not isinstance(result, datetime):
        return datetime(result.year, result.month, result.day)
    return result


@dataclass
class CallArgs:
    """Parsed arguments for call mode."""

    method: str
    params: list[Any]
    uri: str | None
    config: Path | None
    target: str | None
    secure: bool
    basic_user: str | None
    basic_pass: str | None
    digest_user: str | None
    digest_pass: str | None
    timeout: float | None
    response_encoding: str | None
    verbose: bool


@dataclass
class ListTargetsArgs:
    """Parsed arguments for list-targets mode."""

    config: Path
    verbose: bool


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with call and list-targets subcommands."""
    parser = argparse.ArgumentParser(
        prog="digest-xmlrpc",
        description="XML-RPC client with HTTP Basic and Digest authentication.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log request flow at DEBUG level to stderr",
    )

    subparsers = parser.add_subparsers(dest="command", required=True, help="Mode")

    call_parser = subparsers.add_parser("call", help="Call a remote method and print the result as JSON")
    call_parser.add_argument("method", help="Remote method name")
    call_parser.add_argument(
        "params",
        nargs="*",
        type=parse_param,
        metavar="PARAM",
        help="Method parameters, each parsed as YAML (e.g. 42, '[1, 2]', '\"text\"')",
    )
    call_parser.add_argument("--uri", help="Server URI, e.g. http://localhost:9090/RPC2")
    call_parser.add_argument("--config", type=Path, help="Path to YAML client config")
    call_parser.add_argument("--target", help="Target name in the config file")
    call_parser.add_argument(
        "--secure",
        action="store_true",
        help="Use HTTPS (default: only when the URI scheme is https)",
    )
    call_parser.add_argument("--basic-user", help="Basic auth username")
    call_parser.add_argument("--basic-pass", help="Basic auth password")
    call_parser.add_argument("--digest-user", help="Digest auth username")
    call_parser.add_argument("--digest-pass", help="Digest auth password")
    call_parser.add_argument(
        "--timeout",
        type=positive_float,
        default=None,
        help="Request timeout in seconds (default: 30)",
    )
    call_parser.add_argument("--response-encoding", help="Text encoding of responses (default: utf-8)")

    list_parser = subparsers.add_parser("list-targets", help="List targets defined in a config file")
    list_parser.add_argument("--config", type=Path, required=True, help="Path to YAML client config")

    return parser


def parse_args(args: list[str] | None = None) -> CallArgs | ListTargetsArgs:
    """Parse command-line arguments and return typed args dataclass.

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    parser = build_parser()
    namespace = parser.parse_args(args)

    if namespace.command == "list-targets":
        return ListTargetsArgs(config=namespace.config, verbose=namespace.verbose)

    if namespace.uri is None and (namespace.config is None or namespace.target is None):
        parser.error("call requires --uri, or --config together with --target")
    if namespace.uri is not None and namespace.config is not None:
        parser.error("--uri and --config are mutually exclusive")

    return CallArgs(
        method=namespace.method,
        params=namespace.params,
        uri=namespace.uri,
        config=namespace.config,
        target=namespace.target,
        secure=namespace.secure,
        basic_user=namespace.basic_user,
        basic_pass=namespace.basic_pass,
        digest_user=namespace.digest_user,
        digest_pass=namespace.digest_pass,
        timeout=namespace.timeout,
        response_encoding=namespace.response_encoding,
        verbose=namespace.verbose,
    )


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parsed = parse_args(argv)
    configure_logging(parsed.verbose)
    try:
        if isinstance(parsed, ListTargetsArgs):
            return run_list_targets(parsed)
        return run_call(parsed)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return EXIT_CALL_FAILED


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def build_call_options(args: CallArgs) -> tuple[dict[str, Any], bool]:
    """Merge config-file target options with command-line overrides."""
    if args.config is not None:
        options, is_secure = select_target(load_client_config(args.config), args.target or "")
    else:
        options, is_secure = {"uri": args.uri}, urlsplit(args.uri or "").scheme == "https"

    is_secure = is_secure or args.secure
    if args.basic_user is not None and args.basic_pass is not None:
        options["basic_auth"] = {"user": args.basic_user, "pass": args.basic_pass}
    if args.digest_user is not None and args.digest_pass is not None:
        options["digest_auth"] = {"user": args.digest_user, "pass": args.digest_pass}
    if args.timeout is not None:
        options["timeout"] = args.timeout
    if args.response_encoding is not None:
        options["response_encoding"] = args.response_encoding
    return options, is_secure


def run_call(args: CallArgs) -> int:
    """Run call mode. Prints the result as JSON on stdout."""
    try:
        options, is_secure = build_call_options(args)
        client = Client(options, is_secure)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    try:
        result = asyncio.run(_call_and_close(client, args.method, args.params))
    except Fault as e:
        print(f"Fault {e.faultCode}: {e.faultString}", file=sys.stderr)
        return EXIT_CALL_FAILED
    except DigestXmlRpcError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CALL_FAILED
    except TypeError as e:
        print(f"Error: cannot serialize parameters: {e}", file=sys.stderr)
        return EXIT_USAGE

    print(json.dumps(result, indent=2, default=_json_default))
    return EXIT_OK


def run_list_targets(args: ListTargetsArgs) -> int:
    """Run list-targets mode. Prints one ``name  url`` line per target."""
    try:
        config = load_client_config(args.config)
        lines = []
        for name in config.targets:
            options, is_secure = select_target(config, name)
            target = build_target(options, is_secure)
            lines.append(f"{name}\t{target.base_url}{target.path}")
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    for line in lines:
        print(line)
    return EXIT_OK


async def _call_and_close(client: Client, method: str, params: list[Any]) -> Any:
    async with client:
        return await client.method_call(method, params)


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


if __name__ == "__main__":
    sys.exit(main())
