"""CLI entry point for mocha-api.

Sends a single request through the full execution pipeline and prints the
response:

    mocha-api GET https://api.example.com/users -q page=2 -H "Accept: application/json"
    mocha-api POST https://api.example.com/users --json '{"name": "alice"}' --retry -i
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TextIO

from mocha_api.client import ApiClient, ClientBuilder
from mocha_api.config_loader import load_client_settings
from mocha_api.errors import ConfigurationError, ExecutionError
from mocha_api.models import HttpMethod
from mocha_api.transport import Transport


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


def parse_header(value: str) -> tuple[str, str]:
    """Parse NAME:VALUE format.

    Raises:
        argparse.ArgumentTypeError: If format is invalid.
    """
    if ":" not in value:
        raise argparse.ArgumentTypeError(
            f"Invalid header '{value}'. Expected NAME:VALUE (e.g., 'Accept: application/json')"
        )
    name, header_value = value.split(":", 1)
    name = name.strip()
    if not name:
        raise argparse.ArgumentTypeError(f"Invalid header '{value}'. Name cannot be empty.")
    return name, header_value.strip()


def parse_query(value: str) -> tuple[str, str]:
    """Parse KEY=VALUE format.

    Raises:
        argparse.ArgumentTypeError: If format is invalid.
    """
    if "=" not in value:
        raise argparse.ArgumentTypeError(
            f"Invalid query parameter '{value}'. Expected KEY=VALUE (e.g., 'page=2')"
        )
    key, query_value = value.split("=", 1)
    if not key:
        raise argparse.ArgumentTypeError(f"Invalid query parameter '{value}'. Key cannot be empty.")
    return key, query_value


def parse_json_body(value: str) -> Any:
    """Parse a JSON document given on the command line.

    Raises:
        argparse.ArgumentTypeError: If value is not valid JSON.
    """
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"Invalid JSON body: {e}")


@dataclass
class RequestArgs:
    """Parsed arguments for a single request."""

    method: HttpMethod
    url: str
    headers: list[tuple[str, str]] = field(default_factory=list)
    query: list[tuple[str, str]] = field(default_factory=list)
    data: str | None = None
    json_body: Any = None
    config: Path | None = None
    timeout: float | None = None
    retry: bool = False
    allow_localhost: bool = False
    fail: bool = False
    include: bool = False
    verbose: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="mocha-api",
        description="Send an HTTP request with validation, interceptors and retries.",
    )
    parser.add_argument(
        "method",
        type=str.upper,
        choices=[m.value for m in HttpMethod],
        help="HTTP method",
    )
    parser.add_argument("url", help="Target URL (http or https)")
    parser.add_argument(
        "-H", "--header",
        type=parse_header,
        action="append",
        default=[],
        dest="headers",
        metavar="NAME:VALUE",
        help="Request header (can be repeated)",
    )
    parser.add_argument(
        "-q", "--query",
        type=parse_query,
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Query parameter (can be repeated, order kept)",
    )
    body_group = parser.add_mutually_exclusive_group()
    body_group.add_argument("-d", "--data", default=None, help="Raw request body")
    body_group.add_argument(
        "--json",
        type=parse_json_body,
        default=None,
        dest="json_body",
        help="JSON request body",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to client settings file (YAML)",
    )
    parser.add_argument(
        "--timeout",
        type=positive_float,
        default=None,
        help="Connect, read and write timeout in seconds",
    )
    parser.add_argument(
        "--retry",
        action="store_true",
        help="Retry transient failures (up to 3 attempts, exponential backoff)",
    )
    parser.add_argument(
        "--allow-localhost",
        action="store_true",
        dest="allow_localhost",
        help="Allow loopback and private-network targets",
    )
    parser.add_argument(
        "--fail",
        action="store_true",
        help="Exit with status 1 on HTTP 4xx/5xx responses",
    )
    parser.add_argument(
        "-i", "--include",
        action="store_true",
        help="Print status line and response headers",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log requests, retries and responses to stderr",
    )
    return parser


def parse_args(args: list[str] | None = None) -> RequestArgs:
    """Parse command-line arguments and return typed args dataclass.

    Args:
        args: Command-line arguments to parse. If None, uses sys.argv[1:].

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    namespace = build_parser().parse_args(args)
    return RequestArgs(
        method=HttpMethod(namespace.method),
        url=namespace.url,
        headers=namespace.headers,
        query=namespace.query,
        data=namespace.data,
        json_body=namespace.json_body,
        config=namespace.config,
        timeout=namespace.timeout,
        retry=namespace.retry,
        allow_localhost=namespace.allow_localhost,
        fail=namespace.fail,
        include=namespace.include,
        verbose=namespace.verbose,
    )


def build_client(args: RequestArgs, transport: Transport | None = None) -> ApiClient:
    """Create the client described by a settings file plus command-line flags.

    Raises:
        ConfigurationError: If the settings file is invalid.
    """
    if args.config is not None:
        builder = ClientBuilder.from_settings(load_client_settings(args.config))
    else:
        builder = ClientBuilder()
    if args.timeout is not None:
        builder.timeout(args.timeout)
    if args.retry:
        builder.retry()
    if args.allow_localhost:
        builder.allow_localhost()
    if args.verbose:
        builder.logging()
    if args.fail:
        builder.raise_for_status()
    if transport is not None:
        builder.transport(transport)
    return builder.build()


def run_request(
    args: RequestArgs,
    transport: Transport | None = None,
    out: TextIO | None = None,
) -> int:
    """Execute the request and print the response. Returns the exit code."""
    out = out or sys.stdout
    try:
        client = build_client(args, transport)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    with client:
        try:
            request = client.request(args.method, args.url).headers(dict(args.headers))
        except ConfigurationError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2
        for key, value in args.query:
            request = request.query(key, value)
        if args.json_body is not None:
            request = request.body(args.json_body)
        elif args.data is not None:
            request = request.body(args.data)

        try:
            response = request.execute()
        except ExecutionError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    if args.include:
        print(f"{response.http_version} {response.status}", file=out)
        for name, value in response.headers.multi_items():
            print(f"{name}: {value}", file=out)
        print(file=out)
    print(response.text, file=out)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    try:
        args = parse_args(argv)
        if args.verbose:
            logging.basicConfig(
                level=logging.DEBUG,
                stream=sys.stderr,
                format="%(asctime)s %(name)s %(levelname)s %(message)s",
            )
        return run_request(args)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
