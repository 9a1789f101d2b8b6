"""CLI entry point for api-dispatch.

Handles argument parsing and dispatches to resolve or send mode.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from api_dispatch.config_loader import (
    ConfigError,
    build_target,
    get_target_config,
    load_dispatcher_config,
)
from api_dispatch.dispatcher import Dispatcher
from api_dispatch.encoding import Destination, JSONEncoding, URLEncoding
from api_dispatch.endpoint import endpoint_mapping_with_defaults
from api_dispatch.models import DispatcherConfig, Method, StubConfig, StubMode, describe_headers
from api_dispatch.request_builder import materialize
from api_dispatch.result import Failure, Result
from api_dispatch.target import Target
from api_dispatch.tasks import (
    RequestCompositeData,
    RequestCompositeParameters,
    RequestData,
    RequestParameters,
    RequestPlain,
    Task,
)

EXIT_INTERRUPTED = 130


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


def non_negative_float(value: str) -> float:
    """Parse a float that may be zero (stub delays)."""
    try:
        result = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number '{value}'.")
    if result < 0:
        raise argparse.ArgumentTypeError(f"Value must not be negative, got {result}.")
    return result


def parse_header(value: str) -> tuple[str, str]:
    """Parse NAME:VALUE format."""
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(
            f"Invalid header '{value}'. Expected NAME:VALUE (e.g., 'Accept:application/json')"
        )
    return (name.strip(), header_value.strip())


def parse_query(value: str) -> tuple[str, str]:
    """Parse KEY=VALUE format."""
    key, sep, query_value = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"Invalid query parameter '{value}'. Expected KEY=VALUE")
    return (key, query_value)


def parse_json_object(value: str) -> dict[str, Any]:
    """Parse a JSON object literal."""
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"Invalid JSON: {e}")
    if not isinstance(parsed, dict):
        raise argparse.ArgumentTypeError("JSON body must be an object")
    return parsed


@dataclass
class ResolveArgs:
    """Parsed arguments for resolve mode."""

    config: Path
    target: str
    path: str
    method: Method
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, str] = field(default_factory=dict)
    data: str | None = None
    json_body: dict[str, Any] | None = None


@dataclass
class SendArgs:
    """Parsed arguments for send mode."""

    config: Path
    target: str
    path: str
    method: Method
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, str] = field(default_factory=dict)
    data: str | None = None
    json_body: dict[str, Any] | None = None
    stub: StubMode | None = None
    delay: float = 0.0
    sample_data: str = ""
    timeout: float | None = None
    log_level: str = "WARNING"


def _add_request_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, required=True, help="Path to runtime config YAML")
    parser.add_argument("--target", required=True, help="Target name from the config")
    parser.add_argument("--path", default="", help="Path appended to the target's base URL")
    parser.add_argument(
        "--method",
        type=str.upper,
        choices=[m.value for m in Method],
        default=Method.GET.value,
        help="HTTP method (default: GET)",
    )
    parser.add_argument(
        "--header",
        type=parse_header,
        action="append",
        metavar="NAME:VALUE",
        help="Request header (can be repeated)",
    )
    parser.add_argument(
        "--query",
        type=parse_query,
        action="append",
        metavar="KEY=VALUE",
        help="Query parameter (can be repeated)",
    )
    body = parser.add_mutually_exclusive_group()
    body.add_argument("--data", help="Raw request body")
    body.add_argument("--json", dest="json_body", type=parse_json_object, help="JSON object body")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with resolve and send subcommands."""
    parser = argparse.ArgumentParser(
        prog="api-dispatch",
        description="Resolve and dispatch API targets through the plugin pipeline.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True, help="Execution mode")

    resolve_parser = subparsers.add_parser(
        "resolve",
        help="Print the endpoint and request a target resolves to, without sending it",
    )
    _add_request_arguments(resolve_parser)

    send_parser = subparsers.add_parser(
        "send",
        help="Dispatch a target and print the outcome",
    )
    _add_request_arguments(send_parser)
    send_parser.add_argument(
        "--stub",
        choices=[mode.value for mode in StubMode],
        default=None,
        help="Override the configured stub behavior",
    )
    send_parser.add_argument(
        "--delay",
        type=non_negative_float,
        default=0.0,
        help="Delay in seconds for --stub delayed (default: 0)",
    )
    send_parser.add_argument(
        "--sample-data",
        default="",
        help="Body returned when the request is stubbed",
    )
    send_parser.add_argument(
        "--timeout",
        type=positive_float,
        default=None,
        help="Override the configured transport timeout in seconds",
    )
    send_parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Logging level (default: WARNING)",
    )

    return parser


def _request_fields(namespace: argparse.Namespace) -> dict[str, Any]:
    return {
        "config": namespace.config,
        "target": namespace.target,
        "path": namespace.path,
        "method": Method(namespace.method),
        "headers": dict(namespace.header or []),
        "query": dict(namespace.query or []),
        "data": namespace.data,
        "json_body": namespace.json_body,
    }


def parse_resolve_args(namespace: argparse.Namespace) -> ResolveArgs:
    """Convert parsed namespace to ResolveArgs dataclass."""
    return ResolveArgs(**_request_fields(namespace))


def parse_send_args(namespace: argparse.Namespace) -> SendArgs:
    """Convert parsed namespace to SendArgs dataclass."""
    return SendArgs(
        **_request_fields(namespace),
        stub=StubMode(namespace.stub) if namespace.stub else None,
        delay=namespace.delay,
        sample_data=namespace.sample_data,
        timeout=namespace.timeout,
        log_level=namespace.log_level,
    )


def parse_args(args: list[str] | None = None) -> ResolveArgs | SendArgs:
    """Parse command-line arguments and return typed args dataclass.

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    parser = build_parser()
    namespace = parser.parse_args(args)

    if namespace.command == "resolve":
        return parse_resolve_args(namespace)
    elif namespace.command == "send":
        return parse_send_args(namespace)
    else:
        # Should not happen with required=True on subparsers
        parser.error(f"Unknown command: {namespace.command}")


def build_task(args: ResolveArgs | SendArgs) -> Task:
    """Pick the task variant matching the body and query options."""
    query: dict[str, Any] = dict(args.query)
    if args.json_body is not None:
        if query:
            return RequestCompositeParameters(
                body_parameters=args.json_body, body_encoding=JSONEncoding(), url_parameters=query
            )
        return RequestParameters(parameters=args.json_body, encoding=JSONEncoding())
    if args.data is not None:
        body = args.data.encode("utf-8")
        if query:
            return RequestCompositeData(body_data=body, url_parameters=query)
        return RequestData(data=body)
    if query:
        return RequestParameters(parameters=query, encoding=URLEncoding(destination=Destination.QUERY_STRING))
    return RequestPlain()


def _target_from_args(config: DispatcherConfig, args: ResolveArgs | SendArgs, sample_data: bytes = b"") -> Target:
    return build_target(
        get_target_config(config, args.target),
        path=args.path,
        method=args.method,
        task=build_task(args),
        headers=args.headers,
        sample_data=sample_data,
    )


def main() -> int:
    """Main entry point."""
    try:
        parsed = parse_args()

        if isinstance(parsed, ResolveArgs):
            return run_resolve(parsed)
        else:
            return run_send(parsed)

    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return EXIT_INTERRUPTED


def run_resolve(args: ResolveArgs) -> int:
    """Run resolve mode.

    Prints the endpoint a target resolves to and the request it materializes into.
    """
    try:
        config = load_dispatcher_config(args.config)
        target = _target_from_args(config, args)
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    endpoint = endpoint_mapping_with_defaults(config.default_headers)(target)
    print(f"Endpoint: {endpoint.method.value} {endpoint.url}")

    result = materialize(endpoint)
    if isinstance(result, Failure):
        print(f"Error: {result.error}", file=sys.stderr)
        return 1

    request = result.value
    print(f"Request: {request.method.value} {request.url}")
    print(f"Headers: {describe_headers(request.headers)}")
    if request.body is not None:
        print(f"Body: {request.body.decode('utf-8', errors='replace')}")
    return 0


def run_send(args: SendArgs) -> int:
    """Run send mode.

    Dispatches the target (live or stubbed) and prints the outcome.
    """
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        config = load_dispatcher_config(args.config)
        target = _target_from_args(config, args, sample_data=args.sample_data.encode("utf-8"))
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    updates: dict[str, Any] = {}
    if args.stub is not None:
        updates["stub"] = StubConfig(behavior=args.stub, delay_seconds=args.delay)
    if args.timeout is not None:
        updates["timeout"] = args.timeout
    if updates:
        config = config.model_copy(update=updates)

    outcome: list[Result] = []
    done = threading.Event()

    def on_complete(result: Result) -> None:
        outcome.append(result)
        done.set()

    dispatcher = Dispatcher.from_config(config)
    interrupted = False
    try:
        token = dispatcher.dispatch(target, completion=on_complete)
        try:
            done.wait()
        except KeyboardInterrupt:
            token.cancel()
            interrupted = True
    finally:
        dispatcher.close(wait=not interrupted)

    if interrupted:
        print("\nInterrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    return _print_result(outcome[0])


def _print_result(result: Result) -> int:
    if isinstance(result, Failure):
        print(f"Error: {result.error}", file=sys.stderr)
        if result.error.response is not None:
            print(f"Status: {result.error.response.status_code}", file=sys.stderr)
        return 1

    response = result.value
    print(f"Status: {response.status_code}")
    if response.data:
        sys.stdout.write(response.text)
        if not response.text.endswith("\n"):
            sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
