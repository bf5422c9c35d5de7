import argparse
import asyncio
import logging
import os
import sys

import orjson
from pydantic import ValidationError

from epupp_bridge.client import EvalClient, evaluate
from epupp_bridge.errors import (
    BencodeError,
    BridgeError,
    ResponseOverflowError,
    ResponseStateError,
    WaitTimeoutError,
)
from epupp_bridge.models import Endpoint, EvalRequest, EvalResult, PollConfig
from epupp_bridge.poller import AsyncStatePoller, wait_for_port
from epupp_bridge.settings import BridgeSettings, get_settings

__all__ = [
    "AsyncStatePoller",
    "BencodeError",
    "BridgeError",
    "BridgeSettings",
    "Endpoint",
    "EvalClient",
    "EvalRequest",
    "EvalResult",
    "PollConfig",
    "ResponseOverflowError",
    "ResponseStateError",
    "WaitTimeoutError",
    "evaluate",
    "get_settings",
    "main",
    "wait_for_port",
]

EXIT_FAILURE = 1
EXIT_TIMEOUT = 2


def _configure_logging(level: str) -> None:
    level = "CRITICAL" if level == "NONE" else level
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # basicConfig skips an already configured root logger
    logging.getLogger().setLevel(level)


async def _run_eval(settings: BridgeSettings, code: str, as_json: bool) -> int:
    result = await EvalClient.from_settings(settings).evaluate(code)
    if as_json:
        sys.stdout.write(orjson.dumps(result.model_dump()).decode() + "\n")
    else:
        for value in result.values:
            print(value)
        if not result.success:
            print(f"Error: {result.error}", file=sys.stderr)
    return 0 if result.success else EXIT_FAILURE


async def _run_wait(settings: BridgeSettings, args: argparse.Namespace) -> int:
    poller = AsyncStatePoller(settings=settings)
    try:
        if args.expect is not None:
            value = await poller.wait_until(
                args.probe,
                args.expect,
                timeout_ms=args.timeout_ms,
                interval_ms=args.interval_ms,
            )
        else:
            value = await poller.wait_for(
                args.probe,
                timeout_ms=args.timeout_ms,
                interval_ms=args.interval_ms,
                pending_sentinel=args.sentinel,
            )
    except WaitTimeoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_TIMEOUT
    print(value)
    return 0


async def _run_wait_port(settings: BridgeSettings, timeout_ms: int) -> int:
    if await wait_for_port(settings.endpoint, timeout_ms):
        return 0
    print(f"Error: {settings.endpoint} not reachable after {timeout_ms}ms", file=sys.stderr)
    return EXIT_TIMEOUT


def main():
    parser = argparse.ArgumentParser(description="Evaluate code in a browser tab over nREPL")
    parser.add_argument("--host", type=str, help="Relay host (default: localhost)")
    parser.add_argument("--port", type=int, help="Relay nREPL port (default: 12345)")
    parser.add_argument(
        "--connect-timeout", type=float, help="Connect timeout in seconds (default: 5)"
    )
    parser.add_argument(
        "--read-timeout", type=float, help="Per-read timeout in seconds (default: 30)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        help="Logging level, or NONE to silence (default: WARNING)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    eval_parser = sub.add_parser("eval", help="Evaluate code once and print its values")
    eval_parser.add_argument("code", type=str)
    eval_parser.add_argument(
        "--json", action="store_true", help="Print the full result as JSON"
    )

    wait_parser = sub.add_parser(
        "wait", help="Poll a probe expression until it stops printing the sentinel"
    )
    wait_parser.add_argument("probe", type=str)
    wait_parser.add_argument("--timeout-ms", type=int, required=True)
    wait_parser.add_argument("--interval-ms", type=int)
    wait_parser.add_argument("--sentinel", type=str, help="Pending sentinel (default: :pending)")
    wait_parser.add_argument(
        "--expect", type=str, help="Wait until the probe prints exactly this value instead"
    )

    port_parser = sub.add_parser("wait-port", help="Wait until the relay accepts connections")
    port_parser.add_argument("--timeout-ms", type=int, required=True)

    args = parser.parse_args()

    # CLI takes precedence over env vars
    if args.host:
        os.environ["EPUPP_NREPL_HOST"] = args.host
    if args.port:
        os.environ["EPUPP_NREPL_PORT"] = str(args.port)
    if args.connect_timeout:
        os.environ["EPUPP_NREPL_CONNECT_TIMEOUT"] = str(args.connect_timeout)
    if args.read_timeout:
        os.environ["EPUPP_NREPL_READ_TIMEOUT"] = str(args.read_timeout)
    if args.log_level:
        os.environ["EPUPP_NREPL_LOG_LEVEL"] = args.log_level

    try:
        settings = get_settings()
    except ValidationError as e:
        parser.error(str(e))
    _configure_logging(settings.log_level)

    if args.command == "eval":
        run = _run_eval(settings, args.code, args.json)
    elif args.command == "wait":
        run = _run_wait(settings, args)
    else:
        run = _run_wait_port(settings, args.timeout_ms)

    try:
        return asyncio.run(run)
    except KeyboardInterrupt:
        return 130
