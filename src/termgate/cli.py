"""Command-line interface for termgate.

Runs the broker server, or sends commands to terminals through a
running server the same way any other API client would.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="termgate",
        description="Access-controlled command broker for tmux sessions",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/termgate.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("serve", help="Start the HTTP/WebSocket server")

    exec_parser = subparsers.add_parser(
        "exec",
        help="Run a command on one, several or all terminals via the server",
    )
    target = exec_parser.add_mutually_exclusive_group()
    target.add_argument(
        "--all", action="store_true",
        help="Run on every terminal you have access to",
    )
    target.add_argument(
        "--multiple", type=str, default=None, metavar="ID1,ID2",
        help="Comma-separated terminal ids",
    )
    exec_parser.add_argument(
        "args", nargs="+", metavar="ARG",
        help="TERMINAL_ID COMMAND, or just COMMAND with --all/--multiple",
    )
    exec_parser.add_argument(
        "--url", type=str, default=None,
        help="Server URL (default: client.base_url from config)",
    )

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from termgate.config.settings import load_settings
    from termgate.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "serve":
        logger.info("Starting termgate server")
        import uvicorn

        from termgate.endpoint.server import create_app

        app = create_app(settings=settings)
        uvicorn.run(app, host=settings.server.host, port=settings.server.port)

    elif args.command == "exec":
        sys.exit(asyncio.run(_exec(settings, args)))


async def _exec(settings, args) -> int:
    """Send a command through the server and print the per-terminal results."""
    from termgate.client import ClientError, TermgateClient

    if args.all or args.multiple:
        command = " ".join(args.args)
        terminal_id = None
    elif len(args.args) < 2:
        print("exec needs a terminal id and a command", file=sys.stderr)
        return 2
    else:
        terminal_id, command = args.args[0], " ".join(args.args[1:])

    client = TermgateClient(
        base_url=args.url or settings.client.base_url,
        token=settings.api_token.get_secret_value() or None,
        timeout=settings.client.timeout,
    )
    try:
        async with client:
            if args.all:
                results = await client.execute_all(command)
            elif args.multiple:
                ids = [t.strip() for t in args.multiple.split(",") if t.strip()]
                results = await client.execute_many(ids, command)
            else:
                results = [await client.execute(terminal_id, command)]
    except ClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        for reason in e.reasons:
            print(f"  - {reason}", file=sys.stderr)
        return 1

    failed = 0
    for result in results:
        if result.get("success"):
            print(f"[ok]     {result['terminalId']}: {result.get('message', '')}")
        else:
            failed += 1
            detail = "; ".join(result.get("reasons") or []) or result.get("error", "")
            print(f"[failed] {result['terminalId']}: {detail}")
    logger.debug("Results: %s", json.dumps(results))
    return 1 if failed else 0


if __name__ == "__main__":
    main()
