"""CLI entry point for pocketsync."""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

from .collection import LocalCollection
from .config import Config, load_config
from .errors import SubscriptionError
from .remote import PocketBaseClient
from .sync import CollectionSync
from .types import ApplyOp


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure root logging; an explicit log_level wins over verbose."""
    if log_level:
        level = getattr(logging, log_level.upper())
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    handler.setFormatter(
        JSONFormatter()
        if json_output
        else logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    logging.basicConfig(level=level, handlers=[handler])

    # Per-request logging from httpx is too noisy at info level
    logging.getLogger("httpx").setLevel(logging.WARNING)


def create_client(config: Config) -> PocketBaseClient:
    """Build a remote client from configuration."""
    return PocketBaseClient(
        base_url=config.remote.url,
        token=config.remote.token,
        timeout=config.remote.timeout_seconds,
        page_size=config.remote.page_size,
        max_reconnects=config.remote.max_reconnects,
        reconnect_delay=config.remote.reconnect_delay_seconds,
    )


def format_change(op: ApplyOp) -> str:
    """Render one applied operation for terminal output."""
    return f"{op.kind.value:<6} {op.key} {json.dumps(op.value, default=str)}"


async def cmd_watch(args: argparse.Namespace) -> int:
    """Load a collection and print every change until interrupted."""
    config = load_config(args.config)
    collection_config = config.collection(args.collection)
    client = create_client(config)

    local = LocalCollection()

    def print_changes(ops: list[ApplyOp]) -> None:
        for op in ops:
            print(format_change(op))

    local.subscribe(print_changes)

    session = CollectionSync(client, collection_config)
    print(f"Watching {args.collection} on {config.remote.url}")

    try:
        await session.start(local)
        print(f"Loaded {len(local)} records, subscribed={session.is_subscribed()}")
        while True:
            await asyncio.sleep(3600)
    except SubscriptionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except asyncio.CancelledError:
        print("\nShutting down...")
    finally:
        await session.cancel()
        await client.close()

    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Check connectivity status."""
    config = load_config(args.config)
    client = create_client(config)

    try:
        reachable = await client.health_check()
    finally:
        await client.close()

    status_data = {
        "timestamp": datetime.now().isoformat(),
        "remote": {
            "url": config.remote.url,
            "reachable": reachable,
            "authenticated": bool(config.remote.token),
        },
        "collections": {
            name: {
                "realtime": c.realtime,
                "mutation_timeout_seconds": c.mutation_timeout_seconds,
                "initial_fetch": c.initial_fetch.to_params(),
            }
            for name, c in config.collections.items()
        },
    }

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0 if reachable else 1

    print(f"Remote: {config.remote.url} ({'reachable' if reachable else 'unreachable'})")
    if not config.collections:
        print("No collections configured")
    for name, info in status_data["collections"].items():
        print(f"  {name}: realtime={info['realtime']}, timeout={info['mutation_timeout_seconds']}s")

    return 0 if reachable else 1


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="pocketsync",
        description="Keep a local collection in sync with a PocketBase collection",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    watch_parser = subparsers.add_parser("watch", help="Print live changes of a collection")
    watch_parser.add_argument("collection", help="Collection name")
    watch_parser.set_defaults(func=cmd_watch)

    status_parser = subparsers.add_parser("status", help="Check connectivity status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
