"""
confsync CLI - Get/Publish/Remove/Watch Config Items

Usage:
    # Read a config item
    confsync get --server-addr 127.0.0.1:8848 --data-id app.properties

    # Publish content (or --file to read it from disk)
    confsync publish --server-addr 127.0.0.1:8848 --data-id app.properties --content "a=1"

    # Delete a config item
    confsync remove --server-addr 127.0.0.1:8848 --data-id app.properties

    # Print every change until interrupted (or --duration seconds)
    confsync watch --server-addr 127.0.0.1:8848 --data-id app.properties

Output is JSON, one object per line.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from .common.config import load_client_config, load_client_config_file
from .common.exceptions import ConfSyncError
from .common.logging_setup import setup_logging, setup_logging_from_env
from .services.config.service import ConfigService


def _build_service(args: argparse.Namespace) -> ConfigService:
    """Client configuration: --config file first, command-line flags on top"""
    if args.config:
        config = load_client_config_file(args.config)
        if args.server_addr:
            config.server_addr = args.server_addr
        if args.namespace is not None:
            config.namespace = args.namespace
        config.validate()
    else:
        options: dict[str, Any] = {}
        if args.server_addr:
            options["server_addr"] = args.server_addr
        if args.namespace is not None:
            options["namespace"] = args.namespace
        config = load_client_config(options)
    return ConfigService(config)


async def get_config(args: argparse.Namespace) -> dict:
    async with _build_service(args) as service:
        content = await service.get_config(args.data_id, args.group, timeout=args.timeout)
        return {
            "success": True,
            "data_id": args.data_id,
            "group": args.group,
            "content": content,
            "server_status": service.get_server_status().value,
        }


async def publish_config(args: argparse.Namespace) -> dict:
    if args.file:
        content = Path(args.file).read_text(encoding="utf-8")
    else:
        content = args.content

    async with _build_service(args) as service:
        ok = await service.publish_config(args.data_id, args.group, content, config_type=args.type)
        return {"success": ok, "data_id": args.data_id, "group": args.group}


async def remove_config(args: argparse.Namespace) -> dict:
    async with _build_service(args) as service:
        ok = await service.remove_config(args.data_id, args.group)
        return {"success": ok, "data_id": args.data_id, "group": args.group}


async def watch_config(args: argparse.Namespace) -> dict:
    changes = 0

    def on_change(content: str) -> None:
        nonlocal changes
        changes += 1
        print(json.dumps({"data_id": args.data_id, "group": args.group, "content": content}), flush=True)

    async with _build_service(args) as service:
        await service.add_listener(args.data_id, args.group, on_change)
        try:
            if args.duration:
                await asyncio.sleep(args.duration)
            else:
                await asyncio.Event().wait()
        finally:
            await service.remove_listener(args.data_id, args.group, on_change)

    return {"success": True, "data_id": args.data_id, "group": args.group, "changes": changes}


COMMANDS = {
    "get": get_config,
    "publish": publish_config,
    "remove": remove_config,
    "watch": watch_config,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="confsync",
        description="Get, publish, remove and watch configuration items",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: CONFSYNC_LOG_LEVEL, else WARNING)",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--server-addr", help="Comma-separated host:port list")
    common.add_argument("--namespace", help="Namespace (tenant)")
    common.add_argument("--config", help="YAML client configuration file")
    common.add_argument("--data-id", required=True, help="Config item name")
    common.add_argument("--group", default=None, help="Group (default: DEFAULT_GROUP)")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    get_parser = subparsers.add_parser("get", parents=[common], help="Read a config item")
    get_parser.add_argument("--timeout", type=float, default=3.0, help="Live fetch timeout in seconds")

    publish_parser = subparsers.add_parser("publish", parents=[common], help="Publish a config item")
    source = publish_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--content", help="Content to publish")
    source.add_argument("--file", help="Read content from this file")
    publish_parser.add_argument("--type", default=None, help="Content type (properties, yaml, json, ...)")

    subparsers.add_parser("remove", parents=[common], help="Delete a config item")

    watch_parser = subparsers.add_parser("watch", parents=[common], help="Print changes of a config item")
    watch_parser.add_argument("--duration", type=float, default=None, help="Stop after this many seconds")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.log_level:
        setup_logging(log_level=args.log_level)
    else:
        setup_logging_from_env(default_level="WARNING")

    try:
        result = asyncio.run(COMMANDS[args.command](args))
    except ConfSyncError as e:
        result = {"success": False, "error": e.message, "code": e.code}
    except KeyboardInterrupt:
        return 0

    print(json.dumps(result))
    return 0 if result.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())
