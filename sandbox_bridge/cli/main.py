"""CLI: sandbox-bridge serve, instances, cleanup, config validate."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys

import httpx

from ..config import load_config, validate_config
from ..core.ports import PortCoordinator


def _setup_logging(level: str) -> None:
    # stdout carries the MCP stdio protocol; logs go to stderr.
    logging.basicConfig(
        stream=sys.stderr,
        level=os.environ.get("LOG_LEVEL", level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_or_exit(config_path: str | None):
    try:
        return load_config(config_path)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)


def cmd_serve(args):
    """Run the MCP server (stdio) with discovery HTTP on a claimed port."""
    from ..service.runner import run_bridge
    from ..types import PortRangeExhausted

    config = _load_or_exit(args.config)
    _setup_logging(args.log_level or config.log_level)

    errors = validate_config(config)
    if errors:
        for err in errors:
            print(f"Config error: {err}", file=sys.stderr)
        sys.exit(1)

    try:
        asyncio.run(run_bridge(
            config,
            preferred_port=args.port,
            label=args.label,
            connect=not args.no_connect,
        ))
    except PortRangeExhausted as e:
        print(f"Error: {e}\n{e.hint}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


def cmd_instances(args):
    """List live instances advertised on this machine."""
    config = _load_or_exit(args.config)
    coordinator = PortCoordinator(config.ports)
    instances = coordinator.discover_instances(args.port)

    rows = []
    for adv in instances:
        row = adv.to_dict()
        if args.check:
            row["healthy"] = _check_health(adv.host, adv.port)
        rows.append(row)

    if args.json:
        print(json.dumps(rows, indent=2))
        return

    if not rows:
        first = args.port or config.ports.preferred_port
        print(f"No live instances on ports {first}-{first + config.ports.range_size - 1}.")
        return

    for row in rows:
        line = f"  {row['host']}:{row['port']}  pid={row['pid']}  started={row['startedAt']}"
        if args.check:
            line += "  healthy" if row["healthy"] else "  NOT RESPONDING"
        print(line)


def _check_health(host: str, port: int) -> bool:
    try:
        with httpx.Client(timeout=2.0) as client:
            resp = client.get(f"http://{host}:{port}/health")
            return resp.status_code == 200
    except httpx.HTTPError:
        return False


def cmd_cleanup(args):
    """Remove advertisement files left behind by dead processes."""
    config = _load_or_exit(args.config)
    coordinator = PortCoordinator(config.ports)
    cleaned = coordinator.cleanup_stale()
    print(f"Removed {cleaned} stale advertisement file(s) from {coordinator.directory}")


def cmd_config_validate(args):
    """Validate config file."""
    config = _load_or_exit(args.config)

    errors = validate_config(config)
    if errors:
        print("Config validation errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    else:
        print("Config is valid.")
        print(f"  Debug endpoint: {config.host.debug_endpoint}")
        first = config.ports.preferred_port
        print(f"  Ports: {first}-{first + config.ports.range_size - 1}")
        print(f"  Console buffer: {config.console.buffer_size:,} entries")
        print(f"  Cache: {config.cache.max_entries} entries, {config.cache.ttl_seconds:g}s TTL")


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="sandbox-bridge",
        description="Bridge MCP clients to a desktop app's plugin sandbox",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    subparsers = parser.add_subparsers(dest="command")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the MCP server (stdio)")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="Preferred port")
    serve_parser.add_argument("--label", default="", help="Instance label shown by /health")
    serve_parser.add_argument("--log-level", default=None, help="Override config log_level")
    serve_parser.add_argument(
        "--no-connect",
        action="store_true",
        help="Do not attach to the desktop app until a tool needs it",
    )

    # instances
    instances_parser = subparsers.add_parser("instances", help="List live instances")
    instances_parser.add_argument("--port", "-p", type=int, default=None, help="First port of the range")
    instances_parser.add_argument("--check", action="store_true", help="Ping each instance's /health")
    instances_parser.add_argument("--json", action="store_true", help="Print JSON")

    # cleanup
    subparsers.add_parser("cleanup", help="Remove stale advertisement files")

    # config validate
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "instances":
        cmd_instances(args)
    elif args.command == "cleanup":
        cmd_cleanup(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            config_parser.print_help()
            sys.exit(1)


if __name__ == "__main__":
    main()
