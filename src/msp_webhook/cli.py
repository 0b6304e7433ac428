#!/usr/bin/env python3
"""
Command line interface for the webhook exporter.

Usage:
    msp-webhook run --config config.yaml
    msp-webhook serve --config config.yaml --port 8060
    msp-webhook backlog show --config config.yaml
    msp-webhook backlog flush --config config.yaml
    msp-webhook backlog clear --config config.yaml
    msp-webhook send-test --config config.yaml
    msp-webhook status --base-url http://localhost:8060
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any

from .backlog.store import DurableBacklog
from .config import Config, ConfigError
from .delivery.client import WebhookClient
from .delivery.result import DeliveryError
from .metrics.store import SampleStore
from .records import build_record


def print_json(data: Any, indent: int = 2) -> None:
    output = json.dumps(data, indent=indent, default=str)
    print(output)


def load_config(args) -> Config:
    config = Config.from_file(args.config)
    logging.basicConfig(
        level=args.log_level or config.logging.level,
        format=config.logging.format,
    )
    return config


def backlog_from_config(config: Config) -> DurableBacklog:
    return DurableBacklog(
        path=config.backlog.path,
        max_entries=config.backlog.max_entries,
        max_age_hours=config.backlog.max_age_hours,
    )


def client_from_config(config: Config) -> WebhookClient:
    return WebhookClient(
        webhook_url=config.exporter.webhook_url,
        auth_key=config.exporter.auth_key,
        auth_param=config.exporter.auth_param,
        timeout=config.delivery.timeout_seconds,
    )


async def cmd_run(args):
    """Run the exporter until interrupted."""
    from .exporter import WebhookExporter
    from .main import create_bus

    config = load_config(args)
    exporter = WebhookExporter(create_bus(config))

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt
            pass

    await exporter.start(config)
    try:
        await stop_event.wait()
    finally:
        await exporter.stop()

    return 0


def cmd_serve(args):
    """Run the exporter with the HTTP status app."""
    from .main import run

    run(config_path=args.config, host=args.host, port=args.port)
    return 0


async def cmd_backlog_show(args):
    """Print the backlog."""
    config = load_config(args)
    entries = backlog_from_config(config).load()
    print_json({"path": config.backlog.path, "size": len(entries), "entries": entries})
    return 0


async def cmd_backlog_flush(args):
    """Resend the backlog once."""
    config = load_config(args)
    backlog = backlog_from_config(config)
    client = client_from_config(config)

    await client.start()
    try:
        outcome = await backlog.drain_attempt(client.send)
    finally:
        await client.stop()

    print_json(outcome.to_dict())
    return 0 if outcome.complete else 1


async def cmd_backlog_clear(args):
    """Drop every backlogged record."""
    config = load_config(args)
    backlog = backlog_from_config(config)
    size = backlog.size()

    if not args.yes:
        print(f"Refusing to delete {size} record(s) without --yes", file=sys.stderr)
        return 1

    if not await backlog.clear():
        print("Failed to clear backlog", file=sys.stderr)
        return 1

    print(f"Cleared {size} record(s) from {config.backlog.path}")
    return 0


async def cmd_send_test(args):
    """Send one empty record to check the webhook URL and key."""
    config = load_config(args)
    record = build_record(SampleStore(), config.exporter.enabled_metrics)
    client = client_from_config(config)

    await client.start()
    try:
        result = (await client.send(record)).raise_for_failure()
    except DeliveryError as e:
        print(f"Send failed: {e}", file=sys.stderr)
        if e.body:
            print(e.body, file=sys.stderr)
        return 1
    finally:
        await client.stop()

    print(f"Delivered ({result.status_code}) in {result.latency_ms:.0f} ms")
    return 0


async def cmd_status(args):
    """Show the status of a running service."""
    import httpx

    url = f"{args.base_url.rstrip('/')}/health"

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(url)
    except httpx.HTTPError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if response.status_code != 200:
        print(f"Error: {response.status_code}", file=sys.stderr)
        print(response.text, file=sys.stderr)
        return 1

    data = response.json()
    print(f"Status:    {data.get('status')}")
    print(f"Connected: {data.get('connected')}")
    print(f"Backlog:   {data.get('backlog_size')} record(s)")
    if args.verbose:
        print_json(data.get("stats", {}))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="msp-webhook",
        description="Send vessel data to a webhook with an offline backlog",
    )
    parser.add_argument("--log-level", default=None, help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the exporter")
    run_parser.add_argument("--config", "-c", required=True, help="Config file (YAML or JSON)")
    run_parser.set_defaults(func=cmd_run)

    serve_parser = subparsers.add_parser("serve", help="Run the exporter with the HTTP status app")
    serve_parser.add_argument("--config", "-c", required=True, help="Config file (YAML or JSON)")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.set_defaults(func=cmd_serve)

    backlog_parser = subparsers.add_parser("backlog", help="Inspect or maintain the offline backlog")
    backlog_sub = backlog_parser.add_subparsers(dest="backlog_command", required=True)

    show_parser = backlog_sub.add_parser("show", help="Print backlogged records")
    show_parser.add_argument("--config", "-c", required=True)
    show_parser.set_defaults(func=cmd_backlog_show)

    flush_parser = backlog_sub.add_parser("flush", help="Resend backlogged records now")
    flush_parser.add_argument("--config", "-c", required=True)
    flush_parser.set_defaults(func=cmd_backlog_flush)

    clear_parser = backlog_sub.add_parser("clear", help="Delete every backlogged record")
    clear_parser.add_argument("--config", "-c", required=True)
    clear_parser.add_argument("--yes", "-y", action="store_true", help="Confirm deletion")
    clear_parser.set_defaults(func=cmd_backlog_clear)

    send_parser = subparsers.add_parser("send-test", help="Send one empty record to the webhook")
    send_parser.add_argument("--config", "-c", required=True)
    send_parser.set_defaults(func=cmd_send_test)

    status_parser = subparsers.add_parser("status", help="Query a running service")
    status_parser.add_argument("--base-url", default="http://localhost:8060")
    status_parser.add_argument("--verbose", "-v", action="store_true")
    status_parser.set_defaults(func=cmd_status)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if asyncio.iscoroutinefunction(args.func):
            return asyncio.run(args.func(args))
        return args.func(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
