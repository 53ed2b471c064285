#!/usr/bin/env python3
"""Operator CLI for the Outreach Engine.

Usage:
    python -m outreach_engine.cli check-replies          # Poll the mailbox once
    python -m outreach_engine.cli sweep                  # Fire due follow-ups
    python -m outreach_engine.cli dueness CLIENT_ID      # Show dueness of a client
    python -m outreach_engine.cli show-config            # Print effective settings
    python -m outreach_engine.cli serve                  # Run the HTTP API
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

from outreach_engine.config import Settings, get_settings
from outreach_engine.core.exceptions import OutreachEngineError
from outreach_engine.core.log_setup import get_logger, setup_logging
from outreach_engine.lifecycle.engine import OutreachEngine

log = get_logger(__name__)


@asynccontextmanager
async def _open_engine(settings: Settings) -> AsyncIterator[OutreachEngine]:
    """Engine over the configured database for the duration of one command."""
    from outreach_engine.db import close_db, init_db
    from outreach_engine.main import build_engine

    await init_db()
    engine = build_engine(settings)
    try:
        yield engine
    finally:
        await engine.close()
        await close_db()


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, default=str))


def check_replies(args: argparse.Namespace) -> int:
    """Poll the mailbox once and apply replies."""
    settings = get_settings()

    async def run() -> int:
        async with _open_engine(settings) as engine:
            report = await engine.check_replies_now()
        _print_json(report.to_dict())
        return 0 if report.success else 2

    return asyncio.run(run())


def sweep(args: argparse.Namespace) -> int:
    """Fire FollowUpDue / AllAttemptsExhausted for due clients."""
    settings = get_settings()
    now = datetime.fromisoformat(args.now) if args.now else None

    async def run() -> int:
        async with _open_engine(settings) as engine:
            results = await engine.sweep(now)
        _print_json([r.to_dict() for r in results])
        print(f"\n{len(results)} client(s) updated", file=sys.stderr)
        return 0

    return asyncio.run(run())


def dueness(args: argparse.Namespace) -> int:
    """Show the dueness of one client."""
    settings = get_settings()
    now = datetime.fromisoformat(args.now) if args.now else None

    async def run() -> int:
        async with _open_engine(settings) as engine:
            client = await engine.get_client(args.client_id)
            state = await engine.evaluate_dueness(args.client_id, now)
        _print_json({
            "client_id": client.id,
            "status": client.status.value,
            "dueness": state.value,
            "next_follow_up_due": client.next_follow_up_due,
        })
        return 0

    return asyncio.run(run())


def show_config(args: argparse.Namespace) -> int:
    """Print the effective settings with secrets masked."""
    settings = get_settings()
    data = settings.model_dump(mode="json")
    for section in ("imap", "smtp"):
        if data["mailbox"][section].get("password"):
            data["mailbox"][section]["password"] = "***"
    if args.section:
        if args.section not in data:
            print(f"Unknown section: {args.section}", file=sys.stderr)
            return 1
        data = data[args.section]
    _print_json(data)
    return 0


def serve(args: argparse.Namespace) -> int:
    """Run the HTTP API."""
    from outreach_engine.main import run

    run()
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Outreach Engine operator tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("check-replies", help="Poll the mailbox once")

    sweep_parser = subparsers.add_parser("sweep", help="Fire due follow-up events")
    sweep_parser.add_argument("--now", help="ISO timestamp to evaluate at")

    dueness_parser = subparsers.add_parser("dueness", help="Show dueness of a client")
    dueness_parser.add_argument("client_id", help="Client id")
    dueness_parser.add_argument("--now", help="ISO timestamp to evaluate at")

    config_parser = subparsers.add_parser("show-config", help="Print effective settings")
    config_parser.add_argument("--section", help="Only print one section (e.g. outreach)")

    subparsers.add_parser("serve", help="Run the HTTP API")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    settings = get_settings()
    setup_logging(level=settings.log_level, json_output=settings.log_json)

    commands = {
        "check-replies": check_replies,
        "sweep": sweep,
        "dueness": dueness,
        "show-config": show_config,
        "serve": serve,
    }

    try:
        return commands[args.command](args)
    except OutreachEngineError as e:
        log.error("Command failed", command=args.command, error=str(e))
        print(json.dumps(e.to_dict(), default=str), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
