"""
Command line entry point.

Loads configuration, configures logging, and either runs the polling view or
performs a single watchlist operation against the backend.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

import structlog

from .config import WatchlistConfig, load_config
from .flags import ALL_FLAGS
from .models import Subscription
from .mutator import MutationOutcome
from .view import WatchlistView

DEFAULT_CONFIG = "polytracking.yaml"


def configure_logging(level: str = "info", fmt: str = "text") -> None:
    """Configure structlog with the specified level and format."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )


def format_subscription(sub: Subscription) -> str:
    enabled = [name for name in ALL_FLAGS if sub.flag(name)]
    outcome = f" [{sub.target_outcome}]" if sub.target_outcome else ""
    return f"{sub.id}\t{sub.title}{outcome}\t{','.join(enabled) or '-'}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PolyTracking watchlist client")
    parser.add_argument(
        "-c", "--config",
        default=None,
        help=f"Path to configuration file (default: {DEFAULT_CONFIG} if present)",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Keep the watchlist in sync until interrupted")
    sub.add_parser("list", help="Print the current watchlist")

    add = sub.add_parser("add", help="Watch a market outcome")
    add.add_argument("asset_id")
    add.add_argument("title")
    add.add_argument("--outcome", default="", help="Outcome name, e.g. Yes")
    add.add_argument(
        "--flag", action="append", choices=ALL_FLAGS, default=None,
        help="Enable a notification flag (repeatable)",
    )

    remove = sub.add_parser("remove", help="Stop watching a subscription")
    remove.add_argument("subscription_id")

    toggle = sub.add_parser("toggle", help="Turn a notification flag on or off")
    toggle.add_argument("subscription_id")
    toggle.add_argument("flag", choices=ALL_FLAGS)
    toggle.add_argument("state", choices=["on", "off"])

    search = sub.add_parser("search", help="Search markets to watch")
    search.add_argument("query")

    telegram = sub.add_parser("telegram", help="Manage Telegram alerts")
    telegram.add_argument("action", choices=["connect", "disconnect", "status"])
    telegram.add_argument(
        "--wait", type=float, default=0.0,
        help="After connect, wait up to this many seconds for the link",
    )
    return parser


def _load(path: str | None) -> WatchlistConfig:
    if path is None:
        if not Path(DEFAULT_CONFIG).exists():
            return WatchlistConfig()
        path = DEFAULT_CONFIG
    return load_config(path)


def _report_notices(view: WatchlistView) -> int:
    notices = view.notices.recent()
    for notice in notices:
        print(f"{notice.level.value}: {notice.message}", file=sys.stderr)
    return 1 if notices else 0


async def _one_shot(view: WatchlistView, args: argparse.Namespace) -> int:
    await view.open()
    try:
        if args.command == "search":
            for market in await view.client.list_market_candidates(args.query):
                print(market.title)
                for option in market.options:
                    price = "" if option.current_price is None else f"\t{option.current_price:.3f}"
                    print(f"  {option.name}\t{option.asset_id}{price}")
            return 0

        if args.command == "telegram":
            if args.action == "connect":
                link = await view.channel.connect()
                if link is None:
                    return _report_notices(view)
                print(link)
                if args.wait > 0:
                    linked = await view.channel.wait_until_connected(timeout=args.wait)
                    print("connected" if linked else "not connected")
                return 0
            if args.action == "disconnect":
                ok = await view.channel.disconnect()
                return 0 if ok else _report_notices(view)
            connected = await view.channel.refresh_status()
            print("connected" if connected else "not connected")
            return 0

        if args.command == "add":
            flags = {name: True for name in args.flag} if args.flag else None
            created = await view.mutator.subscribe(
                args.asset_id, args.title, args.outcome, flags
            )
            if created is None:
                return _report_notices(view)
            print(format_subscription(created))
            return 0

        if not await view.refresh():
            print(view.poller.last_error or "Not signed in", file=sys.stderr)
            return 1

        if args.command == "list":
            for record in view.mirror.records():
                print(format_subscription(record))
            return 0

        if args.command == "remove":
            outcome = await view.mutator.delete_subscription(args.subscription_id)
        else:
            outcome = await view.mutator.toggle_flag(
                args.subscription_id, args.flag, args.state == "on"
            )
        if outcome not in (MutationOutcome.APPLIED, MutationOutcome.NOOP):
            return _report_notices(view)
        record = view.mirror.get(args.subscription_id)
        if record is not None:
            print(format_subscription(record))
        return 0
    finally:
        await view.mutator.wait_idle()
        await view.close()


def run(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = _load(args.config)
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.logging.level, config.logging.format)
    log = structlog.get_logger()
    log.info("watchlist.config_loaded", backend=config.backend.url)

    view = WatchlistView(config)
    command = args.command or "run"
    if command == "run":
        view.mirror.on_change(
            lambda mirror: log.info("watchlist.updated", subscriptions=len(mirror))
        )
        try:
            asyncio.run(view.run_forever())
        except KeyboardInterrupt:
            pass
        return

    args.command = command
    try:
        code = asyncio.run(_one_shot(view, args))
    except (LookupError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    run()
