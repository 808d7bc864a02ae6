"""Command-line entry point.

Usage:
    python -m vip_wager_tracker init-db
    python -m vip_wager_tracker sync [--timeframe monthly] [--user EXTERNAL_ID]
    python -m vip_wager_tracker rankings [--timeframe weekly]
    python -m vip_wager_tracker run
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from vip_wager_tracker.config import get_settings
from vip_wager_tracker.engine import WagerEngine
from vip_wager_tracker.enums import Timeframe
from vip_wager_tracker.errors import WagerEngineError, error_to_dict

logger = logging.getLogger(__name__)


def _timeframe(value: str) -> Timeframe:
    try:
        return Timeframe.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid timeframe: {value!r}") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vip-wager-tracker",
        description="Wager sync, adjustment and ranking engine.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables.")

    sync = sub.add_parser("sync", help="Sync wager data from the external API.")
    sync.add_argument("--timeframe", type=_timeframe, default=None, help="daily, weekly, monthly or all_time.")
    sync.add_argument("--user", dest="external_id", default=None, help="Sync a single external user id.")

    rankings = sub.add_parser("rankings", help="Recalculate rankings.")
    rankings.add_argument("--timeframe", type=_timeframe, default=None, help="Timeframe to rank (default: all).")

    sub.add_parser("run", help="Run the periodic sync loop until interrupted.")
    return parser


async def _run_command(args: argparse.Namespace) -> int:
    if args.command == "run":
        await WagerEngine().run()
        return 0

    async with WagerEngine() as engine:
        if args.command == "init-db":
            await engine.init_schema()
            print("Database schema initialized")
        elif args.command == "sync" and args.external_id:
            entry = await engine.sync_user(args.external_id, args.timeframe)
            if entry is None:
                print(f"User {args.external_id} not found in external leaderboard")
                return 1
            print(f"Synced {entry.external_id} ({entry.username})")
        elif args.command == "sync":
            result = await engine.sync_all_users(args.timeframe)
            print(
                json.dumps(
                    {
                        "log_id": result.log_id,
                        "timeframe": result.timeframe.value,
                        "api_status": result.api_status.value,
                        "users_processed": result.users_processed,
                        "users_updated": result.users_updated,
                        "users_added": result.users_added,
                        "errors": result.errors,
                        "duration_seconds": round(result.duration_seconds, 2),
                    },
                    indent=2,
                )
            )
        elif args.command == "rankings":
            ranked = await engine.recalculate_rankings(args.timeframe)
            print(json.dumps({tf.value: count for tf, count in ranked.items()}, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings.validate_requirements(command=args.command)
    except ValueError as e:
        logger.error("%s", e)
        return 2
    logger.debug("Settings: %s", settings.redacted_summary())

    try:
        return asyncio.run(_run_command(args))
    except KeyboardInterrupt:
        return 130
    except WagerEngineError as e:
        logger.error("%s failed: %s", args.command, json.dumps(error_to_dict(e)))
        return 1


if __name__ == "__main__":
    sys.exit(main())
