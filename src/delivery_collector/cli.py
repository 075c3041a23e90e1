"""Command line entry point for delivery stats collection.

Usage:
    # Last 3 full days for every active account, then export
    delivery-collector recent

    # Explicit range for one account, Grab only, no export
    delivery-collector range --start 2024-09-01 --end 2024-09-10 \\
        --account "Warung Bu Sri" --platform grab --no-export

    # Backfill full history month by month
    delivery-collector history --end 2024-09-30

    # Re-run metric days whose last attempt ended in an error
    delivery-collector retry-failed

    # Export everything stored locally
    delivery-collector export
"""
import argparse
import asyncio
import logging
import sys
from datetime import date, datetime
from typing import Optional

import aiohttp
from redis.asyncio import Redis

from .collector import CollectionReport, build_collector
from .config import CollectorSettings, load_accounts
from .exceptions import ConfigurationError
from .schemas.accounts import Account, Platform


logger = logging.getLogger("delivery_collector")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD") from exc


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid number '{value}'") from exc
    if number < 1:
        raise argparse.ArgumentTypeError(f"Expected a positive number of days, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--account",
        action="append",
        dest="accounts",
        metavar="NAME",
        help="Only process this account (repeatable)",
    )
    common.add_argument(
        "--platform",
        choices=[platform.value for platform in Platform],
        help="Only collect this platform",
    )
    common.add_argument(
        "--no-export",
        action="store_true",
        help="Skip exporting to the central stats store",
    )
    common.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    parser = argparse.ArgumentParser(description="Grab/GoJek delivery stats collector")
    modes = parser.add_subparsers(dest="mode", required=True)

    recent = modes.add_parser("recent", parents=[common], help="Collect the last N full days")
    recent.add_argument(
        "--days", type=_positive_int, help="Number of days (default COLLECTOR_RECENT_DAYS)"
    )

    ranged = modes.add_parser("range", parents=[common], help="Collect an explicit date range")
    ranged.add_argument("--start", type=_parse_date, required=True, help="First day (YYYY-MM-DD)")
    ranged.add_argument("--end", type=_parse_date, required=True, help="Last day (YYYY-MM-DD)")

    history = modes.add_parser("history", parents=[common], help="Walk history backwards")
    history.add_argument("--end", type=_parse_date, help="Newest day (default yesterday)")

    modes.add_parser(
        "retry-failed", parents=[common], help="Re-run metric days whose last attempt failed"
    )

    export = modes.add_parser("export", parents=[common], help="Export stored records only")
    export.add_argument("--since", type=_parse_date, help="Oldest day to export")

    return parser


def select_accounts(accounts: list[Account], names: Optional[list[str]]) -> list[Account]:
    """Filter accounts by name.

    Raises:
        ConfigurationError: If a requested name is not configured
    """
    if not names:
        return accounts
    known = {account.name: account for account in accounts}
    unknown = [name for name in names if name not in known]
    if unknown:
        raise ConfigurationError(f"Unknown accounts: {', '.join(unknown)}")
    return [known[name] for name in names]


def _log_report(report: CollectionReport) -> None:
    summary = report.summary()
    logger.info(
        "Run finished: accounts=%s, locked=%s, partial=%s, days=%s, export_failures=%s",
        summary["accounts"],
        summary["locked"],
        summary["partial"],
        summary["days_collected"],
        summary["export_failures"],
    )


async def execute(args: argparse.Namespace, settings: CollectorSettings) -> CollectionReport:
    accounts = select_accounts(load_accounts(settings), args.accounts)
    platforms = [Platform(args.platform)] if args.platform else None

    redis = Redis.from_url(settings.redis_url) if settings.redis_url else None
    timeout = aiohttp.ClientTimeout(total=settings.http_timeout, connect=30)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            collector = build_collector(settings, session, redis=redis)

            if args.mode == "recent":
                report = await collector.collect_recent(accounts, args.days, platforms)
            elif args.mode == "range":
                if args.start > args.end:
                    raise ConfigurationError("--start must not be after --end")
                report = await collector.collect_range(accounts, args.start, args.end, platforms)
            elif args.mode == "history":
                report = await collector.collect_history(accounts, args.end, platforms)
            elif args.mode == "retry-failed":
                report = await collector.collect_failed(accounts, platforms)
            else:
                report = CollectionReport()

            if args.mode == "export" or not args.no_export:
                since = getattr(args, "since", None)
                report.exports = await collector.export(accounts, since=since)
    finally:
        if redis is not None:
            await redis.aclose()

    return report


async def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point.

    Returns:
        Process exit code: 0 on completion (partial metric failures
        included), 1 on configuration errors or unexpected failures
    """
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = CollectorSettings.from_env()
        report = await execute(args, settings)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 1
    except Exception as exc:
        logger.error("Collector run failed: %s", exc, exc_info=True)
        return 1

    _log_report(report)
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
