"""CLI entrypoint for the rentwatcher crawler."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from rentwatcher.config import Settings
from rentwatcher.db import Database, resolve_sqlite_path
from rentwatcher.filtering import FilteredMode, NotifyMode
from rentwatcher.notifications import build_notifier
from rentwatcher.runner import CrawlOptions, CrawlRunner
from rentwatcher.scraper import ListingFetcher

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="591 rental crawler")
    parser.add_argument("--init", action="store_true", help="initialize storage and exit")
    parser.add_argument("--run", action="store_true", help="execute one crawl")
    parser.add_argument(
        "--url",
        default=os.getenv("TARGET_URL"),
        help="591 search URL to crawl (overrides TARGET_URL env var)",
    )
    parser.add_argument(
        "--max-latest",
        type=int,
        default=None,
        help="notify the latest N rentals regardless of history",
    )
    parser.add_argument(
        "--notify-mode",
        choices=[mode.value for mode in NotifyMode],
        default=NotifyMode.FILTERED.value,
    )
    parser.add_argument(
        "--filtered-mode",
        choices=[mode.value for mode in FilteredMode],
        default=FilteredMode.SILENT.value,
        help="how rentals far from the MRT are delivered in filtered mode",
    )
    parser.add_argument(
        "--distance-threshold",
        type=int,
        default=None,
        help="MRT walking distance in meters (defaults to MRT_DISTANCE_THRESHOLD)",
    )
    parser.add_argument("--max-concurrent", type=int, default=None)
    parser.add_argument(
        "--delay-ms",
        type=int,
        default=None,
        help="minimum spacing between source fetch starts",
    )
    parser.add_argument(
        "--export",
        type=Path,
        default=None,
        metavar="PATH",
        help="write the rentals of the crawled query to an xlsx file",
    )
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    settings = Settings.from_env()
    database = Database(
        path=resolve_sqlite_path(settings.database_url),
        title_similarity_threshold=settings.title_similarity_threshold,
    )
    fetcher = ListingFetcher(
        max_retries=settings.max_retries,
        retry_delay=settings.retry_delay_ms / 1000.0,
        timeout=settings.request_timeout_ms / 1000.0,
        user_agent=settings.user_agent,
    )
    notify_mode = NotifyMode(args.notify_mode)
    notifier = None
    if notify_mode is not NotifyMode.NONE:
        notifier = build_notifier(settings.discord_webhook_url, settings.slack_webhook)
    runner = CrawlRunner(
        store=database,
        fetch=fetcher,
        notifier=notifier,
        notification_delay=settings.notification_delay_ms / 1000.0,
    )

    if args.init:
        runner.init()
        return 0

    if not args.run:
        parser.print_help()
        return 1

    if not args.url:
        parser.error("--url (or TARGET_URL) is required with --run")

    options = CrawlOptions(
        max_latest=args.max_latest,
        notify_mode=notify_mode,
        filtered_mode=FilteredMode(args.filtered_mode),
        distance_threshold=(
            args.distance_threshold
            if args.distance_threshold is not None
            else settings.distance_threshold
        ),
        max_concurrent=args.max_concurrent or settings.max_concurrent,
        delay_ms=args.delay_ms if args.delay_ms is not None else settings.request_delay_ms,
    )

    runner.init()
    try:
        result = runner.run(args.url, options)
    except Exception as exc:
        logger.exception("Crawl failed: %s", exc)
        runner.report_error(args.url, exc)
        raise

    summary = result.summary
    logger.info(
        "%s: %d rentals from %d source(s), %d new, %d notified",
        summary.query_description or summary.query_id,
        summary.total_found,
        summary.source_count,
        summary.new_count,
        summary.notifications_sent,
    )
    for error in summary.errors:
        logger.warning("Source %s failed: %s", error.source_id or error.url, error.error)

    if args.export:
        database.export_query_to_xlsx(summary.query_id, args.export)
    return 0


if __name__ == "__main__":
    sys.exit(main())
