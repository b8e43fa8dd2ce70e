"""Core execution workflow for rentwatcher."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Set

from .db import Database
from .diff import KnownIdSource, classify_rentals
from .fetcher import DEFAULT_DELAY_MS, DEFAULT_MAX_CONCURRENT, Fetch, fetch_sources
from .filtering import (
    FilteredMode,
    NotifyMode,
    annotate_rentals,
    filter_for_notification,
)
from .identity import entity_id
from .merge import merge_outcomes
from .models import (
    AnnotatedRental,
    CrawlMetadata,
    CrawlResult,
    CrawlSession,
    CrawlSummary,
)
from .notifications import Notifier, deliver_rentals
from .query import SearchQuery

logger = logging.getLogger(__name__)


class CrawlStore(KnownIdSource, Protocol):
    """Persistence collaborator of a crawl."""

    def write_crawl_result(
        self,
        query_id: str,
        rentals: Sequence[AnnotatedRental],
        metadata: CrawlMetadata,
    ) -> CrawlSession:
        ...


@dataclass
class CrawlOptions:
    max_latest: int | None = None
    notify_mode: NotifyMode = NotifyMode.FILTERED
    filtered_mode: FilteredMode = FilteredMode.SILENT
    distance_threshold: int | None = None
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    delay_ms: int = DEFAULT_DELAY_MS

    def __post_init__(self) -> None:
        self.notify_mode = NotifyMode(self.notify_mode)
        self.filtered_mode = FilteredMode(self.filtered_mode)


@dataclass
class CrawlRunner:
    """Coordinates fetch, merge, classification, notification and persistence."""

    store: CrawlStore
    fetch: Fetch
    notifier: Optional[Notifier] = None
    notification_delay: float = 1.0

    def init(self) -> None:
        """Initialize required persistence structures."""
        if isinstance(self.store, Database):
            logger.info("Initializing database at %s", self.store.path)
            self.store.initialize()

    async def crawl(self, url: str, options: CrawlOptions | None = None) -> CrawlResult:
        """Execute one crawl of ``url``.

        Raises InvalidUrl for a URL that is not a 591 search; failing sources
        are reported in the summary instead of raising.
        """
        options = options or CrawlOptions()
        query = SearchQuery.parse(url)
        query_id = query.query_id
        sources = query.split_by_stations() if query.has_multiple_stations else [query]
        multi_source = len(sources) > 1
        logger.info("Starting crawl of %s (%s, %d sources)", query_id,
                    query.description, len(sources))

        outcomes = await fetch_sources(
            sources,
            self.fetch,
            max_concurrent=options.max_concurrent,
            delay_ms=options.delay_ms,
        )
        merged = merge_outcomes(outcomes)
        if merged.errors:
            logger.warning("%d of %d sources failed", len(merged.errors),
                           len(sources))

        classification = classify_rentals(merged.rentals, url, self.store,
                                          options.max_latest)
        to_notify = filter_for_notification(
            classification.selected,
            options.notify_mode,
            options.filtered_mode,
            options.distance_threshold,
        )
        annotated = annotate_rentals(
            merged.rentals,
            to_notify,
            options.notify_mode,
            options.filtered_mode,
            options.distance_threshold,
        )

        notifications_sent = 0
        if self.notifier and to_notify:
            notifications_sent = await asyncio.to_thread(
                deliver_rentals,
                self.notifier,
                to_notify,
                url,
                self.notification_delay,
            )

        source_urls = [outcome.url for outcome in outcomes]
        new_ids: Set[str] = {entity_id(rental).value for rental in classification.added}
        metadata = CrawlMetadata(
            url=url,
            description=query.description,
            max_latest=options.max_latest,
            notify_mode=options.notify_mode.value,
            filtered_mode=options.filtered_mode.value,
            distance_threshold=options.distance_threshold,
            new_ids=new_ids,
            notifications_sent=notifications_sent,
            multi_source=multi_source,
            sources=source_urls,
            errors=merged.errors,
        )
        session = self.store.write_crawl_result(query_id, annotated, metadata)

        summary = CrawlSummary(
            query_id=query_id,
            query_description=query.description,
            total_found=len(merged.rentals),
            new_count=len(classification.added),
            notifications_sent=notifications_sent,
            source_count=len(sources),
            sources=source_urls,
            errors=merged.errors,
            duplicate_count=merged.duplicate_count,
            multi_source=multi_source,
            lookup_failed=classification.lookup_failed,
            session=session,
        )
        logger.info(
            "Crawl of %s finished: %d rentals, %d new, %d notified, %d errors",
            query_id,
            summary.total_found,
            summary.new_count,
            summary.notifications_sent,
            len(summary.errors),
        )
        return CrawlResult(rentals=annotated, summary=summary)

    def run(self, url: str, options: CrawlOptions | None = None) -> CrawlResult:
        """Blocking wrapper around :meth:`crawl`."""
        return asyncio.run(self.crawl(url, options))

    def report_error(self, url: str, error: BaseException | str) -> None:
        if not self.notifier:
            return
        try:
            self.notifier.send_error(url, str(error))
        except Exception:  # noqa: BLE001
            logger.exception("Failed to send error notification")
