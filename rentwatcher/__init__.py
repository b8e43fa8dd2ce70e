"""rentwatcher package initialization."""

from .db import Database
from .diff import classify_rentals, find_new_rentals
from .errors import (
    ClassificationLookupError,
    InvalidUrl,
    PersistenceWriteError,
    RentwatcherError,
    SourceFetchError,
    UnidentifiableRecord,
)
from .fetcher import fetch_sources
from .filtering import FilteredMode, NotifyMode, decide_notification, filter_for_notification
from .identity import entity_id
from .merge import merge_outcomes
from .models import (
    AnnotatedRental,
    CrawlResult,
    CrawlSummary,
    MergeResult,
    Rental,
    RentalRecord,
    SourceOutcome,
    StationDistance,
)
from .query import SearchQuery, resolve_query_id
from .runner import CrawlOptions, CrawlRunner
from .scraper import ListingFetcher, parse_rentals

__all__ = [
    "AnnotatedRental",
    "ClassificationLookupError",
    "CrawlOptions",
    "CrawlResult",
    "CrawlRunner",
    "CrawlSummary",
    "Database",
    "FilteredMode",
    "InvalidUrl",
    "ListingFetcher",
    "MergeResult",
    "NotifyMode",
    "PersistenceWriteError",
    "Rental",
    "RentalRecord",
    "RentwatcherError",
    "SearchQuery",
    "SourceFetchError",
    "SourceOutcome",
    "StationDistance",
    "UnidentifiableRecord",
    "classify_rentals",
    "decide_notification",
    "entity_id",
    "fetch_sources",
    "filter_for_notification",
    "find_new_rentals",
    "merge_outcomes",
    "parse_rentals",
    "resolve_query_id",
]
