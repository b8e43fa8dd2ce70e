"""Exception types raised across the crawl pipeline."""

from __future__ import annotations


class RentwatcherError(Exception):
    """Base class for all rentwatcher errors."""


class InvalidUrl(RentwatcherError, ValueError):
    """Raised when a search URL is malformed or not on 591.com.tw."""

    def __init__(self, url: str, reason: str = "not a 591.com.tw search URL"):
        super().__init__(f"Invalid 591.com.tw URL ({reason}): {url!r}")
        self.url = url
        self.reason = reason


class SourceFetchError(RentwatcherError):
    """A single source of a multi-source crawl failed."""

    def __init__(self, source_id: str | None, url: str, message: str):
        super().__init__(f"Source {source_id or url} failed: {message}")
        self.source_id = source_id
        self.url = url
        self.message = message


class ClassificationLookupError(RentwatcherError):
    """Known entity ids could not be loaded for a query."""

    def __init__(self, query_id: str, cause: BaseException):
        super().__init__(f"Known-id lookup failed for {query_id}: {cause}")
        self.query_id = query_id
        self.cause = cause


class PersistenceWriteError(RentwatcherError):
    """Writing crawl results to the store failed."""


class UnidentifiableRecord(RentwatcherError, ValueError):
    """A listing has neither a link nor a title."""
