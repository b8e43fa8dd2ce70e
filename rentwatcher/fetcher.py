"""Concurrent fetching of the per-station sources of one query."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, List, Sequence

from .errors import SourceFetchError
from .models import Rental, SourceOutcome
from .query import SearchQuery

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 3
DEFAULT_DELAY_MS = 1000

Fetch = Callable[[str], Awaitable[List[Rental]]]


class AdmissionGate:
    """FIFO concurrency limiter with staggered start times.

    At most ``max_concurrent`` holders run at once. Each admitted holder is
    given a start slot at least ``delay`` seconds after the previous
    holder's slot. One gate belongs to one crawl; gates are never shared.
    """

    def __init__(self, max_concurrent: int, delay: float = 0.0):
        self.max_concurrent = max(1, int(max_concurrent))
        self.delay = max(0.0, float(delay))
        self.running = 0
        self.pending: Deque[asyncio.Future] = deque()
        self._next_start: float | None = None

    async def acquire(self) -> None:
        if self.running < self.max_concurrent and not self.pending:
            self.running += 1
        else:
            waiter = asyncio.get_running_loop().create_future()
            self.pending.append(waiter)
            try:
                # release() hands its running slot straight to us.
                await waiter
            except asyncio.CancelledError:
                if waiter.done() and not waiter.cancelled():
                    self.release()
                else:
                    self.pending.remove(waiter)
                raise
        try:
            await self._pace()
        except asyncio.CancelledError:
            self.release()
            raise

    def release(self) -> None:
        while self.pending:
            waiter = self.pending.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self.running -= 1

    async def _pace(self) -> None:
        loop = asyncio.get_running_loop()
        now = loop.time()
        start = now if self._next_start is None else max(now, self._next_start)
        self._next_start = start + self.delay
        if start > now:
            await asyncio.sleep(start - now)

    async def __aenter__(self) -> "AdmissionGate":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()


def _source_id(source: SearchQuery) -> str | None:
    return source.stations[0] if len(source.stations) == 1 else None


async def fetch_source(source: SearchQuery, fetch: Fetch) -> SourceOutcome:
    """Fetch one source, converting any failure into a failed outcome."""
    source_id = _source_id(source)
    url = source.url
    logger.info("Crawling station %s: %s", source_id or "-", url)
    try:
        rentals = list(await fetch(url))
    except Exception as exc:  # noqa: BLE001
        error = SourceFetchError(source_id, url, str(exc) or type(exc).__name__)
        logger.error("%s", error)
        return SourceOutcome(source_id=source_id, url=url, success=False,
                             error=error.message)

    if source_id:
        for rental in rentals:
            rental.add_station_distance(source_id, rental.metro_title,
                                        rental.metro_value)
    logger.info("Station %s completed: %d rentals found", source_id or "-",
                len(rentals))
    return SourceOutcome(source_id=source_id, url=url, success=True,
                         rentals=rentals)


async def fetch_sources(
    sources: Sequence[SearchQuery],
    fetch: Fetch,
    max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    delay_ms: int = DEFAULT_DELAY_MS,
) -> List[SourceOutcome]:
    """Fetch every source; outcomes are returned in source order."""
    if not sources:
        return []
    if len(sources) == 1:
        return [await fetch_source(sources[0], fetch)]

    gate = AdmissionGate(max_concurrent, delay_ms / 1000.0)

    async def run(source: SearchQuery) -> SourceOutcome:
        async with gate:
            return await fetch_source(source, fetch)

    logger.info("Fetching %d sources (max %d concurrent, %dms apart)",
                len(sources), gate.max_concurrent, delay_ms)
    return list(await asyncio.gather(*(run(source) for source in sources)))
