"""Stable identities for rental listings."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Set
from urllib.parse import urlsplit

from .errors import UnidentifiableRecord
from .models import Rental

URL = "url"
COMPOSITE = "composite"
TITLE = "title"

RELIABILITY = {URL: 100, COMPOSITE: 80, TITLE: 50}

_LISTING_NUMBER = re.compile(r"/(\d+)")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class EntityId:
    """Identity of a listing, tagged with how it was derived."""

    kind: str
    value: str

    @property
    def reliability(self) -> int:
        return RELIABILITY.get(self.kind, 0)

    @property
    def is_url_based(self) -> bool:
        return self.kind == URL

    @property
    def is_reliable(self) -> bool:
        return self.kind in (URL, COMPOSITE)

    def __str__(self) -> str:
        return self.value


def listing_number(link: str | None) -> str | None:
    """Numeric listing id from a link such as ``https://rent.591.com.tw/19180936``."""
    if not link:
        return None
    path = urlsplit(link).path if "://" in link else link
    match = _LISTING_NUMBER.search(path)
    return match.group(1) if match else None


def entity_id(rental: Rental) -> EntityId:
    """Derive the identity of ``rental``.

    The link's listing number wins; otherwise the title combined with the
    scraped proximity string, then the title alone. Station annotations
    added while merging never take part.
    """
    number = listing_number(rental.link)
    if number:
        return EntityId(URL, number)
    title = (rental.title or "").strip()
    if title and rental.metro_value:
        return EntityId(COMPOSITE,
                        _WHITESPACE.sub("-", f"{title}-{rental.metro_value}"))
    if title:
        return EntityId(TITLE, _WHITESPACE.sub("-", title))
    raise UnidentifiableRecord(
        "Unable to identify rental: it has neither a link nor a title")


def can_generate_reliable_id(rental: Rental) -> bool:
    if listing_number(rental.link):
        return True
    return bool((rental.title or "").strip() and rental.metro_value)


def entity_id_set(rentals: Iterable[Rental]) -> Set[str]:
    """Ids of the rentals whose identity is reliable."""
    return {
        entity_id(rental).value
        for rental in rentals
        if can_generate_reliable_id(rental)
    }
