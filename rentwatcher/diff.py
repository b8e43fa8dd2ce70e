"""Partitioning of crawled rentals into new and previously seen."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Protocol, Set, Tuple

from .errors import ClassificationLookupError, InvalidUrl
from .identity import entity_id
from .models import Rental
from .query import UNKNOWN_QUERY_ID, SearchQuery

logger = logging.getLogger(__name__)

LATEST_N = "latestN"
NEW_ONLY = "newOnly"

KeyFunc = Callable[[Rental], str]


class KnownIdSource(Protocol):
    """Anything able to report the entity ids already stored for a query."""

    def get_known_entity_ids(self, query_id: str) -> Set[str]:
        ...


@dataclass
class Classification:
    """Rentals selected for notification plus how they were chosen.

    ``added`` lists the rentals absent from history, whatever the mode.
    """

    mode: str
    selected: List[Rental]
    seen: List[Rental] = field(default_factory=list)
    added: List[Rental] = field(default_factory=list)
    known_ids: Set[str] = field(default_factory=set)
    lookup_failed: bool = False


def _partition(
    rentals: Iterable[Rental],
    known_ids: Set[str],
    key_fn: KeyFunc,
) -> Tuple[List[Rental], List[Rental]]:
    added: List[Rental] = []
    seen: List[Rental] = []
    for rental in rentals:
        if key_fn(rental) in known_ids:
            seen.append(rental)
        else:
            added.append(rental)
    return added, seen


def find_new_rentals(rentals: Iterable[Rental], known_ids: Set[str]) -> List[Rental]:
    """Rentals whose entity id is absent from ``known_ids``."""
    added, _ = _partition(rentals, known_ids,
                          key_fn=lambda rental: entity_id(rental).value)
    return added


def load_known_ids(store: KnownIdSource, query_id: str) -> Set[str]:
    """Read stored ids once; raises ClassificationLookupError on failure."""
    try:
        return set(store.get_known_entity_ids(query_id))
    except Exception as exc:  # noqa: BLE001
        raise ClassificationLookupError(query_id, exc) from exc


def _split_by_history(
    rentals: List[Rental],
    url: str,
    store: KnownIdSource,
) -> Classification:
    try:
        query_id = SearchQuery.parse(url).query_id
    except InvalidUrl as exc:
        logger.warning("Cannot determine new rentals: %s", exc)
        return Classification(mode=NEW_ONLY, selected=[])
    if query_id == UNKNOWN_QUERY_ID:
        logger.warning("Cannot determine new rentals: query id unknown for %s", url)
        return Classification(mode=NEW_ONLY, selected=[])

    try:
        known_ids = load_known_ids(store, query_id)
    except ClassificationLookupError as exc:
        logger.warning("%s; treating all %d rentals as new", exc, len(rentals))
        return Classification(mode=NEW_ONLY, selected=list(rentals),
                              added=list(rentals), lookup_failed=True)

    added, seen = _partition(rentals, known_ids,
                             key_fn=lambda rental: entity_id(rental).value)
    logger.info("Existing rentals in store: %d", len(known_ids))
    logger.info("New rentals: %d", len(added))
    return Classification(mode=NEW_ONLY, selected=added, seen=seen,
                          added=list(added), known_ids=known_ids)


def classify_rentals(
    rentals: List[Rental],
    url: str,
    store: KnownIdSource,
    max_latest: int | None = None,
) -> Classification:
    """Select the rentals to consider for notification.

    With ``max_latest`` the first N rentals are selected regardless of
    history. Otherwise only rentals unknown to ``store`` for this query are
    selected. In both modes ``added`` holds the rentals unknown to the store;
    a failed lookup treats every rental as new.
    """
    history = _split_by_history(rentals, url, store)
    if not max_latest:
        return history

    selected = list(rentals[:max_latest])
    logger.info("Will notify latest %d rentals", len(selected))
    return Classification(
        mode=LATEST_N,
        selected=selected,
        seen=list(rentals[max_latest:]),
        added=history.added,
        known_ids=history.known_ids,
        lookup_failed=history.lookup_failed,
    )
