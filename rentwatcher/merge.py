"""Reconciliation of rentals returned by several sources."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from .errors import UnidentifiableRecord
from .identity import entity_id
from .models import MergeResult, Rental, SourceError, SourceOutcome

logger = logging.getLogger(__name__)


def merge_outcomes(outcomes: Iterable[SourceOutcome]) -> MergeResult:
    """Union the rentals of successful sources keyed by entity id.

    Sources are walked in the given order, so the first sighting of a
    listing is the one kept; later sightings only contribute their station
    annotations.
    """
    merged: Dict[str, Rental] = {}
    errors: List[SourceError] = []
    total_found = 0
    duplicate_count = 0
    rejected_count = 0
    successful = 0

    for outcome in outcomes:
        if not outcome.success:
            errors.append(SourceError(source_id=outcome.source_id,
                                      url=outcome.url,
                                      error=outcome.error or "unknown error"))
            continue

        successful += 1
        total_found += len(outcome.rentals)
        for rental in outcome.rentals:
            try:
                key = entity_id(rental).value
            except UnidentifiableRecord:
                rejected_count += 1
                logger.warning("Dropping unidentifiable rental from %s",
                               outcome.url)
                continue

            existing = merged.get(key)
            if existing is None:
                merged[key] = rental
            else:
                existing.merge_station_distances(rental)
                duplicate_count += 1

    logger.info(
        "Merged %d rentals into %d unique (%d duplicates, %d sources ok, %d failed)",
        total_found,
        len(merged),
        duplicate_count,
        successful,
        len(errors),
    )
    return MergeResult(
        rentals=list(merged.values()),
        total_found=total_found,
        duplicate_count=duplicate_count,
        errors=errors,
        successful_source_count=successful,
        rejected_count=rejected_count,
    )
