"""Notification policy based on walking distance to the MRT."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, List

from .distance import Distance
from .identity import entity_id
from .models import AnnotatedRental, NotificationDecision, Rental

logger = logging.getLogger(__name__)


class NotifyMode(str, Enum):
    ALL = "all"
    FILTERED = "filtered"
    NONE = "none"


class FilteredMode(str, Enum):
    NORMAL = "normal"
    SILENT = "silent"
    NONE = "none"


def is_far_from_mrt(rental: Rental, threshold: int | None) -> bool:
    """True only when a known distance exceeds a configured threshold."""
    meters = rental.min_distance_meters()
    if meters is None:
        return False
    return Distance.from_meters(meters).exceeds_threshold(threshold)


def decide_notification(
    rental: Rental,
    notify_mode: NotifyMode | str,
    filtered_mode: FilteredMode | str = FilteredMode.SILENT,
    distance_threshold: int | None = None,
) -> NotificationDecision:
    notify_mode = NotifyMode(notify_mode)
    filtered_mode = FilteredMode(filtered_mode)
    meters = rental.min_distance_meters()
    far = is_far_from_mrt(rental, distance_threshold)

    def verdict(should_notify: bool, is_silent: bool) -> NotificationDecision:
        return NotificationDecision(
            should_notify=should_notify,
            is_silent=is_silent,
            distance_meters=meters,
            distance_threshold=distance_threshold,
            is_far=far,
        )

    if notify_mode is NotifyMode.NONE:
        return verdict(False, False)
    if notify_mode is NotifyMode.ALL:
        return verdict(True, False)
    if not far:
        return verdict(True, False)
    if filtered_mode is FilteredMode.SILENT:
        return verdict(True, True)
    return verdict(False, False)


def filter_for_notification(
    rentals: Iterable[Rental],
    notify_mode: NotifyMode | str,
    filtered_mode: FilteredMode | str = FilteredMode.SILENT,
    distance_threshold: int | None = None,
) -> List[AnnotatedRental]:
    """Annotate ``rentals`` and keep the ones that should be notified."""
    kept: List[AnnotatedRental] = []
    for rental in rentals:
        decision = decide_notification(rental, notify_mode, filtered_mode,
                                       distance_threshold)
        if decision.should_notify:
            kept.append(AnnotatedRental(rental=rental,
                                        entity_id=entity_id(rental).value,
                                        notification=decision,
                                        will_notify=True))
        else:
            logger.info("Filtered out (%sm from MRT): %s",
                        decision.distance_meters, rental.title)
    return kept


def annotate_rentals(
    rentals: Iterable[Rental],
    to_notify: Iterable[AnnotatedRental],
    notify_mode: NotifyMode | str,
    filtered_mode: FilteredMode | str = FilteredMode.SILENT,
    distance_threshold: int | None = None,
) -> List[AnnotatedRental]:
    """Attach a notification verdict to every crawled rental."""
    notify_ids = {item.entity_id for item in to_notify}
    annotated: List[AnnotatedRental] = []
    for rental in rentals:
        key = entity_id(rental).value
        decision = decide_notification(rental, notify_mode, filtered_mode,
                                       distance_threshold)
        will_notify = key in notify_ids
        annotated.append(
            AnnotatedRental(
                rental=rental,
                entity_id=key,
                notification=NotificationDecision(
                    should_notify=decision.should_notify,
                    is_silent=will_notify and decision.is_silent,
                    distance_meters=decision.distance_meters,
                    distance_threshold=decision.distance_threshold,
                    is_far=decision.is_far,
                ),
                will_notify=will_notify,
            ))
    return annotated
