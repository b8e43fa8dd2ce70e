"""Dirty-data detection to skip writes when a rental has not really changed."""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

TITLE_SIMILARITY_THRESHOLD = 0.78
COMPARED_FIELDS = ("title", "house_type", "rooms", "metro_title", "metro_value")

_ZERO_WIDTH = re.compile("[\u200b-\u200d\ufeff]")
_WHITESPACE = re.compile(r"\s+")
_QUOTES = re.compile("[\"\u201c\u201d'\u2018\u2019]")
_DASHES = re.compile("[\u2014\u2013-]")


@dataclass
class Comparison:
    has_changed: bool
    changed_fields: List[str] = field(default_factory=list)
    data_hash: str = ""


def normalize_value(value: object) -> str:
    if value is None or value == "":
        return ""
    text = _WHITESPACE.sub(" ", str(value).strip())
    text = _ZERO_WIDTH.sub("", text)
    text = _QUOTES.sub('"', text)
    text = _DASHES.sub("-", text)
    return text.lower()


def _as_list(values: Sequence[str] | str | None) -> List[str]:
    if values is None:
        return []
    if isinstance(values, str):
        return [part.strip() for part in values.split(",") if part.strip()]
    return [str(value).strip() for value in values if value and str(value).strip()]


def titles_are_similar(
    first: str,
    second: str,
    threshold: float = TITLE_SIMILARITY_THRESHOLD,
) -> bool:
    """Character-overlap similarity of two normalized titles."""
    if first == second:
        return True
    if not first or not second:
        return False
    longest = max(len(first), len(second))
    if abs(len(first) - len(second)) > longest * 0.3:
        return False
    shorter, longer = sorted((first, second), key=len)
    matches = sum(1 for char in shorter if char in longer)
    return matches / longest >= threshold


def tags_differ(first: Sequence[str] | str | None,
                second: Sequence[str] | str | None) -> bool:
    return sorted(_as_list(first)) != sorted(_as_list(second))


def images_significantly_changed(new_urls: Sequence[str] | str | None,
                                 old_urls: Sequence[str] | str | None) -> bool:
    """Lenient image-list comparison that ignores reordering."""
    new_list = _as_list(new_urls)
    old_list = _as_list(old_urls)
    if not new_list and not old_list:
        return False
    if not new_list or not old_list:
        return True
    largest = max(len(new_list), len(old_list))
    if abs(len(new_list) - len(old_list)) / largest > 0.2:
        return True
    new_set, old_set = set(new_list), set(old_list)
    overlap = len(new_set & old_set) / len(new_set | old_set)
    return overlap < 0.7


def station_distances_changed(new: Optional[Iterable], old: Optional[Iterable]) -> bool:
    if new is None and old is None:
        return False
    if new is None or old is None:
        return True

    def normalize(entries: Iterable) -> List[tuple]:
        return sorted(
            (
                getattr(entry, "station_name", "") or "",
                getattr(entry, "station_id", "") or "",
                getattr(entry, "distance", 0) or 0,
                getattr(entry, "metro_value", "") or "",
            )
            for entry in entries
        )

    return normalize(new) != normalize(old)


def data_hash(rental: object) -> str:
    """MD5 over the compared fields; images are left out on purpose."""
    payload = {name: normalize_value(getattr(rental, name, None))
               for name in COMPARED_FIELDS}
    payload["tags"] = ",".join(sorted(_as_list(getattr(rental, "tags", None))))
    encoded = json.dumps(payload, sort_keys=True, ensure_ascii=False)
    return hashlib.md5(encoded.encode("utf-8")).hexdigest()


def compare_rental(
    new: object,
    existing: object | None,
    title_threshold: float = TITLE_SIMILARITY_THRESHOLD,
) -> Comparison:
    """Decide whether ``new`` differs meaningfully from ``existing``."""
    digest = data_hash(new)
    if existing is None:
        return Comparison(True, ["new_record"], digest)

    stored_hash = getattr(existing, "data_hash", None)
    if stored_hash and stored_hash == digest:
        return Comparison(False, [], digest)

    changed: List[str] = []
    for name in COMPARED_FIELDS:
        new_value = normalize_value(getattr(new, name, None))
        old_value = normalize_value(getattr(existing, name, None))
        if name == "title":
            if not titles_are_similar(new_value, old_value, title_threshold):
                changed.append(name)
        elif new_value != old_value:
            changed.append(name)

    if tags_differ(getattr(new, "tags", None), getattr(existing, "tags", None)):
        changed.append("tags")

    return Comparison(bool(changed), changed, digest)


def changes_summary(changed_fields: Sequence[str]) -> str:
    if not changed_fields:
        return "No changes"
    if "new_record" in changed_fields:
        return "New record"
    return "Changed: " + ", ".join(changed_fields)
