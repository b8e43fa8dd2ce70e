"""Walking-distance values parsed from 591 MRT proximity strings."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

WALKING_SPEED_M_PER_MIN = 80

METERS = "meters"
KILOMETERS = "kilometers"
MINUTES = "minutes"

_NUMBER = r"(\d+(?:\.\d+)?)"
_PATTERNS = (
    (re.compile(_NUMBER + r"\s*(?:公尺|米|meters?\b|m\b)", re.IGNORECASE), METERS),
    (re.compile(_NUMBER + r"\s*(?:公里|km\b|kilometers?\b)", re.IGNORECASE), KILOMETERS),
    (re.compile(_NUMBER + r"\s*(?:分鐘|分钟|min(?:utes?)?\b)", re.IGNORECASE), MINUTES),
)


@dataclass(frozen=True)
class Distance:
    """A proximity value in a given unit, comparable in meters."""

    value: float | None
    unit: str = METERS

    @classmethod
    def from_metro_value(cls, metro_value: str | None) -> Optional["Distance"]:
        """Parse strings such as ``500公尺``, ``8分鐘`` or ``1200m``."""
        if not metro_value or not isinstance(metro_value, str):
            return None
        for pattern, unit in _PATTERNS:
            match = pattern.search(metro_value)
            if match:
                return cls(float(match.group(1)), unit)
        return None

    @classmethod
    def from_meters(cls, meters: float) -> "Distance":
        return cls(meters, METERS)

    def to_meters(self) -> int | None:
        if self.value is None or self.value < 0:
            return None
        if self.unit == KILOMETERS:
            meters = self.value * 1000
        elif self.unit == MINUTES:
            meters = self.value * WALKING_SPEED_M_PER_MIN
        else:
            meters = self.value
        return int(round(meters))

    def exceeds_threshold(self, threshold: int | None) -> bool:
        if not threshold or threshold <= 0:
            return False
        meters = self.to_meters()
        return meters is not None and meters > threshold

    def compare_to(self, other: "Distance") -> int:
        """Return -1, 0 or 1; unknown distances sort last."""
        mine = self.to_meters()
        theirs = other.to_meters()
        if mine is None and theirs is None:
            return 0
        if mine is None:
            return 1
        if theirs is None:
            return -1
        return (mine > theirs) - (mine < theirs)

    @staticmethod
    def minimum(distances: Iterable["Distance"]) -> Optional["Distance"]:
        known = [d for d in distances if d is not None and d.to_meters() is not None]
        if not known:
            return None
        return min(known, key=lambda d: d.to_meters())

    def __str__(self) -> str:
        meters = self.to_meters()
        if meters is None:
            return "Unknown"
        if meters >= 1000:
            return f"{meters / 1000:.1f}km"
        return f"{meters}m"

    def to_dict(self) -> Dict[str, object]:
        return {"value": self.value, "unit": self.unit, "meters": self.to_meters()}

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "Distance":
        return cls(data.get("value"), str(data.get("unit") or METERS))


def extract_distance_meters(metro_value: str | None) -> int | None:
    """Shortcut returning the meter value of a proximity string, or None."""
    parsed = Distance.from_metro_value(metro_value)
    return parsed.to_meters() if parsed else None
