"""Core data models for rentwatcher."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .distance import Distance


@dataclass(frozen=True)
class StationDistance:
    """Proximity of a rental to one MRT station."""

    station_id: str | None
    station_name: str
    distance: int | None
    metro_value: str

    @classmethod
    def from_metro_value(
        cls,
        station_id: str | None,
        station_name: str,
        metro_value: str,
    ) -> "StationDistance":
        parsed = Distance.from_metro_value(metro_value)
        return cls(
            station_id=station_id,
            station_name=station_name or "",
            distance=parsed.to_meters() if parsed else None,
            metro_value=metro_value or "",
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "station_id": self.station_id,
            "station_name": self.station_name,
            "distance": self.distance,
            "metro_value": self.metro_value,
        }


@dataclass
class Rental:
    """A rental listing scraped from a 591 result page."""

    title: str
    link: str | None = None
    house_type: str = ""
    rooms: str = ""
    metro_title: str = ""
    metro_value: str = ""
    tags: List[str] = field(default_factory=list)
    img_urls: List[str] = field(default_factory=list)
    station_distances: List[StationDistance] = field(default_factory=list)

    def distance_meters(self) -> int | None:
        """Primary distance to the MRT as scraped, in meters."""
        parsed = Distance.from_metro_value(self.metro_value)
        return parsed.to_meters() if parsed else None

    def all_station_distances(self) -> List[StationDistance]:
        distances = list(self.station_distances)
        if self.metro_title and self.metro_value:
            primary_known = any(
                d.metro_value == self.metro_value
                and d.station_name == self.metro_title
                for d in distances
            )
            if not primary_known:
                distances.insert(
                    0,
                    StationDistance.from_metro_value(
                        None, self.metro_title, self.metro_value
                    ),
                )
        return distances

    def min_distance_meters(self) -> int | None:
        known = [
            d.distance
            for d in self.all_station_distances()
            if d.distance is not None
        ]
        if known:
            return min(known)
        return self.distance_meters()

    def add_station_distance(
        self,
        station_id: str | None,
        station_name: str,
        metro_value: str,
    ) -> None:
        for existing in self.station_distances:
            if station_id:
                if existing.station_id == station_id:
                    return
            elif (existing.station_name == station_name
                    and existing.metro_value == metro_value):
                return
        self.station_distances.append(
            StationDistance.from_metro_value(station_id, station_name,
                                             metro_value))

    def merge_station_distances(self, other: "Rental") -> None:
        """Union another sighting's station annotations into this rental."""
        for entry in other.station_distances:
            if entry.station_id:
                self.add_station_distance(entry.station_id,
                                          entry.station_name,
                                          entry.metro_value)

    def to_dict(self) -> Dict[str, object]:
        return {
            "title": self.title,
            "link": self.link,
            "house_type": self.house_type,
            "rooms": self.rooms,
            "metro_title": self.metro_title,
            "metro_value": self.metro_value,
            "tags": list(self.tags),
            "img_urls": list(self.img_urls),
            "station_distances": [d.to_dict() for d in self.station_distances],
        }


@dataclass
class RentalRecord:
    """Persisted representation of a rental."""

    property_id: str
    title: str
    link: str | None
    house_type: str
    rooms: str
    metro_title: str
    metro_value: str
    tags: List[str]
    img_urls: List[str]
    data_hash: str | None
    first_seen: str
    last_seen: str


@dataclass
class SourceOutcome:
    """Result of fetching one source URL of a query."""

    source_id: str | None
    url: str
    success: bool
    rentals: List[Rental] = field(default_factory=list)
    error: str | None = None


@dataclass
class SourceError:
    source_id: str | None
    url: str
    error: str


@dataclass
class MergeResult:
    """Outcome of reconciling per-source rental lists."""

    rentals: List[Rental]
    total_found: int
    duplicate_count: int
    errors: List[SourceError]
    successful_source_count: int
    rejected_count: int = 0


@dataclass(frozen=True)
class NotificationDecision:
    """Per-rental notification verdict; computed fresh on every crawl."""

    should_notify: bool
    is_silent: bool
    distance_meters: int | None = None
    distance_threshold: int | None = None
    is_far: bool = False

    @property
    def distance_from_threshold(self) -> int | None:
        if self.distance_meters is None or not self.distance_threshold:
            return None
        return self.distance_meters - self.distance_threshold


@dataclass
class AnnotatedRental:
    """A rental paired with its notification verdict."""

    rental: Rental
    entity_id: str
    notification: NotificationDecision
    will_notify: bool = False


@dataclass
class CrawlMetadata:
    """Context persisted alongside the rentals of one crawl."""

    url: str
    description: str = ""
    max_latest: int | None = None
    notify_mode: str = "filtered"
    filtered_mode: str = "silent"
    distance_threshold: int | None = None
    new_ids: Set[str] = field(default_factory=set)
    notifications_sent: int = 0
    multi_source: bool = False
    sources: List[str] = field(default_factory=list)
    errors: List[SourceError] = field(default_factory=list)


@dataclass
class CrawlSession:
    """Bookkeeping returned by the store after persisting a crawl."""

    session_id: int
    query_id: str
    description: str
    rental_count: int
    new_rentals: int
    written_rentals: int
    skipped_rentals: int


@dataclass
class QueryRecord:
    query_id: str
    description: str
    url: str
    created_at: str
    updated_at: str
    rental_count: int = 0


@dataclass
class CrawlSummary:
    """Aggregated counters describing one crawl invocation."""

    query_id: str
    query_description: str
    total_found: int
    new_count: int
    notifications_sent: int
    source_count: int
    sources: List[str]
    errors: List[SourceError]
    duplicate_count: int = 0
    multi_source: bool = False
    lookup_failed: bool = False
    session: Optional[CrawlSession] = None


@dataclass
class CrawlResult:
    """Everything a caller needs after a crawl completes."""

    rentals: List[AnnotatedRental]
    summary: CrawlSummary
