"""Parsing and normalization of 591 search URLs into query identities."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .errors import InvalidUrl

logger = logging.getLogger(__name__)

TARGET_DOMAIN = "591.com.tw"
UNKNOWN_QUERY_ID = "unknown"

REGIONS = {
    "1": "台北市",
    "2": "基隆市",
    "3": "新北市",
    "4": "宜蘭縣",
    "5": "桃園市",
    "6": "新竹縣",
    "7": "新竹市",
    "8": "苗栗縣",
    "9": "台中市",
    "10": "彰化縣",
    "11": "南投縣",
    "12": "嘉義市",
    "13": "嘉義縣",
    "14": "雲林縣",
    "15": "台南市",
    "16": "高雄市",
    "17": "澎湖縣",
    "18": "金門縣",
    "19": "屏東縣",
    "20": "台東縣",
    "21": "花蓮縣",
    "22": "連江縣",
}

KINDS = {
    "0": "所有類型",
    "1": "整層住家",
    "2": "雅房",
    "3": "分租套房",
    "4": "車位",
    "8": "其他",
}

# Parameters with a typed slot; anything else lands in SearchQuery.extra.
_KNOWN_KEYS = {
    "region", "kind", "station", "metro", "rentprice", "price", "section",
    "roomFilter", "other", "floor",
}


def _split_values(values: Iterable[str]) -> List[str]:
    """Split repeated and comma-joined values, dropping blanks and repeats."""
    seen: Dict[str, None] = {}
    for value in values:
        for part in value.split(","):
            part = part.strip()
            if part:
                seen.setdefault(part, None)
    return list(seen)


def _parse_bound(raw: str) -> int | None:
    raw = raw.strip().rstrip("$")
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


def normalize_price_range(raw: str | None) -> str | None:
    """Rewrite a price range to ``min,max`` with zero or empty bounds dropped.

    Accepts the ``rentprice`` form (``0,20000``) and the newer ``price``
    form (``0$_20000$``). A lone value is treated as a lower bound.
    Unparseable input is returned unchanged.
    """
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None
    separator = "$_" if "$_" in raw else ","
    parts = raw.split(separator)
    while len(parts) > 2 and not parts[-1].strip().rstrip("$"):
        parts.pop()
    if len(parts) == 1:
        parts.append("")
    if len(parts) != 2:
        return raw
    for part in parts:
        stripped = part.strip().rstrip("$")
        if stripped and not stripped.isdigit():
            return raw
    low, high = (_parse_bound(part) for part in parts)
    if low is None and high is None:
        return None
    return f"{low or ''},{high or ''}"


@dataclass(frozen=True)
class SearchQuery:
    """A validated 591 search URL with its normalized filters."""

    url: str
    scheme: str
    host: str
    path: str
    params: Tuple[Tuple[str, str], ...]
    region: str | None = None
    kind: str | None = None
    stations: Tuple[str, ...] = ()
    metro: str | None = None
    price: str | None = None
    sections: Tuple[str, ...] = ()
    room_filters: Tuple[str, ...] = ()
    floor: str | None = None
    extra: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def parse(cls, url: str) -> "SearchQuery":
        """Validate ``url`` and extract its filters; raises InvalidUrl."""
        if not url or not isinstance(url, str):
            raise InvalidUrl(str(url), "empty URL")
        try:
            parts = urlsplit(url.strip())
            host = (parts.hostname or "").lower()
        except ValueError as exc:
            raise InvalidUrl(url, str(exc)) from exc
        if parts.scheme not in ("http", "https"):
            raise InvalidUrl(url, "unsupported scheme")
        if host != TARGET_DOMAIN and not host.endswith("." + TARGET_DOMAIN):
            raise InvalidUrl(url)

        pairs = tuple(parse_qsl(parts.query, keep_blank_values=True))
        grouped: Dict[str, List[str]] = {}
        for key, value in pairs:
            grouped.setdefault(key, []).append(value)

        def first(key: str) -> str | None:
            values = [v.strip() for v in grouped.get(key, []) if v.strip()]
            return values[0] if values else None

        price = normalize_price_range(first("rentprice"))
        if price is None:
            price = normalize_price_range(first("price"))

        room_values = grouped.get("roomFilter") or grouped.get("other") or []
        extra = {
            key: tuple(values)
            for key, values in sorted(grouped.items())
            if key not in _KNOWN_KEYS
        }
        return cls(
            url=url,
            scheme=parts.scheme,
            host=host,
            path=parts.path,
            params=pairs,
            region=first("region"),
            kind=first("kind"),
            stations=tuple(_split_values(grouped.get("station", []))),
            metro=first("metro"),
            price=price,
            sections=tuple(sorted(_split_values(grouped.get("section", [])))),
            room_filters=tuple(sorted(_split_values(room_values))),
            floor=first("floor"),
            extra=extra,
        )

    @property
    def station_ids(self) -> List[str]:
        """Station ids in URL order, deduplicated."""
        return list(self.stations)

    @property
    def has_multiple_stations(self) -> bool:
        return len(self.stations) > 1

    @property
    def is_rental_search(self) -> bool:
        return "/rent/" in self.path or self.host.startswith("rent.")

    @property
    def query_id(self) -> str:
        return self._identity()

    @property
    def equivalence_key(self) -> str:
        """Identity with the default ``kind=0`` (all types) treated as absent."""
        return self._identity(keep_default_kind=False)

    def _identity(self, keep_default_kind: bool = True) -> str:
        components: List[str] = []
        if self.region:
            components.append(f"region{self.region}")
        if self.kind is not None and (keep_default_kind or self.kind != "0"):
            components.append(f"kind{self.kind}")
        if self.stations:
            components.append("stations" + "-".join(sorted(self.stations)))
        elif self.metro:
            components.append(f"metro{self.metro}")
        if self.price:
            components.append(f"price{self.price}")
        if self.sections:
            components.append("section" + "-".join(self.sections))
        if self.room_filters:
            components.append("rooms" + "-".join(self.room_filters))
        if self.floor:
            components.append(f"floor{self.floor}")
        return "_".join(components) or UNKNOWN_QUERY_ID

    @property
    def description(self) -> str:
        parts: List[str] = []
        if self.region:
            parts.append(REGIONS.get(self.region, f"區域{self.region}"))
        if self.kind is not None and self.kind != "0":
            parts.append(KINDS.get(self.kind, f"類型{self.kind}"))

        if len(self.stations) == 1:
            parts.append(f"近捷運站{self.stations[0]}")
        elif self.stations:
            parts.append(f"近{len(self.stations)}個捷運站")
        elif self.metro:
            parts.append(f"捷運{self.metro}線")

        price_text = _describe_price(self.price)
        if price_text:
            parts.append(price_text)
        if self.room_filters:
            parts.append("、".join(f"{r}房" for r in self.room_filters))
        if self.floor:
            floors = self.floor.split(",")
            if len(floors) == 2:
                parts.append(f"{floors[0]}-{floors[1]}樓")
        return " ".join(parts) if parts else "基本搜尋"

    def with_station(self, station_id: str) -> "SearchQuery":
        """Copy of this query with every station replaced by ``station_id``."""
        pairs: List[Tuple[str, str]] = []
        inserted = False
        for key, value in self.params:
            if key == "station":
                if not inserted:
                    pairs.append(("station", station_id))
                    inserted = True
                continue
            pairs.append((key, value))
        if not inserted:
            pairs.append(("station", station_id))
        return SearchQuery.parse(self._rebuild(pairs))

    def split_by_stations(self) -> List["SearchQuery"]:
        """Expand into one query per station (or ``[self]``)."""
        if len(self.stations) <= 1:
            return [self]
        return [self.with_station(station) for station in self.stations]

    @property
    def canonical_url(self) -> str:
        """Deterministic URL: known filters first, pass-through keys sorted."""
        pairs: List[Tuple[str, str]] = []
        if self.region:
            pairs.append(("region", self.region))
        if self.kind is not None:
            pairs.append(("kind", self.kind))
        if self.stations:
            pairs.append(("station", ",".join(sorted(self.stations))))
        elif self.metro:
            pairs.append(("metro", self.metro))
        if self.sections:
            pairs.append(("section", ",".join(self.sections)))
        if self.price:
            pairs.append(("rentprice", self.price))
        if self.room_filters:
            pairs.append(("other", ",".join(self.room_filters)))
        if self.floor:
            pairs.append(("floor", self.floor))
        for key, values in sorted(self.extra.items()):
            for value in values:
                if value:
                    pairs.append((key, value))
        return self._rebuild(pairs)

    def _rebuild(self, pairs: List[Tuple[str, str]]) -> str:
        return urlunsplit((
            self.scheme,
            self.host,
            self.path,
            urlencode(pairs, safe=",$"),
            "",
        ))

    def to_dict(self) -> Dict[str, object]:
        return {
            "url": self.url,
            "is_rental": self.is_rental_search,
            "has_multiple_stations": self.has_multiple_stations,
            "stations": self.station_ids,
            "region": self.region,
            "metro": self.metro,
            "query_id": self.query_id,
            "query_description": self.description,
        }

    def __str__(self) -> str:
        return self.url


def _describe_price(price: str | None) -> str | None:
    if not price:
        return None
    low_raw, _, high_raw = price.partition(",")
    low = int(low_raw) if low_raw.isdigit() else 0
    high = int(high_raw) if high_raw.isdigit() else 0
    if low > 0 and high > low:
        return f"{low:,}-{high:,}元"
    if low > 0:
        return f"{low:,}元以上"
    if high > 0:
        return f"{high:,}元以下"
    return None


def resolve_query_id(url: str) -> str:
    """Query identity of ``url``; raises InvalidUrl."""
    return SearchQuery.parse(url).query_id


def has_multiple_stations(url: str) -> bool:
    try:
        return SearchQuery.parse(url).has_multiple_stations
    except InvalidUrl:
        return False


def get_url_station_info(url: str) -> Dict[str, object]:
    try:
        query = SearchQuery.parse(url)
    except InvalidUrl:
        return {"is_valid": False, "has_multiple": False, "stations": [],
                "station_count": 0}
    return {
        "is_valid": True,
        "has_multiple": query.has_multiple_stations,
        "stations": query.station_ids,
        "station_count": len(query.stations),
    }


def are_equivalent(url1: str, url2: str) -> bool:
    """True when both URLs describe the same search."""
    try:
        first = SearchQuery.parse(SearchQuery.parse(url1).canonical_url)
        second = SearchQuery.parse(SearchQuery.parse(url2).canonical_url)
        return first.equivalence_key == second.equivalence_key
    except InvalidUrl:
        return False


@dataclass
class QueryGroup:
    query_id: str
    description: str
    urls: List[str] = field(default_factory=list)


def group_by_query(urls: Iterable[str]) -> Dict[str, QueryGroup]:
    """Bucket URLs by query identity; invalid URLs are logged and skipped."""
    groups: Dict[str, QueryGroup] = {}
    for url in urls:
        try:
            query = SearchQuery.parse(url)
        except InvalidUrl as exc:
            logger.warning("Skipping %s", exc)
            continue
        group = groups.setdefault(
            query.query_id,
            QueryGroup(query_id=query.query_id, description=query.description),
        )
        group.urls.append(url)
    return groups


def canonical_url_for(urls: Iterable[str]) -> Optional[str]:
    """Pick the simplest canonical form among equivalent URLs."""
    candidates = []
    for url in urls:
        try:
            canonical = SearchQuery.parse(url).canonical_url
        except InvalidUrl:
            continue
        param_count = len(SearchQuery.parse(canonical).params)
        candidates.append((param_count, len(canonical), canonical))
    if not candidates:
        return None
    return min(candidates)[2]
