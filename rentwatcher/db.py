"""SQLite-backed persistence of queries, rentals and crawl sessions."""

from __future__ import annotations

import datetime as dt
import json
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from openpyxl import Workbook

from .comparator import (
    TITLE_SIMILARITY_THRESHOLD,
    compare_rental,
    changes_summary,
    station_distances_changed,
)
from .errors import InvalidUrl, PersistenceWriteError
from .models import (
    AnnotatedRental,
    CrawlMetadata,
    CrawlSession,
    QueryRecord,
    RentalRecord,
    StationDistance,
)
from .query import SearchQuery

logger = logging.getLogger(__name__)

SQLITE_PREFIX = "sqlite://"

XLSX_HEADERS = [
    "property_id",
    "title",
    "link",
    "house_type",
    "rooms",
    "metro_title",
    "metro_value",
    "tags",
    "first_seen",
    "last_seen",
    "first_appeared",
    "last_appeared",
]


def resolve_sqlite_path(database_url: str) -> Path:
    """Translate a DATABASE_URL into a filesystem path."""
    if not database_url:
        raise ValueError("DATABASE_URL must not be empty")

    if database_url.startswith(SQLITE_PREFIX):
        raw_path = database_url[len(SQLITE_PREFIX) :]
        # Allow sqlite:///path/to/file and sqlite://path/to/file styles.
        if raw_path.startswith("/"):
            raw_path = raw_path[1:]
        path = Path(raw_path)
    else:
        path = Path(database_url)

    if not path.is_absolute():
        path = Path.cwd() / path

    return path.expanduser().resolve()


def _now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def _join(values: Iterable[str]) -> str | None:
    joined = ",".join(v for v in values if v)
    return joined or None


def _split(value: str | None) -> List[str]:
    return [part for part in (value or "").split(",") if part]


@dataclass
class Database:
    """Thin wrapper around sqlite3 for query history and rentals."""

    path: Path
    title_similarity_threshold: float = TITLE_SIMILARITY_THRESHOLD

    def connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.path)

    def initialize(self) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS queries (
                    query_id TEXT PRIMARY KEY,
                    description TEXT NOT NULL,
                    url TEXT NOT NULL,
                    region TEXT,
                    kind TEXT,
                    stations TEXT,
                    metro TEXT,
                    price TEXT,
                    sections TEXT,
                    rooms TEXT,
                    floor TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS rentals (
                    property_id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    link TEXT,
                    house_type TEXT,
                    rooms TEXT,
                    metro_title TEXT,
                    metro_value TEXT,
                    tags TEXT,
                    img_urls TEXT,
                    data_hash TEXT,
                    first_seen TEXT NOT NULL,
                    last_seen TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS rentals_data_hash_idx ON rentals(data_hash)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS station_distances (
                    property_id TEXT NOT NULL,
                    station_id TEXT NOT NULL DEFAULT '',
                    station_name TEXT NOT NULL,
                    distance INTEGER,
                    metro_value TEXT,
                    FOREIGN KEY(property_id) REFERENCES rentals(property_id),
                    PRIMARY KEY(property_id, station_id, station_name)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS query_rentals (
                    query_id TEXT NOT NULL,
                    property_id TEXT NOT NULL,
                    first_appeared TEXT NOT NULL,
                    last_appeared TEXT NOT NULL,
                    FOREIGN KEY(query_id) REFERENCES queries(query_id),
                    FOREIGN KEY(property_id) REFERENCES rentals(property_id),
                    PRIMARY KEY(query_id, property_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS crawl_sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    query_id TEXT NOT NULL,
                    url TEXT NOT NULL,
                    executed_at TEXT NOT NULL,
                    max_latest INTEGER,
                    notify_mode TEXT,
                    filtered_mode TEXT,
                    filter_config TEXT,
                    total_rentals INTEGER NOT NULL DEFAULT 0,
                    new_rentals INTEGER NOT NULL DEFAULT 0,
                    notifications_sent INTEGER NOT NULL DEFAULT 0,
                    multi_source INTEGER NOT NULL DEFAULT 0,
                    sources TEXT,
                    errors TEXT,
                    FOREIGN KEY(query_id) REFERENCES queries(query_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS crawl_session_rentals (
                    session_id INTEGER NOT NULL,
                    property_id TEXT NOT NULL,
                    was_new INTEGER NOT NULL DEFAULT 0,
                    was_notified INTEGER NOT NULL DEFAULT 0,
                    silent_notify INTEGER NOT NULL DEFAULT 0,
                    FOREIGN KEY(session_id) REFERENCES crawl_sessions(id),
                    PRIMARY KEY(session_id, property_id)
                )
                """
            )
            conn.commit()

    def get_known_entity_ids(self, query_id: str) -> Set[str]:
        """Property ids already linked to ``query_id``."""
        with self.connect() as conn:
            cursor = conn.execute(
                "SELECT property_id FROM query_rentals WHERE query_id = ?",
                (query_id,),
            )
            return {row[0] for row in cursor.fetchall()}

    def write_crawl_result(
        self,
        query_id: str,
        rentals: Sequence[AnnotatedRental],
        metadata: CrawlMetadata,
    ) -> CrawlSession:
        """Persist one crawl; rentals whose data did not change are not rewritten."""
        executed_at = _now()
        description = metadata.description
        written = 0
        skipped = 0
        try:
            with self.connect() as conn:
                self._upsert_query(conn, query_id, metadata, executed_at)
                cursor = conn.execute(
                    """
                    INSERT INTO crawl_sessions (
                        query_id, url, executed_at, max_latest, notify_mode, filtered_mode,
                        filter_config, total_rentals, new_rentals, notifications_sent,
                        multi_source, sources, errors
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        query_id,
                        metadata.url,
                        executed_at,
                        metadata.max_latest,
                        metadata.notify_mode,
                        metadata.filtered_mode,
                        json.dumps({"distance_threshold": metadata.distance_threshold}),
                        len(rentals),
                        len(metadata.new_ids),
                        metadata.notifications_sent,
                        int(metadata.multi_source),
                        _join(metadata.sources),
                        json.dumps([error.__dict__ for error in metadata.errors],
                                   ensure_ascii=False) if metadata.errors else None,
                    ),
                )
                session_id = cursor.lastrowid

                for item in rentals:
                    if self._upsert_rental(conn, item, executed_at):
                        written += 1
                    else:
                        skipped += 1
                    conn.execute(
                        """
                        INSERT INTO query_rentals (query_id, property_id, first_appeared, last_appeared)
                        VALUES (?, ?, ?, ?)
                        ON CONFLICT(query_id, property_id) DO UPDATE SET
                            last_appeared=excluded.last_appeared
                        """,
                        (query_id, item.entity_id, executed_at, executed_at),
                    )
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO crawl_session_rentals (
                            session_id, property_id, was_new, was_notified, silent_notify
                        )
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        (
                            session_id,
                            item.entity_id,
                            int(item.entity_id in metadata.new_ids),
                            int(item.will_notify),
                            int(item.notification.is_silent),
                        ),
                    )
                conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceWriteError(
                f"Failed to save crawl results for {query_id}: {exc}") from exc

        logger.info(
            "Saved crawl results for query %s: %d rentals (%d written, %d unchanged)",
            query_id,
            len(rentals),
            written,
            skipped,
        )
        return CrawlSession(
            session_id=session_id,
            query_id=query_id,
            description=description,
            rental_count=len(rentals),
            new_rentals=len(metadata.new_ids),
            written_rentals=written,
            skipped_rentals=skipped,
        )

    def _upsert_query(
        self,
        conn: sqlite3.Connection,
        query_id: str,
        metadata: CrawlMetadata,
        executed_at: str,
    ) -> None:
        try:
            query: Optional[SearchQuery] = SearchQuery.parse(metadata.url)
        except InvalidUrl:
            query = None
        conn.execute(
            """
            INSERT INTO queries (
                query_id, description, url, region, kind, stations, metro, price,
                sections, rooms, floor, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(query_id) DO UPDATE SET
                description=excluded.description,
                url=excluded.url,
                updated_at=excluded.updated_at
            """,
            (
                query_id,
                metadata.description or (query.description if query else ""),
                metadata.url,
                query.region if query else None,
                query.kind if query else None,
                _join(sorted(query.stations)) if query else None,
                query.metro if query else None,
                query.price if query else None,
                _join(query.sections) if query else None,
                _join(query.room_filters) if query else None,
                query.floor if query else None,
                executed_at,
                executed_at,
            ),
        )

    def _upsert_rental(
        self,
        conn: sqlite3.Connection,
        item: AnnotatedRental,
        executed_at: str,
    ) -> bool:
        """Write the rental row when it changed; returns whether it was written."""
        rental = item.rental
        existing = self._fetch_rental(conn, item.entity_id)
        comparison = compare_rental(rental, existing,
                                    self.title_similarity_threshold)

        if comparison.has_changed:
            logger.debug("%s: %s", item.entity_id,
                         changes_summary(comparison.changed_fields))
            conn.execute(
                """
                INSERT INTO rentals (
                    property_id, title, link, house_type, rooms, metro_title, metro_value,
                    tags, img_urls, data_hash, first_seen, last_seen
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(property_id) DO UPDATE SET
                    title=excluded.title,
                    link=excluded.link,
                    house_type=excluded.house_type,
                    rooms=excluded.rooms,
                    metro_title=excluded.metro_title,
                    metro_value=excluded.metro_value,
                    tags=excluded.tags,
                    img_urls=excluded.img_urls,
                    data_hash=excluded.data_hash,
                    last_seen=excluded.last_seen
                """,
                (
                    item.entity_id,
                    rental.title,
                    rental.link,
                    rental.house_type,
                    rental.rooms,
                    rental.metro_title,
                    rental.metro_value,
                    _join(rental.tags),
                    _join(rental.img_urls),
                    comparison.data_hash,
                    executed_at,
                    executed_at,
                ),
            )

        distances = rental.all_station_distances()
        stored = self._fetch_station_distances(conn, item.entity_id)
        if distances and station_distances_changed(distances, stored):
            for entry in distances:
                conn.execute(
                    """
                    INSERT INTO station_distances (
                        property_id, station_id, station_name, distance, metro_value
                    )
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(property_id, station_id, station_name) DO UPDATE SET
                        distance=excluded.distance,
                        metro_value=excluded.metro_value
                    """,
                    (
                        item.entity_id,
                        entry.station_id or "",
                        entry.station_name,
                        entry.distance,
                        entry.metro_value,
                    ),
                )
        return comparison.has_changed

    @staticmethod
    def _row_to_record(row: Tuple) -> RentalRecord:
        return RentalRecord(
            property_id=row[0],
            title=row[1],
            link=row[2],
            house_type=row[3] or "",
            rooms=row[4] or "",
            metro_title=row[5] or "",
            metro_value=row[6] or "",
            tags=_split(row[7]),
            img_urls=_split(row[8]),
            data_hash=row[9],
            first_seen=row[10],
            last_seen=row[11],
        )

    _RENTAL_COLUMNS = """
        property_id, title, link, house_type, rooms, metro_title, metro_value,
        tags, img_urls, data_hash, first_seen, last_seen
    """

    def _fetch_rental(self, conn: sqlite3.Connection,
                      property_id: str) -> Optional[RentalRecord]:
        cursor = conn.execute(
            f"SELECT {self._RENTAL_COLUMNS} FROM rentals WHERE property_id = ?",
            (property_id,),
        )
        row = cursor.fetchone()
        return self._row_to_record(row) if row else None

    @staticmethod
    def _fetch_station_distances(conn: sqlite3.Connection,
                                 property_id: str) -> List[StationDistance]:
        cursor = conn.execute(
            """
            SELECT station_id, station_name, distance, metro_value
            FROM station_distances WHERE property_id = ?
            """,
            (property_id,),
        )
        return [
            StationDistance(
                station_id=row[0] or None,
                station_name=row[1],
                distance=row[2],
                metro_value=row[3] or "",
            )
            for row in cursor.fetchall()
        ]

    def fetch_rental(self, property_id: str) -> Optional[RentalRecord]:
        with self.connect() as conn:
            return self._fetch_rental(conn, property_id)

    def fetch_station_distances(self, property_id: str) -> List[StationDistance]:
        with self.connect() as conn:
            return self._fetch_station_distances(conn, property_id)

    def fetch_query_rentals(self, query_id: str) -> List[RentalRecord]:
        """Rentals linked to a query, most recently appeared first."""
        columns = ", ".join(f"r.{name.strip()}"
                            for name in self._RENTAL_COLUMNS.split(","))
        with self.connect() as conn:
            cursor = conn.execute(
                f"""
                SELECT {columns}
                FROM rentals r
                JOIN query_rentals q ON q.property_id = r.property_id
                WHERE q.query_id = ?
                ORDER BY q.last_appeared DESC, r.property_id
                """,
                (query_id,),
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]

    def list_queries(self) -> List[QueryRecord]:
        with self.connect() as conn:
            cursor = conn.execute(
                """
                SELECT q.query_id, q.description, q.url, q.created_at, q.updated_at,
                       COUNT(qr.property_id)
                FROM queries q
                LEFT JOIN query_rentals qr ON qr.query_id = q.query_id
                GROUP BY q.query_id
                ORDER BY q.updated_at DESC
                """
            )
            return [
                QueryRecord(
                    query_id=row[0],
                    description=row[1],
                    url=row[2],
                    created_at=row[3],
                    updated_at=row[4],
                    rental_count=int(row[5]),
                )
                for row in cursor.fetchall()
            ]

    def recent_sessions(
        self, limit: int = 10
    ) -> Iterable[Tuple[str, str, int, int, int]]:
        with self.connect() as conn:
            cursor = conn.execute(
                """
                SELECT query_id, executed_at, total_rentals, new_rentals, notifications_sent
                FROM crawl_sessions ORDER BY id DESC LIMIT ?
                """,
                (limit,),
            )
            yield from cursor.fetchall()

    def statistics(self) -> Dict[str, int]:
        with self.connect() as conn:
            counts = {}
            for table in ("queries", "rentals", "crawl_sessions", "query_rentals"):
                row = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
                counts[table] = int(row[0])
            return counts

    def delete_query(self, query_id: str) -> bool:
        """Remove a query with its sessions and links; rentals are kept."""
        with self.connect() as conn:
            conn.execute(
                """
                DELETE FROM crawl_session_rentals
                WHERE session_id IN (SELECT id FROM crawl_sessions WHERE query_id = ?)
                """,
                (query_id,),
            )
            conn.execute("DELETE FROM crawl_sessions WHERE query_id = ?", (query_id,))
            conn.execute("DELETE FROM query_rentals WHERE query_id = ?", (query_id,))
            cursor = conn.execute("DELETE FROM queries WHERE query_id = ?", (query_id,))
            conn.commit()
            return cursor.rowcount > 0

    def export_query_to_xlsx(self, query_id: str, output_path: Path) -> Path:
        """Write the rentals of a query to an Excel workbook."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as conn:
            cursor = conn.execute(
                """
                SELECT r.property_id, r.title, r.link, r.house_type, r.rooms,
                       r.metro_title, r.metro_value, r.tags, r.first_seen, r.last_seen,
                       q.first_appeared, q.last_appeared
                FROM rentals r
                JOIN query_rentals q ON q.property_id = r.property_id
                WHERE q.query_id = ?
                ORDER BY q.last_appeared DESC, r.property_id
                """,
                (query_id,),
            )
            rows = cursor.fetchall()

        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "rentals"
        sheet.append(XLSX_HEADERS)
        for row in rows:
            sheet.append(list(row))
        workbook.save(output_path)
        logger.info("Exported %d rentals of %s to %s", len(rows), query_id,
                    output_path)
        return output_path
