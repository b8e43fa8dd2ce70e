import sqlite3

import pytest
from openpyxl import load_workbook

from rentwatcher.db import Database, resolve_sqlite_path
from rentwatcher.errors import PersistenceWriteError
from rentwatcher.models import (
    AnnotatedRental,
    CrawlMetadata,
    NotificationDecision,
    Rental,
    SourceError,
)

URL = "https://rent.591.com.tw/list?region=1&station=4232,4233"
QUERY_ID = "region1_stations4232-4233"


def make_item(number, rooms="1房1廳", notify=True, silent=False, **kwargs):
    rental = Rental(
        title=f"套房 {number}",
        link=f"https://rent.591.com.tw/{number}",
        rooms=rooms,
        metro_title="台北車站",
        metro_value="300公尺",
        tags=["近捷運"],
        **kwargs,
    )
    return AnnotatedRental(
        rental=rental,
        entity_id=number,
        notification=NotificationDecision(should_notify=notify, is_silent=silent),
        will_notify=notify,
    )


def make_db(tmp_path) -> Database:
    db = Database(path=tmp_path / "rentwatcher.db")
    db.initialize()
    return db


def test_resolve_sqlite_path_handles_relative(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = resolve_sqlite_path("sqlite:///./relative.db")
    assert path == tmp_path / "relative.db"


def test_resolve_sqlite_path_rejects_empty():
    with pytest.raises(ValueError):
        resolve_sqlite_path("")


def test_database_initializes_schema(tmp_path):
    db = make_db(tmp_path)
    assert db.path.exists()
    assert db.statistics() == {
        "queries": 0,
        "rentals": 0,
        "crawl_sessions": 0,
        "query_rentals": 0,
    }


def test_write_crawl_result_records_everything(tmp_path):
    db = make_db(tmp_path)
    items = [make_item("1"), make_item("2", notify=False)]
    items[0].rental.add_station_distance("4232", "台北車站", "300公尺")
    metadata = CrawlMetadata(
        url=URL,
        description="台北市 近2個捷運站",
        notify_mode="filtered",
        filtered_mode="silent",
        distance_threshold=800,
        new_ids={"1", "2"},
        notifications_sent=1,
        multi_source=True,
        sources=["u1", "u2"],
        errors=[SourceError(source_id="4233", url="u2", error="timeout")],
    )

    session = db.write_crawl_result(QUERY_ID, items, metadata)

    assert session.rental_count == 2
    assert session.new_rentals == 2
    assert session.written_rentals == 2
    assert db.get_known_entity_ids(QUERY_ID) == {"1", "2"}
    assert db.get_known_entity_ids("other") == set()

    record = db.fetch_rental("1")
    assert record.title == "套房 1"
    assert record.tags == ["近捷運"]
    assert record.data_hash
    distances = db.fetch_station_distances("1")
    assert [(d.station_id, d.distance) for d in distances] == [("4232", 300)]
    assert [d.station_id for d in db.fetch_station_distances("2")] == [None]

    [query] = db.list_queries()
    assert query.query_id == QUERY_ID
    assert query.rental_count == 2
    assert query.description == "台北市 近2個捷運站"

    [entry] = list(db.recent_sessions())
    assert entry[0] == QUERY_ID
    assert entry[2:] == (2, 2, 1)

    with sqlite3.connect(db.path) as conn:
        rows = conn.execute(
            "SELECT property_id, was_new, was_notified FROM crawl_session_rentals "
            "ORDER BY property_id").fetchall()
        errors = conn.execute("SELECT errors FROM crawl_sessions").fetchone()[0]
    assert rows == [("1", 1, 1), ("2", 1, 0)]
    assert "timeout" in errors


def test_unchanged_rentals_are_not_rewritten(tmp_path):
    db = make_db(tmp_path)
    metadata = CrawlMetadata(url=URL)
    db.write_crawl_result(QUERY_ID, [make_item("1"), make_item("2")], metadata)
    last_seen = db.fetch_rental("1").last_seen

    session = db.write_crawl_result(
        QUERY_ID, [make_item("1"), make_item("2", rooms="2房1廳")], metadata)

    assert session.written_rentals == 1
    assert session.skipped_rentals == 1
    assert db.fetch_rental("1").last_seen == last_seen
    assert db.fetch_rental("2").rooms == "2房1廳"
    assert db.statistics()["crawl_sessions"] == 2
    assert len(db.fetch_query_rentals(QUERY_ID)) == 2


def test_sqlite_errors_become_persistence_errors(tmp_path):
    db = Database(path=tmp_path / "uninitialized.db")
    with pytest.raises(PersistenceWriteError):
        db.write_crawl_result(QUERY_ID, [make_item("1")], CrawlMetadata(url=URL))


def test_delete_query_keeps_rentals(tmp_path):
    db = make_db(tmp_path)
    db.write_crawl_result(QUERY_ID, [make_item("1")], CrawlMetadata(url=URL))

    assert db.delete_query(QUERY_ID)
    assert not db.delete_query(QUERY_ID)
    assert db.get_known_entity_ids(QUERY_ID) == set()
    assert db.fetch_rental("1") is not None
    assert db.statistics()["crawl_sessions"] == 0


def test_export_query_to_xlsx(tmp_path):
    db = make_db(tmp_path)
    db.write_crawl_result(QUERY_ID, [make_item("1"), make_item("2")],
                          CrawlMetadata(url=URL))

    output = db.export_query_to_xlsx(QUERY_ID, tmp_path / "out" / "rentals.xlsx")

    workbook = load_workbook(output)
    sheet = workbook.active
    rows = list(sheet.iter_rows(values_only=True))
    assert rows[0][:3] == ("property_id", "title", "link")
    assert sorted(row[0] for row in rows[1:]) == ["1", "2"]
    assert rows[1][1].startswith("套房")
