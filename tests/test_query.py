import pytest

from rentwatcher.errors import InvalidUrl
from rentwatcher.query import (
    UNKNOWN_QUERY_ID,
    SearchQuery,
    are_equivalent,
    canonical_url_for,
    get_url_station_info,
    group_by_query,
    has_multiple_stations,
    normalize_price_range,
    resolve_query_id,
)

BASE = "https://rent.591.com.tw/list"


def test_query_id_combines_normalized_components():
    url = f"{BASE}?region=1&kind=0&station=4232,4233&rentprice=0,20000"
    assert resolve_query_id(url) == "region1_kind0_stations4232-4233_price,20000"


@pytest.mark.parametrize(
    "other",
    [
        f"{BASE}?region=1&kind=0&station=4233,4232&rentprice=0,20000",
        f"{BASE}?kind=0&rentprice=,20000&region=1&station=4232&station=4233",
        f"{BASE}?region=1&kind=0&station=4232,4233,4232&rentprice=0,20000,",
        f"{BASE}?region=1&kind=0&station=4232,4233&rentprice=0,20000&order=posttime",
    ],
)
def test_equivalent_urls_share_query_id(other):
    url = f"{BASE}?region=1&kind=0&station=4232,4233&rentprice=0,20000"
    assert resolve_query_id(url) == resolve_query_id(other)
    assert are_equivalent(url, other)


def test_different_filters_produce_different_ids():
    assert not are_equivalent(f"{BASE}?region=1&station=4232",
                              f"{BASE}?region=1&station=4233")
    assert not are_equivalent(f"{BASE}?region=1", "https://example.com/?region=1")


def test_sections_and_rooms_are_sorted():
    query = SearchQuery.parse(f"{BASE}?region=1&section=7,3&other=3,1&floor=2,6")
    assert query.sections == ("3", "7")
    assert query.room_filters == ("1", "3")
    assert query.query_id == "region1_section3-7_rooms1-3_floor2,6"


def test_metro_only_used_without_stations():
    assert resolve_query_id(f"{BASE}?region=1&metro=162") == "region1_metro162"
    assert (resolve_query_id(f"{BASE}?region=1&metro=162&station=4232")
            == "region1_stations4232")


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com/list?region=1",
        "ftp://rent.591.com.tw/list?region=1",
        "https://rent.591.com.tw.evil.com/list?region=1",
        "",
    ],
)
def test_parse_rejects_foreign_urls(url):
    with pytest.raises(InvalidUrl):
        SearchQuery.parse(url)


def test_url_without_filters_is_unknown():
    assert resolve_query_id("https://rent.591.com.tw/") == UNKNOWN_QUERY_ID


def test_description_uses_lookup_tables():
    query = SearchQuery.parse(f"{BASE}?region=1&kind=1&station=4232&rentprice=0,20000")
    assert query.description == "台北市 整層住家 近捷運站4232 20,000元以下"
    assert SearchQuery.parse("https://rent.591.com.tw/").description == "基本搜尋"
    multi = SearchQuery.parse(f"{BASE}?region=3&station=1,2,3&rentprice=5000,15000")
    assert multi.description == "新北市 近3個捷運站 5,000-15,000元"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("0,20000", ",20000"),
        ("20000", "20000,"),
        ("5000,20000,", "5000,20000"),
        ("5000$_20000$", "5000,20000"),
        ("0$_0$", None),
        ("", None),
        ("cheap", "cheap"),
    ],
)
def test_normalize_price_range(raw, expected):
    assert normalize_price_range(raw) == expected


def test_split_by_stations_yields_one_station_each():
    query = SearchQuery.parse(f"{BASE}?region=1&station=4232,4233,4234&rentprice=0,20000")
    sources = query.split_by_stations()

    assert len(sources) == 3
    assert all(len(source.stations) == 1 for source in sources)
    assert {source.stations[0] for source in sources} == {"4232", "4233", "4234"}
    for source in sources:
        assert source.region == "1"
        assert source.price == ",20000"
        assert source.url.startswith(BASE + "?")


def test_split_with_single_station_returns_self():
    query = SearchQuery.parse(f"{BASE}?region=1&station=4232")
    assert query.split_by_stations() == [query]
    assert not has_multiple_stations(query.url)
    assert has_multiple_stations(f"{BASE}?station=1,2")
    assert not has_multiple_stations("not a url")


def test_station_info_reports_invalid_urls():
    assert get_url_station_info("https://example.com/")["is_valid"] is False
    info = get_url_station_info(f"{BASE}?station=4232,4233")
    assert info == {
        "is_valid": True,
        "has_multiple": True,
        "stations": ["4232", "4233"],
        "station_count": 2,
    }


def test_canonical_url_is_deterministic():
    first = SearchQuery.parse(f"{BASE}?station=4233,4232&region=1&order=desc&kind=1")
    second = SearchQuery.parse(f"{BASE}?kind=1&order=desc&region=1&station=4232&station=4233")
    assert first.canonical_url == second.canonical_url
    assert SearchQuery.parse(first.canonical_url).query_id == first.query_id

    all_kinds = SearchQuery.parse(f"{BASE}?region=1&kind=0&station=4232&order=desc")
    assert "kind=0" in all_kinds.canonical_url
    assert SearchQuery.parse(all_kinds.canonical_url).query_id == all_kinds.query_id


def test_default_kind_is_equivalent_to_no_kind():
    assert are_equivalent(f"{BASE}?region=1&kind=0", f"{BASE}?region=1")
    assert are_equivalent(f"{BASE}?region=1&kind=0&station=4232",
                          f"{BASE}?station=4232&region=1")
    assert not are_equivalent(f"{BASE}?region=1&kind=1", f"{BASE}?region=1")


def test_canonical_url_for_group_keeps_group_query_id():
    urls = [
        f"{BASE}?region=1&kind=0&order=desc",
        f"{BASE}?kind=0&region=1",
    ]
    groups = group_by_query(urls)
    assert len(groups) == 1
    (group,) = groups.values()
    canonical = canonical_url_for(group.urls)
    assert SearchQuery.parse(canonical).query_id == group.query_id


def test_group_by_query_skips_invalid(caplog):
    urls = [
        f"{BASE}?region=1&station=1,2",
        f"{BASE}?station=2,1&region=1",
        "https://example.com/",
    ]
    with caplog.at_level("WARNING"):
        groups = group_by_query(urls)

    assert list(groups) == ["region1_stations1-2"]
    assert groups["region1_stations1-2"].urls == urls[:2]
    assert "example.com" in caplog.text
    assert canonical_url_for(urls) == SearchQuery.parse(urls[0]).canonical_url
