import asyncio
import threading

import pytest
import requests

from rentwatcher.scraper import (
    UNKNOWN_HOUSE_TYPE,
    UNKNOWN_ROOMS,
    ListingFetcher,
    normalize_link,
    parse_rentals,
)

LIST_HTML = """
<html>
  <body>
    <div class="item">
      <div class="item-img">
        <img class="common-img" data-src="https://img.591.com.tw/1.jpg">
        <img class="common-img" data-src="https://img.591.com.tw/2.jpg">
      </div>
      <div class="item-info">
        <div class="item-info-title">
          <a href="https://rent.591.com.tw/19180936">台北車站旁 精緻套房</a>
        </div>
        <div class="item-info-tag">
          <span class="tag">近捷運</span>
          <span class="tag">可養寵物</span>
        </div>
        <div class="item-info-txt">
          <i class="house-home"></i>
          <span>獨立套房</span>
          <span class="line">1房1廳</span>
        </div>
        <div class="item-info-txt">
          <i class="house-metro"></i>
          <span>距台北車站</span>
          <strong>300公尺</strong>
        </div>
      </div>
    </div>
    <div class="item">
      <div class="item-info-title"><a href="/19180937">雅房出租</a></div>
      <div class="item-info-txt">
        <i class="house-home"></i>
        <span>雅房</span>
        <span class="line">?房</span>
      </div>
    </div>
    <div class="item">
      <div class="item-info-title"><a href="/x"></a></div>
    </div>
  </body>
</html>
"""


class DummyResponse:
    def __init__(self, text="", status_code=200):
        self.text = text
        self.status_code = status_code
        self.encoding = "utf-8"

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)

    @property
    def apparent_encoding(self):
        return "utf-8"


class DummySession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.headers = {}
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def test_parse_rentals_extracts_fields():
    rentals = parse_rentals(LIST_HTML)

    assert len(rentals) == 2
    first = rentals[0]
    assert first.title == "台北車站旁 精緻套房"
    assert first.link == "https://rent.591.com.tw/19180936"
    assert first.house_type == "獨立套房"
    assert first.rooms == "1房1廳"
    assert first.metro_title == "距台北車站"
    assert first.metro_value == "300公尺"
    assert first.tags == ["近捷運", "可養寵物"]
    assert first.img_urls == [
        "https://img.591.com.tw/1.jpg",
        "https://img.591.com.tw/2.jpg",
    ]
    assert first.distance_meters() == 300


def test_parse_rentals_fills_unknown_placeholders():
    second = parse_rentals(LIST_HTML)[1]
    assert second.link == "https://rent.591.com.tw/19180937"
    assert second.rooms == UNKNOWN_ROOMS
    assert second.house_type == "雅房"
    assert second.metro_value == ""

    bare = parse_rentals('<div class="item"><div class="item-info-title"><a>t</a></div></div>')
    assert bare[0].house_type == UNKNOWN_HOUSE_TYPE
    assert bare[0].link is None


@pytest.mark.parametrize(
    "href, expected",
    [
        ("https://rent.591.com.tw/1", "https://rent.591.com.tw/1"),
        ("//rent.591.com.tw/2", "https://rent.591.com.tw/2"),
        ("/3", "https://rent.591.com.tw/3"),
        ("4", "https://rent.591.com.tw/4"),
        ("", None),
        (None, None),
    ],
)
def test_normalize_link(href, expected):
    assert normalize_link(href) == expected


def test_fetcher_retries_then_parses(monkeypatch):
    sleeps = []
    monkeypatch.setattr("rentwatcher.scraper.time.sleep", sleeps.append)
    session = DummySession([
        requests.ConnectionError("reset"),
        DummyResponse(status_code=429),
        DummyResponse(LIST_HTML),
    ])
    fetcher = ListingFetcher(session=session, max_retries=3, retry_delay=0.5,
                             timeout=5)

    rentals = fetcher.fetch_sync("https://rent.591.com.tw/list?region=1")

    assert len(rentals) == 2
    assert len(session.calls) == 3
    assert session.calls[0][1] == 5
    assert sleeps == [0.5, 1.0]
    assert "User-Agent" in session.headers


def test_fetcher_raises_after_exhausting_retries(monkeypatch):
    monkeypatch.setattr("rentwatcher.scraper.time.sleep", lambda _: None)
    session = DummySession([DummyResponse(status_code=500)] * 2)
    fetcher = ListingFetcher(session=session, max_retries=1)

    with pytest.raises(requests.HTTPError):
        fetcher.fetch_sync("https://rent.591.com.tw/list?region=1")
    assert len(session.calls) == 2


def test_async_fetch_runs_in_thread():
    session = DummySession([DummyResponse(LIST_HTML)])
    fetcher = ListingFetcher(session=session)

    rentals = asyncio.run(fetcher("https://rent.591.com.tw/list?region=1"))
    assert [rental.title for rental in rentals] == ["台北車站旁 精緻套房", "雅房出租"]


def test_each_thread_gets_its_own_session():
    fetcher = ListingFetcher(user_agent="rentwatcher-test")
    sessions = {}

    def grab(name):
        sessions[name] = fetcher.session

    workers = [threading.Thread(target=grab, args=(name,)) for name in ("a", "b")]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert sessions["a"] is not sessions["b"]
    assert fetcher.session is fetcher.session
    assert fetcher.session not in sessions.values()
    for session in sessions.values():
        assert session.headers["User-Agent"] == "rentwatcher-test"


def test_injected_session_is_shared():
    session = DummySession([])
    fetcher = ListingFetcher(session=session)
    seen = []
    worker = threading.Thread(target=lambda: seen.append(fetcher.session))
    worker.start()
    worker.join()
    assert seen == [session]
    assert fetcher.session is session
