"""HTTP fetching and HTML parsing of 591 rental result pages."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import List, Optional

import requests
from bs4 import BeautifulSoup
from bs4.element import Tag

from .models import Rental

logger = logging.getLogger(__name__)

RENT_BASE = "https://rent.591.com.tw"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
UNKNOWN_HOUSE_TYPE = "房屋類型未明"
UNKNOWN_ROOMS = "房型未明"


class ListingFetcher:
    """Fetch a result page with retries and parse it into rentals."""

    def __init__(
        self,
        session: requests.Session | None = None,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self.headers = {
            "User-Agent": user_agent,
            "Accept-Language": "zh-TW,zh;q=0.9,en;q=0.8",
        }
        self._session = session
        if session is not None:
            session.headers.update(self.headers)
        self._local = threading.local()
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout

    @property
    def session(self) -> requests.Session:
        """Per-thread session; an injected session is used by every thread."""
        if self._session is not None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            session.headers.update(self.headers)
            self._local.session = session
        return session

    def get(self, url: str) -> requests.Response:
        """GET ``url``, retrying failures; 429 responses back off twice as long."""
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            if attempt:
                logger.info("Retry attempt %d/%d for %s", attempt,
                            self.max_retries, url)
            try:
                response = self.session.get(url, timeout=self.timeout)
                response.raise_for_status()
                return response
            except requests.RequestException as exc:
                if attempt == attempts - 1:
                    raise
                status = getattr(exc.response, "status_code", None)
                delay = self.retry_delay * 2 if status == 429 else self.retry_delay
                logger.warning(
                    "Request failed (%d/%d), retrying in %.1fs: %s",
                    attempt + 1,
                    attempts,
                    delay,
                    exc,
                )
                time.sleep(delay)
        raise AssertionError("unreachable")

    def fetch_sync(self, url: str) -> List[Rental]:
        response = self.get(url)
        if not response.encoding or response.encoding.lower() == "iso-8859-1":
            response.encoding = response.apparent_encoding or "utf-8"
        rentals = parse_rentals(response.text)
        logger.debug("Parsed %d rentals from %s", len(rentals), url)
        return rentals

    async def fetch(self, url: str) -> List[Rental]:
        """Async entry point; the blocking request runs in a worker thread."""
        return await asyncio.to_thread(self.fetch_sync, url)

    __call__ = fetch


def normalize_link(href: str | None) -> str | None:
    if not href:
        return None
    href = href.strip()
    if href.startswith("http"):
        return href
    if href.startswith("//"):
        return "https:" + href
    return RENT_BASE + (href if href.startswith("/") else "/" + href)


def _text(node: Optional[Tag]) -> str:
    return node.get_text(strip=True) if node else ""


def _info_line(item: Tag, icon_class: str) -> Optional[Tag]:
    for line in item.select(".item-info-txt"):
        if line.select_one(f"i.{icon_class}"):
            return line
    return None


def parse_rental(item: Tag) -> Optional[Rental]:
    """Parse one ``.item`` block; returns None when it has no title."""
    anchor = item.select_one(".item-info-title a")
    title = _text(anchor)
    if not title:
        return None

    img_urls = [
        img.get("data-src")
        for img in item.select(".item-img .common-img")
        if img.get("data-src")
    ]
    tags = [_text(tag) for tag in item.select(".item-info-tag .tag") if _text(tag)]

    house_type = ""
    rooms = ""
    home = _info_line(item, "house-home")
    if home:
        house_type = _text(home.find("span"))
        rooms = _text(home.select_one("span.line"))
    if not rooms or "?" in rooms:
        rooms = UNKNOWN_ROOMS

    metro_value = ""
    metro_title = ""
    metro = _info_line(item, "house-metro")
    if metro:
        metro_value = _text(metro.find("strong"))
        metro_title = _text(metro.find("span"))

    return Rental(
        title=title,
        link=normalize_link(anchor.get("href")),
        house_type=house_type or UNKNOWN_HOUSE_TYPE,
        rooms=rooms,
        metro_title=metro_title,
        metro_value=metro_value,
        tags=tags,
        img_urls=img_urls,
    )


def parse_rentals(html_text: str) -> List[Rental]:
    """Parse every listing block of a 591 result page."""
    soup = BeautifulSoup(html_text, "html.parser")
    rentals: List[Rental] = []
    for item in soup.select(".item"):
        rental = parse_rental(item)
        if rental:
            rentals.append(rental)
    return rentals
