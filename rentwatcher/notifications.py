"""Notification helpers for delivering new rentals to chat webhooks."""

from __future__ import annotations

import datetime as dt
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Protocol, Sequence

import requests

from .config import Settings
from .models import AnnotatedRental

logger = logging.getLogger(__name__)

SUPPRESS_NOTIFICATIONS = 4096
COLOR_NEAR = 0x00FF00
COLOR_FAR = 0xFFA500
COLOR_ERROR = 0xFF0000
NO_TITLE = "無標題"


class Notifier(Protocol):
    """Protocol defining the notifier contract."""

    def send_rental(self, item: AnnotatedRental, index: int, total: int,
                    source_url: str) -> None:
        ...

    def send_error(self, source_url: str, error: str) -> None:
        ...


def _timestamp() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def _footer_text(item: AnnotatedRental, index: int, total: int,
                 source_url: str) -> str:
    decision = item.notification
    text = f"{index}/{total} - 591房源通知"
    if decision.is_far and decision.distance_threshold:
        text += f" (距離捷運>{decision.distance_threshold}m)"
    if decision.is_silent:
        text += " 🔇"
    if source_url:
        text += f" • {source_url}"
    return text


def build_rental_embed(
    item: AnnotatedRental,
    index: int,
    total: int,
    source_url: str = "",
) -> Dict[str, object]:
    """Render one rental as a Discord embed."""
    rental = item.rental
    metro = f"{rental.metro_title} {rental.metro_value or 'N/A'}".strip()
    embed: Dict[str, object] = {
        "title": rental.title or NO_TITLE,
        "url": rental.link,
        "color": COLOR_FAR if item.notification.is_far else COLOR_NEAR,
        "fields": [
            {"name": "🏠 房型", "value": rental.rooms or "N/A", "inline": True},
            {"name": "🚇 捷運距離", "value": metro, "inline": True},
            {"name": "🏷️ 標籤", "value": ", ".join(rental.tags) or "N/A",
             "inline": False},
        ],
        "footer": {"text": _footer_text(item, index, total, source_url)},
        "timestamp": _timestamp(),
    }
    if rental.img_urls:
        embed["image"] = {"url": rental.img_urls[0]}
    return embed


def build_error_embed(source_url: str, error: str) -> Dict[str, object]:
    return {
        "title": "591 爬蟲執行錯誤",
        "color": COLOR_ERROR,
        "fields": [
            {"name": "錯誤訊息", "value": error, "inline": False},
            {"name": "目標URL", "value": source_url, "inline": False},
        ],
        "timestamp": _timestamp(),
    }


def format_rental_message(item: AnnotatedRental, index: int, total: int,
                          source_url: str = "") -> str:
    """Plain-text rendering used by text-only channels."""
    rental = item.rental
    lines = [
        f":house: {rental.title or NO_TITLE}",
        f"房型: {rental.rooms or 'N/A'}",
        f"捷運: {(rental.metro_title + ' ' + (rental.metro_value or 'N/A')).strip()}",
    ]
    if rental.tags:
        lines.append("標籤: " + ", ".join(rental.tags))
    if rental.link:
        lines.append(f"URL: {rental.link}")
    lines.append(_footer_text(item, index, total, source_url))
    return "\n".join(lines)


@dataclass
class DiscordNotifier:
    """Send embeds to a Discord webhook."""

    webhook_url: str
    timeout: int = 10

    def _post(self, embed: Dict[str, object], silent: bool = False) -> None:
        payload: Dict[str, object] = {"embeds": [embed]}
        if silent:
            payload["flags"] = SUPPRESS_NOTIFICATIONS
        response = requests.post(self.webhook_url, json=payload,
                                 timeout=self.timeout)
        response.raise_for_status()

    def send_rental(self, item: AnnotatedRental, index: int, total: int,
                    source_url: str) -> None:
        self._post(build_rental_embed(item, index, total, source_url),
                   silent=item.notification.is_silent)

    def send_error(self, source_url: str, error: str) -> None:
        self._post(build_error_embed(source_url, error))


@dataclass
class SlackNotifier:
    """Send messages to Slack via Incoming Webhook."""

    webhook_url: str
    timeout: int = 10

    def _post(self, message: str) -> None:
        response = requests.post(self.webhook_url, json={"text": message},
                                 timeout=self.timeout)
        response.raise_for_status()

    def send_rental(self, item: AnnotatedRental, index: int, total: int,
                    source_url: str) -> None:
        self._post(format_rental_message(item, index, total, source_url))

    def send_error(self, source_url: str, error: str) -> None:
        self._post(f":x: 591 爬蟲執行錯誤\n錯誤訊息: {error}\n目標URL: {source_url}")


@dataclass
class CompositeNotifier:
    """Fan-out notifier that forwards messages to multiple channels.

    Channel failures are logged and never propagate. ``send_rental``
    reports whether at least one channel accepted the rental.
    """

    notifiers: List[Notifier]

    def send_rental(self, item: AnnotatedRental, index: int, total: int,
                    source_url: str) -> bool:
        delivered = False
        for notifier in self.notifiers:
            try:
                notifier.send_rental(item, index, total, source_url)
                delivered = True
            except Exception:  # noqa: BLE001
                logger.exception("Failed to deliver notification via %s",
                                 type(notifier).__name__)
        return delivered

    def send_error(self, source_url: str, error: str) -> None:
        for notifier in self.notifiers:
            try:
                notifier.send_error(source_url, error)
            except Exception:  # noqa: BLE001
                logger.exception("Failed to deliver error notification via %s",
                                 type(notifier).__name__)


def build_notifier(
    discord_webhook_url: str = "",
    slack_webhook: str = "",
) -> CompositeNotifier | None:
    """Construct a notifier for the configured webhooks, or None without any."""
    notifiers: list[Notifier] = []

    discord_webhook_url = (discord_webhook_url or "").strip()
    if discord_webhook_url:
        notifiers.append(DiscordNotifier(webhook_url=discord_webhook_url))

    slack_webhook = (slack_webhook or "").strip()
    if slack_webhook:
        notifiers.append(SlackNotifier(webhook_url=slack_webhook))

    if not notifiers:
        return None
    return CompositeNotifier(notifiers=notifiers)


def build_notifier_from_env() -> CompositeNotifier | None:
    """Construct a notifier from environment configuration."""
    settings = Settings.from_env()
    return build_notifier(settings.discord_webhook_url, settings.slack_webhook)


def deliver_rentals(
    notifier: Notifier,
    rentals: Sequence[AnnotatedRental],
    source_url: str,
    delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Send each rental in order, ``delay`` seconds apart; returns the sent count."""
    if not rentals:
        return 0
    total = len(rentals)
    logger.info("Sending %d notifications...", total)
    sent = 0
    for index, item in enumerate(rentals, start=1):
        try:
            delivered = notifier.send_rental(item, index, total, source_url)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to send notification %d/%d: %s", index,
                             total, item.rental.title)
            delivered = False
        if delivered is not False:
            sent += 1
            logger.info(
                "Sent notification %d/%d %s%s: %s",
                index,
                total,
                "(silent)" if item.notification.is_silent else "(normal)",
                f" ({item.notification.distance_meters}m from MRT)"
                if item.notification.distance_meters is not None else "",
                item.rental.title,
            )
        if index < total and delay > 0:
            sleep(delay)
    return sent


__all__ = [
    "CompositeNotifier",
    "DiscordNotifier",
    "Notifier",
    "SlackNotifier",
    "build_error_embed",
    "build_notifier",
    "build_notifier_from_env",
    "build_rental_embed",
    "deliver_rentals",
    "format_rental_message",
]
