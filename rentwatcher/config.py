"""Environment-driven settings."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .comparator import TITLE_SIMILARITY_THRESHOLD
from .scraper import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %d", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r; using %s", name, raw, default)
        return default


@dataclass
class Settings:
    database_url: str = "sqlite:///rentwatcher.db"
    discord_webhook_url: str = ""
    slack_webhook: str = ""
    distance_threshold: int = 800
    notification_delay_ms: int = 1000
    max_retries: int = 3
    retry_delay_ms: int = 2000
    request_timeout_ms: int = 30000
    user_agent: str = DEFAULT_USER_AGENT
    max_concurrent: int = 3
    request_delay_ms: int = 1000
    title_similarity_threshold: float = TITLE_SIMILARITY_THRESHOLD

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///rentwatcher.db"),
            discord_webhook_url=(os.getenv("DISCORD_WEBHOOK_URL") or "").strip(),
            slack_webhook=(os.getenv("SLACK_WEBHOOK") or "").strip(),
            distance_threshold=_env_int("MRT_DISTANCE_THRESHOLD", 800),
            notification_delay_ms=_env_int("NOTIFICATION_DELAY", 1000),
            max_retries=_env_int("MAX_RETRIES", 3),
            retry_delay_ms=_env_int("RETRY_DELAY", 2000),
            request_timeout_ms=_env_int("REQUEST_TIMEOUT", 30000),
            user_agent=os.getenv("USER_AGENT") or DEFAULT_USER_AGENT,
            max_concurrent=_env_int("MAX_CONCURRENT", 3),
            request_delay_ms=_env_int("REQUEST_DELAY", 1000),
            title_similarity_threshold=_env_float(
                "TITLE_SIMILARITY_THRESHOLD", TITLE_SIMILARITY_THRESHOLD),
        )
