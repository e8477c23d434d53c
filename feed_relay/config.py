from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from dotenv import load_dotenv

from .filters import parse_keywords
from .summarizers import DEFAULT_PROMPT, SummarizeOptions

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd]?)\s*$", re.IGNORECASE)
_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str) -> float:
    """Seconds from "600", "30s", "10m", "1h" or "1d"."""
    m = _DURATION_RE.match(value or "")
    if not m:
        raise ValueError(f"invalid duration: {value!r}")
    return float(m.group(1)) * _UNITS[m.group(2).lower()]


@dataclass
class Settings:
    discord_token: str
    channel_id: int
    database_url: str = "sqlite:///feed_relay.db"
    fetch_interval: float = 600.0
    notification_interval: float = 60.0
    filter_keywords: List[str] = field(default_factory=list)
    summarizer_provider: str = "openai"
    summarizer_api_key: str = ""
    summarizer_model: Optional[str] = None
    summary_prompt: str = DEFAULT_PROMPT
    log_level: str = "INFO"

    @property
    def lookup_window(self) -> timedelta:
        return timedelta(seconds=2 * self.fetch_interval)

    def summarize_options(self) -> SummarizeOptions:
        return SummarizeOptions(
            provider=self.summarizer_provider,
            model=self.summarizer_model,
            prompt=self.summary_prompt,
        )


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ValueError(f"{name} environment variable is not set. Check your .env file.")
    return value


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Read settings from the environment, after loading `.env` if present."""
    load_dotenv(env_file)

    channel = _require("DISCORD_CHANNEL_ID")
    try:
        channel_id = int(channel)
    except ValueError as e:
        raise ValueError(f"DISCORD_CHANNEL_ID must be an integer, got {channel!r}") from e

    provider = (os.getenv("SUMMARIZER_PROVIDER") or "openai").lower()
    if provider in {"gemini", "google", "googleai"}:
        api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or ""
    else:
        api_key = os.getenv("OPENAI_API_KEY") or ""

    return Settings(
        discord_token=_require("DISCORD_BOT_TOKEN"),
        channel_id=channel_id,
        database_url=os.getenv("DATABASE_URL") or "sqlite:///feed_relay.db",
        fetch_interval=parse_duration(os.getenv("FETCH_INTERVAL") or "600"),
        notification_interval=parse_duration(os.getenv("NOTIFICATION_INTERVAL") or "60"),
        filter_keywords=parse_keywords(os.getenv("FILTER_KEYWORDS")),
        summarizer_provider=provider,
        summarizer_api_key=api_key,
        summarizer_model=os.getenv("OPENAI_MODEL") if provider == "openai" else os.getenv("GEMINI_MODEL"),
        summary_prompt=os.getenv("SUMMARY_PROMPT") or DEFAULT_PROMPT,
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    )
