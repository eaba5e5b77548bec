"""Configuration management for sheet-csv-api."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .models import Tab

load_dotenv()

DEFAULT_SHEET_ID = "1vFsVN641zHiyOVjo0n_JtrHgpH2SCHT7n9__FnbcskE"
DEFAULT_CACHE_TTL_SECONDS = 300

DEFAULT_TABS: List[Tab] = [
    Tab(key="taipei", name="台北", gid="0"),
    Tab(key="taichung", name="台中", gid="687894271"),
    Tab(key="kaohsiung", name="高雄", gid="33705333"),
    Tab(key="tainan", name="台南", gid="2140061499"),
    Tab(key="overseas", name="海外", gid="191713228"),
]


def split_comma_list(value: Optional[str]) -> List[str]:
    """Split "a, b,,c" into ["a", "b", "c"]; None or blank gives []."""
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def _allowed_origins() -> List[str]:
    return split_comma_list(os.getenv("CORS_ALLOW_ORIGINS")) or ["*"]


def _parse_ttl(value: Optional[str]) -> int:
    try:
        ttl = int(value) if value else 0
    except ValueError:
        ttl = 0
    return ttl or DEFAULT_CACHE_TTL_SECONDS


def load_tabs(raw: Optional[str]) -> List[Tab]:
    """
    Load the tab list from a TABS_JSON value.

    Entries missing key/name/gid are skipped and keys are de-duplicated
    case-insensitively. Anything unusable falls back to DEFAULT_TABS.
    """
    raw = (raw or "").strip()
    if not raw:
        return list(DEFAULT_TABS)

    try:
        parsed = json.loads(raw)
    except ValueError:
        return list(DEFAULT_TABS)
    if not isinstance(parsed, list):
        return list(DEFAULT_TABS)

    tabs: List[Tab] = []
    seen = set()
    for item in parsed:
        if not isinstance(item, dict):
            continue
        key = str(item.get("key") or "").strip()
        name = str(item.get("name") or "").strip()
        gid = str(item.get("gid") or "").strip()
        if not key or not name or not gid:
            continue
        if key.lower() in seen:
            continue
        seen.add(key.lower())
        tabs.append(Tab(key=key, name=name, gid=gid))

    return tabs or list(DEFAULT_TABS)


class Settings(BaseModel):
    """Application settings, read from the environment when instantiated."""

    # Spreadsheet published as CSV
    sheet_id: str = Field(default_factory=lambda: os.getenv("SHEET_ID") or DEFAULT_SHEET_ID)
    default_gid: str = Field(default_factory=lambda: os.getenv("DEFAULT_GID") or "0")
    comments_gid: str = Field(default_factory=lambda: os.getenv("COMMENTS_GID") or "819189250")
    tabs_json: Optional[str] = Field(default_factory=lambda: os.getenv("TABS_JSON"))

    # Caching (in-process and Cache-Control s-maxage)
    cache_ttl_seconds: int = Field(default_factory=lambda: _parse_ttl(os.getenv("CACHE_TTL_SECONDS")))
    cache_max_entries: int = Field(default_factory=lambda: int(os.getenv("CACHE_MAX_ENTRIES", "512")))

    # Upstream fetch
    upstream_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "30"))
    )

    # CORS settings (comma-separated list of allowed origins, or * for all)
    cors_allow_origins: List[str] = Field(default_factory=_allowed_origins)

    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    @property
    def tabs(self) -> List[Tab]:
        return load_tabs(self.tabs_json)


@lru_cache
def get_settings() -> Settings:
    return Settings()
