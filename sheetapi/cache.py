"""Response cache management."""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class CachedResponse:
    body: bytes
    status_code: int
    media_type: str
    headers: Dict[str, str] = field(default_factory=dict)
    expires_at: float = 0.0


class ResponseCache:
    """In-memory cache of rendered responses, keyed by request URL.

    Entries expire ``ttl_seconds`` after they are stored. Every ``put`` drops
    expired entries, then the oldest ones until at most ``max_entries`` remain.
    """

    def __init__(self, ttl_seconds: int = 300, max_entries: int = 512):
        self._entries: "OrderedDict[str, CachedResponse]" = OrderedDict()
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, max_entries)

    def get(self, key: str) -> Optional[CachedResponse]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if time.monotonic() > entry.expires_at:
            del self._entries[key]
            return None
        return entry

    def put(self, key: str, entry: CachedResponse) -> None:
        now = time.monotonic()
        entry.expires_at = now + self.ttl_seconds
        self._entries.pop(key, None)
        self._entries[key] = entry
        self._evict(now)

    def _evict(self, now: float) -> None:
        # insertion order is also expiry order, since every entry shares one TTL
        while self._entries:
            oldest = next(iter(self._entries.values()))
            if oldest.expires_at >= now:
                break
            self._entries.popitem(last=False)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)
