"""Fetching published CSV exports from Google Sheets."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Union
from urllib.parse import urlencode

import httpx

from .normalize import decode_csv_bytes

logger = logging.getLogger(__name__)


def build_csv_export_url(sheet_id: str, gid: str) -> str:
    query = urlencode({"format": "csv", "gid": gid})
    return f"https://docs.google.com/spreadsheets/d/{sheet_id}/export?{query}"


class UpstreamError(Exception):
    """The CSV export could not be fetched."""

    def __init__(self, message: str, status: Optional[int] = None, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"message": self.message}
        if self.status is not None:
            data["status"] = self.status
        if self.details is not None:
            data["details"] = self.details
        return data


class SheetFetcher:
    """Thin wrapper over an httpx.AsyncClient that returns decoded CSV text."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def fetch_csv(self, url: str) -> str:
        try:
            response = await self.client.get(url, headers={"Accept": "text/csv"}, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.warning("Upstream fetch failed for %s: %s", url, e)
            raise UpstreamError("Failed to fetch upstream CSV", details=str(e)) from e

        if not response.is_success:
            logger.warning("Upstream returned %s for %s", response.status_code, url)
            raise UpstreamError("Upstream returned non-200", status=response.status_code)

        return decode_csv_bytes(response.content)


async def fetch_many(fetcher: SheetFetcher, urls: Sequence[str]) -> List[Union[str, UpstreamError]]:
    """Fetch all urls concurrently; each slot holds the text or its UpstreamError."""

    async def _one(url: str) -> Union[str, UpstreamError]:
        try:
            return await fetcher.fetch_csv(url)
        except UpstreamError as e:
            return e

    return list(await asyncio.gather(*(_one(u) for u in urls)))
