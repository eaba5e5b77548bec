from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.concurrency import run_in_threadpool

from .aggregate import MappingFailure, ParseOptions, SourceIdentity, merge_sources, parse_sheet_csv
from .cache import CachedResponse, ResponseCache
from .config import get_settings, Settings, split_comma_list
from .models import (
    ErrorResponse,
    HealthResponse,
    MergedMeta,
    MergedResponse,
    MergedTabMeta,
    SheetMeta,
    SheetResponse,
    Tab,
    TabsResponse,
)
from .rules import COMMENTS_KEYS, COMMENTS_TAB_KEY, COMMENTS_TAB_NAME
from .upstream import SheetFetcher, UpstreamError, build_csv_export_url, fetch_many

logger = logging.getLogger(__name__)

_settings = get_settings()
logging.getLogger("sheetapi").setLevel(_settings.log_level.upper())

app = FastAPI(
    title="sheet-csv-api",
    description="Google Sheets CSV exports reshaped into JSON records",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_allow_origins,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type"],
)

_cache: Optional[ResponseCache] = None


def get_cache(settings: Settings = Depends(get_settings)) -> ResponseCache:
    global _cache
    if _cache is None:
        _cache = ResponseCache(ttl_seconds=settings.cache_ttl_seconds, max_entries=settings.cache_max_entries)
    return _cache


async def get_fetcher(settings: Settings = Depends(get_settings)) -> AsyncIterator[SheetFetcher]:
    async with httpx.AsyncClient(timeout=settings.upstream_timeout_seconds) as client:
        yield SheetFetcher(client)


def parse_positive_int(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    m = re.match(r"\s*([+-]?\d+)", value)
    if not m:
        return None
    n = int(m.group(1))
    return n if n > 0 else None


def normalize_key(value: str) -> str:
    return value.strip().lower()


def is_comments_key(value: str) -> bool:
    return normalize_key(value) in COMMENTS_KEYS


def find_tab(tabs: List[Tab], lookup: str) -> Optional[Tab]:
    wanted = normalize_key(lookup)
    for t in tabs:
        if normalize_key(t.key) == wanted or normalize_key(t.name) == wanted:
            return t
    return None


def render_json(
    body: Any,
    status_code: int = 200,
    pretty: bool = False,
    headers: Optional[Dict[str, str]] = None,
) -> Response:
    if pretty:
        text = json.dumps(body, ensure_ascii=False, indent=2)
    else:
        text = json.dumps(body, ensure_ascii=False, separators=(",", ":"))
    return Response(
        content=text.encode("utf-8"),
        status_code=status_code,
        media_type="application/json; charset=utf-8",
        headers=headers,
    )


def render_error(status_code: int, error: Dict[str, Any], pretty: bool = False) -> Response:
    return render_json(ErrorResponse(error=error).model_dump(), status_code=status_code, pretty=pretty)


def cache_headers(settings: Settings) -> Dict[str, str]:
    return {"Cache-Control": f"public, max-age=0, s-maxage={settings.cache_ttl_seconds}"}


def remember(cache: ResponseCache, key: str, response: Response) -> Response:
    cache.put(
        key,
        CachedResponse(
            body=response.body,
            status_code=response.status_code,
            media_type=response.media_type or "application/json",
            headers={"Cache-Control": response.headers.get("cache-control", "")},
        ),
    )
    return response


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@app.get("/health", response_model=HealthResponse)
def health():
    return {"ok": True}


@app.options("/{path:path}")
def preflight(path: str = ""):
    return Response(status_code=204)


@app.api_route("/{path:path}", methods=["POST", "PUT", "PATCH", "DELETE"], include_in_schema=False)
def method_not_allowed(path: str = ""):
    return render_error(405, {"message": "Method Not Allowed"})


@app.get("/tabs")
def list_tabs(
    request: Request,
    pretty: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    cache: ResponseCache = Depends(get_cache),
):
    cache_key = str(request.url)
    cached = cache.get(cache_key)
    if cached is not None:
        return Response(cached.body, cached.status_code, cached.headers, cached.media_type)

    body = TabsResponse(tabs=settings.tabs).model_dump()
    resp = render_json(body, pretty=pretty == "1", headers=cache_headers(settings))
    return remember(cache, cache_key, resp)


@app.get("/{path:path}")
async def read_sheet(
    request: Request,
    path: str = "",
    pretty: Optional[str] = None,
    omit_empty: Optional[str] = Query(default=None, alias="omitEmpty"),
    limit: Optional[str] = None,
    header_row: Optional[str] = Query(default=None, alias="headerRow"),
    shape: str = "full",
    with_tab: Optional[str] = Query(default=None, alias="withTab"),
    fmt: Optional[str] = Query(default=None, alias="format"),
    gid: Optional[str] = None,
    tab: Optional[str] = None,
    tabs: Optional[str] = None,
    merge: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    cache: ResponseCache = Depends(get_cache),
    fetcher: SheetFetcher = Depends(get_fetcher),
):
    cache_key = str(request.url)
    cached = cache.get(cache_key)
    if cached is not None:
        return Response(cached.body, cached.status_code, cached.headers, cached.media_type)

    is_pretty = pretty == "1"
    options = ParseOptions(
        omit_empty=omit_empty != "0",
        limit=parse_positive_int(limit),
        header_row=parse_positive_int(header_row),
    )
    all_tabs = settings.tabs

    segments = [s for s in path.split("/") if s]
    want_csv = fmt == "csv"
    if segments and segments[0] == "raw":
        want_csv = True
        segments = segments[1:]

    selected_tab: Optional[Tab] = None
    selected_gid: Optional[str] = gid or None

    if segments:
        seg = segments[0]
        if seg.endswith(".csv"):
            want_csv = True
            seg = seg[:-4]
        if is_comments_key(seg):
            selected_gid = settings.comments_gid
            selected_tab = Tab(key=COMMENTS_TAB_KEY, name=COMMENTS_TAB_NAME, gid=selected_gid)

    if not selected_gid and tab:
        selected_tab = find_tab(all_tabs, tab)
        if selected_tab:
            selected_gid = selected_tab.gid

    if not selected_gid and segments:
        key = segments[0]
        if key.endswith(".csv"):
            key = key[:-4]
        selected_tab = find_tab(all_tabs, key)
        if selected_tab:
            selected_gid = selected_tab.gid

    if merge == "1":
        do_merge = True
    elif merge == "0":
        do_merge = False
    else:
        do_merge = selected_gid is None

    merge_tabs = all_tabs
    if tabs:
        requested = {normalize_key(s) for s in split_comma_list(tabs)}
        subset = [
            t for t in all_tabs
            if normalize_key(t.key) in requested or normalize_key(t.name) in requested
        ]
        if subset:
            merge_tabs = subset

    if want_csv and do_merge:
        return render_error(
            400,
            {"message": "Merged CSV is not supported. Please specify a tab via /<key>, ?gid=, or ?tab=."},
            pretty=is_pretty,
        )

    if not do_merge:
        target_gid = selected_gid or settings.default_gid
        resolved_tab = selected_tab or next((t for t in all_tabs if t.gid == target_gid), None)
        csv_url = build_csv_export_url(settings.sheet_id, target_gid)

        try:
            text = await fetcher.fetch_csv(csv_url)
        except UpstreamError as e:
            return render_error(502, e.as_dict(), pretty=is_pretty)

        if want_csv:
            return Response(content=text, status_code=200, media_type="text/csv; charset=utf-8")

        try:
            parsed = await run_in_threadpool(parse_sheet_csv, text, options)
        except MappingFailure as e:
            logger.exception("CSV parse failed for gid %s", target_gid)
            return render_error(500, e.as_dict(), pretty=is_pretty)

        payload = SheetResponse(
            meta=SheetMeta(
                sheet_id=settings.sheet_id,
                gid=target_gid,
                tab=resolved_tab,
                csv_url=csv_url,
                fetched_at=utc_now_iso(),
                header_row=parsed.header_row,
                cache_ttl_seconds=settings.cache_ttl_seconds,
            ),
            preamble=parsed.preamble,
            headers=parsed.headers,
            items=parsed.items,
        )
        body = parsed.items if shape == "items" else payload.model_dump(by_alias=True, exclude_none=True)
        resp = render_json(body, pretty=is_pretty, headers=cache_headers(settings))
        return remember(cache, cache_key, resp)

    csv_urls = [build_csv_export_url(settings.sheet_id, t.gid) for t in merge_tabs]
    results = await fetch_many(fetcher, csv_urls)

    failures = [
        {**t.model_dump(), **r.as_dict()}
        for t, r in zip(merge_tabs, results)
        if isinstance(r, UpstreamError)
    ]
    if failures:
        return render_error(
            502,
            {"message": "One or more tabs failed to fetch", "failures": failures},
            pretty=is_pretty,
        )

    sources = [(SourceIdentity(key=t.key, name=t.name, gid=t.gid), text) for t, text in zip(merge_tabs, results)]
    try:
        merged = await run_in_threadpool(merge_sources, sources, options, tag_origin=with_tab == "1")
    except MappingFailure as e:
        logger.exception("CSV parse failed while merging tab %s", e.source.key if e.source else "?")
        return render_error(500, e.as_dict(), pretty=is_pretty)

    payload = MergedResponse(
        meta=MergedMeta(
            sheet_id=settings.sheet_id,
            tabs=[
                MergedTabMeta(
                    key=s.source.key,
                    name=s.source.name,
                    gid=s.source.gid,
                    csv_url=url,
                    header_row=s.header_row,
                    item_count=s.item_count,
                )
                for s, url in zip(merged.per_source, csv_urls)
            ],
            fetched_at=utc_now_iso(),
            cache_ttl_seconds=settings.cache_ttl_seconds,
        ),
        headers=merged.headers,
        items=merged.items,
    )
    body = merged.items if shape == "items" else payload.model_dump(by_alias=True, exclude_none=True)
    resp = render_json(body, pretty=is_pretty, headers=cache_headers(settings))
    return remember(cache, cache_key, resp)
