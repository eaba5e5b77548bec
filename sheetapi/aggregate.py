"""
Single-sheet parsing and multi-tab merge.

``parse_sheet_csv`` runs tokenizer -> header resolution -> record mapping for
one CSV text. ``merge_sources`` fans that pipeline out over several
already-fetched texts, waits for all of them, then reduces the results in
source order: header union, concatenation, optional origin tags, and the
global limit.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

from .headers import resolve_header
from .records import Record, extract_preamble, map_rows
from .rules import HEADER_MARKERS, ORIGIN_GID_KEY, ORIGIN_NAME_KEY
from .tokenizer import parse_csv


@dataclass(frozen=True)
class SourceIdentity:
    key: str
    name: str
    gid: str

    def as_dict(self) -> Dict[str, str]:
        return {"key": self.key, "name": self.name, "gid": self.gid}


@dataclass(frozen=True)
class ParseOptions:
    omit_empty: bool = True
    limit: Optional[int] = None
    header_row: Optional[int] = None


@dataclass
class SheetResult:
    preamble: List[List[str]]
    headers: List[str]
    items: List[Record]
    header_row: int  # 1-based


@dataclass
class SourceSummary:
    source: SourceIdentity
    header_row: int
    item_count: int


@dataclass
class MergedResult:
    headers: List[str] = field(default_factory=list)
    items: List[Record] = field(default_factory=list)
    per_source: List[SourceSummary] = field(default_factory=list)


class MappingFailure(Exception):
    """Raised when rows of a source could not be turned into records."""

    def __init__(self, cause: BaseException, source: Optional[SourceIdentity] = None):
        self.cause = cause
        self.source = source
        super().__init__(str(cause))

    def as_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {"message": "CSV parse failed", "details": str(self.cause)}
        if self.source is not None:
            data["tab"] = self.source.as_dict()
        return data


def parse_sheet_csv(
    text: str,
    options: ParseOptions = ParseOptions(),
    markers: Optional[Sequence[str]] = HEADER_MARKERS,
) -> SheetResult:
    try:
        rows = parse_csv(text)
        header_index, spec = resolve_header(rows, options.header_row, markers)
        items = map_rows(rows[header_index + 1:], spec, options.omit_empty, options.limit)
        preamble = extract_preamble(rows, header_index)
    except MappingFailure:
        raise
    except Exception as e:
        raise MappingFailure(e) from e

    return SheetResult(
        preamble=preamble,
        headers=list(spec.names),
        items=items,
        header_row=header_index + 1,
    )


def _parse_source(
    source: SourceIdentity,
    text: str,
    options: ParseOptions,
    markers: Optional[Sequence[str]],
) -> SheetResult:
    try:
        return parse_sheet_csv(text, options, markers)
    except MappingFailure as e:
        raise MappingFailure(e.cause, source) from e.cause


def merge_sources(
    sources: Sequence[Tuple[SourceIdentity, str]],
    options: ParseOptions = ParseOptions(),
    tag_origin: bool = False,
    markers: Optional[Sequence[str]] = HEADER_MARKERS,
    max_workers: Optional[int] = None,
) -> MergedResult:
    """
    Parse every source and merge the results.

    The per-source limit is lifted; ``options.limit`` caps the merged list
    instead. The first failing source (in source order) aborts the merge.
    """
    per_source_options = replace(options, limit=None)

    if not sources:
        return MergedResult()

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [
            pool.submit(_parse_source, source, text, per_source_options, markers)
            for source, text in sources
        ]
    # pool shutdown waits for every task; result() re-raises in source order
    parsed = [(source, fut.result()) for (source, _), fut in zip(sources, futures)]

    merged = MergedResult()
    seen = set()
    for source, result in parsed:
        for name in result.headers:
            if name not in seen:
                seen.add(name)
                merged.headers.append(name)
        for item in result.items:
            if tag_origin:
                item = dict(item)
                item[ORIGIN_NAME_KEY] = source.name
                item[ORIGIN_GID_KEY] = source.gid
            merged.items.append(item)
        merged.per_source.append(
            SourceSummary(source=source, header_row=result.header_row, item_count=len(result.items))
        )

    if options.limit is not None:
        merged.items = merged.items[: options.limit]

    return merged
