"""
Header row resolution.

Two strategies are tried in order over a bounded window of rows:

1. marker match: the first row containing both known column labels;
2. density fallback: the row with the most non-blank cells (earliest wins).

Blank header cells are skipped, so header positions and source column
indexes diverge. ``HeaderSpec`` keeps them as parallel lists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .rules import BOM, HEADER_MARKERS, HEADER_SCAN_ROWS


@dataclass
class HeaderSpec:
    names: List[str] = field(default_factory=list)
    indexes: List[int] = field(default_factory=list)

    def pairs(self) -> List[Tuple[str, int]]:
        return list(zip(self.names, self.indexes))


def count_non_empty(cells: Sequence[str]) -> int:
    return sum(1 for c in cells if c.strip() != "")


def find_marker_row(
    rows: Sequence[Sequence[str]],
    markers: Sequence[str] = HEADER_MARKERS,
    window: int = HEADER_SCAN_ROWS,
) -> Optional[int]:
    """Index of the first row (within ``window``) holding every marker, else None."""
    wanted = set(markers)
    if not wanted:
        return None
    for i, row in enumerate(rows[:window]):
        if wanted <= {c.strip() for c in row}:
            return i
    return None


def find_densest_row(rows: Sequence[Sequence[str]], window: int = HEADER_SCAN_ROWS) -> int:
    best_index = 0
    best_score = -1
    for i, row in enumerate(rows[:window]):
        score = count_non_empty(row)
        # strict > keeps the earliest row on ties
        if score > best_score:
            best_score = score
            best_index = i
    return best_index


def infer_header_row(
    rows: Sequence[Sequence[str]],
    markers: Optional[Sequence[str]] = HEADER_MARKERS,
    window: int = HEADER_SCAN_ROWS,
) -> int:
    if markers:
        found = find_marker_row(rows, markers, window)
        if found is not None:
            return found
    return find_densest_row(rows, window)


def normalize_headers(header_row: Sequence[str]) -> HeaderSpec:
    spec = HeaderSpec()
    for i, raw in enumerate(header_row):
        if i == 0 and raw.startswith(BOM):
            raw = raw[len(BOM):]
        name = raw.strip()
        if not name:
            continue
        spec.names.append(name)
        spec.indexes.append(i)
    return spec


def resolve_header(
    rows: Sequence[Sequence[str]],
    override: Optional[int] = None,
    markers: Optional[Sequence[str]] = HEADER_MARKERS,
) -> Tuple[int, HeaderSpec]:
    """
    Return (zero-based header row index, HeaderSpec).

    ``override`` is a 1-based row number; values below 1 are clamped to 1 and
    rows past the end of the table give an empty HeaderSpec rather than an
    error. ``markers=None`` skips the marker strategy.
    """
    if override is not None:
        index = max(1, override) - 1
    else:
        index = infer_header_row(rows, markers)

    header_row = rows[index] if index < len(rows) else []
    return index, normalize_headers(header_row)
