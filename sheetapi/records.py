"""Row-to-record mapping."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from .headers import HeaderSpec

Record = Dict[str, str]


def map_row(row: Sequence[str], spec: HeaderSpec, omit_empty: bool = True) -> Record:
    """
    Build a record from one data row.

    Missing cells read as "". Two headers with the same name write to the
    same key, so the rightmost column wins.
    """
    record: Record = {}
    for name, col in spec.pairs():
        value = row[col].strip() if col < len(row) else ""
        if omit_empty and value == "":
            continue
        record[name] = value
    return record


def map_rows(
    rows: Iterable[Sequence[str]],
    spec: HeaderSpec,
    omit_empty: bool = True,
    limit: Optional[int] = None,
) -> List[Record]:
    items: List[Record] = []
    for row in rows:
        record = map_row(row, spec, omit_empty)
        # all-blank rows never become records, even with omit_empty off
        if not any(record.values()):
            continue
        items.append(record)
        if limit is not None and len(items) >= limit:
            break
    return items


def extract_preamble(rows: Sequence[Sequence[str]], header_index: int) -> List[List[str]]:
    preamble: List[List[str]] = []
    for row in rows[:header_index]:
        cells = [c.strip() for c in row]
        cells = [c for c in cells if c != ""]
        if cells:
            preamble.append(cells)
    return preamble
