"""
Quote-aware CSV tokenizer for spreadsheet exports.

The scan is a single pass with an "inside quotes" flag. Rows are returned
exactly as found: no column-count enforcement, so ragged exports survive.
"""

from __future__ import annotations

from typing import List

from .rules import BOM


def parse_csv(text: str) -> List[List[str]]:
    rows: List[List[str]] = []
    row: List[str] = []
    cell: List[str] = []
    in_quotes = False

    i = 0
    n = len(text)
    while i < n:
        ch = text[i]

        if in_quotes:
            if ch == '"':
                if i + 1 < n and text[i + 1] == '"':
                    cell.append('"')
                    i += 1
                else:
                    in_quotes = False
            else:
                cell.append(ch)
            i += 1
            continue

        if ch == '"' and not cell:
            in_quotes = True
        elif ch == ",":
            row.append("".join(cell))
            cell = []
        elif ch == "\n":
            row.append("".join(cell))
            rows.append(row)
            row = []
            cell = []
        elif ch != "\r":
            cell.append(ch)
        i += 1

    # Flush the last cell/row even without a trailing newline, but never
    # turn a final "\n" into an extra [""] row.
    row.append("".join(cell))
    if len(row) > 1 or row[0] != "" or not rows:
        rows.append(row)

    if rows[0] and rows[0][0].startswith(BOM):
        rows[0][0] = rows[0][0][len(BOM):]

    return rows
