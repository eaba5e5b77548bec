"""
Decoding of upstream CSV bytes.

Rules:
- UTF-8 (with or without BOM) is tried first; spreadsheet exports are UTF-8.
- Otherwise use charset-normalizer's best guess.
- If that fails too, decode UTF-8 with replacement characters so the
  pipeline can continue deterministically.
"""

from __future__ import annotations

from charset_normalizer import from_bytes


def decode_csv_bytes(raw: bytes) -> str:
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        pass

    match = from_bytes(raw).best()
    if match is not None:
        try:
            return raw.decode(match.encoding)
        except (UnicodeDecodeError, LookupError):
            pass

    return raw.decode("utf-8", errors="replace")
