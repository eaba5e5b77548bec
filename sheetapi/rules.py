"""
Deterministic parsing rules.

This file exists to keep the knobs of the CSV-to-record pipeline in one place.
"""

BOM = "\ufeff"

# Header row inference
HEADER_SCAN_ROWS = 30
HEADER_MARKERS = ("公司名稱", "集團名稱")

# Origin tags appended to merged records
ORIGIN_NAME_KEY = "__tab"
ORIGIN_GID_KEY = "__gid"

COMMENTS_KEYS = frozenset({"comments", "comment", "留言區", "留言"})
COMMENTS_TAB_KEY = "comments"
COMMENTS_TAB_NAME = "留言區"
