import json

import httpx
import pytest
from fastapi.testclient import TestClient

from sheetapi import aggregate
from sheetapi.cache import ResponseCache
from sheetapi.config import Settings, get_settings
from sheetapi.main import app, get_cache, get_fetcher, parse_positive_int
from sheetapi.upstream import SheetFetcher

client = TestClient(app)

TABS = [
    {"key": "north", "name": "北部", "gid": "10"},
    {"key": "south", "name": "南部", "gid": "20"},
]

SHEETS = {
    "0": "a,b\n1,2\n",
    "10": "Directory,,\n公司名稱,集團名稱,城市\nACME,G1,Taipei\nBeta,G2,\n,,\n",
    "20": "公司名稱,集團名稱,電話\nGamma,G3,123\n",
    "819189250": "留言,作者\nhello,ann\n",
}


@pytest.fixture(autouse=True)
def overrides():
    calls = []

    def handler(request):
        gid = request.url.params["gid"]
        calls.append(gid)
        if gid not in SHEETS:
            return httpx.Response(404)
        return httpx.Response(200, content=SHEETS[gid].encode("utf-8"))

    async def fetcher():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as c:
            yield SheetFetcher(c)

    settings = Settings(sheet_id="sheet-x", tabs_json=json.dumps(TABS), cache_ttl_seconds=120)
    cache = ResponseCache(ttl_seconds=120)
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_fetcher] = fetcher
    yield calls
    app.dependency_overrides.clear()


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_tabs():
    r = client.get("/tabs")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "tabs": TABS}
    assert r.headers["cache-control"] == "public, max-age=0, s-maxage=120"


def test_single_tab_by_path():
    r = client.get("/north")
    assert r.status_code == 200
    data = r.json()
    assert data["ok"] is True
    assert data["meta"]["gid"] == "10"
    assert data["meta"]["tab"] == TABS[0]
    assert data["meta"]["headerRow"] == 2
    assert data["meta"]["csvUrl"].endswith("/d/sheet-x/export?format=csv&gid=10")
    assert data["preamble"] == [["Directory"]]
    assert data["headers"] == ["公司名稱", "集團名稱", "城市"]
    assert data["items"] == [
        {"公司名稱": "ACME", "集團名稱": "G1", "城市": "Taipei"},
        {"公司名稱": "Beta", "集團名稱": "G2"},
    ]


def test_single_tab_by_name_query_and_options():
    r = client.get("/", params={"tab": "北部", "omitEmpty": "0", "limit": "1", "shape": "items"})
    assert r.status_code == 200
    assert r.json() == [{"公司名稱": "ACME", "集團名稱": "G1", "城市": "Taipei"}]


def test_gid_query_without_tab():
    r = client.get("/", params={"gid": "0"})
    data = r.json()
    assert data["meta"]["gid"] == "0"
    assert "tab" not in data["meta"]
    assert data["items"] == [{"a": "1", "b": "2"}]


def test_header_row_override():
    r = client.get("/north", params={"headerRow": "3"})
    data = r.json()
    assert data["meta"]["headerRow"] == 3
    assert data["headers"] == ["ACME", "G1", "Taipei"]


def test_comments_path():
    r = client.get("/留言區")
    data = r.json()
    assert data["meta"]["gid"] == "819189250"
    assert data["meta"]["tab"]["key"] == "comments"
    assert data["items"] == [{"留言": "hello", "作者": "ann"}]


def test_raw_csv_passthrough():
    r = client.get("/raw/south")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert r.text == SHEETS["20"]

    assert client.get("/south.csv").text == SHEETS["20"]


def test_merged_csv_is_rejected():
    r = client.get("/", params={"format": "csv"})
    assert r.status_code == 400
    assert r.json()["ok"] is False


def test_merge_all_tabs():
    r = client.get("/", params={"withTab": "1"})
    assert r.status_code == 200
    data = r.json()
    assert data["meta"]["merged"] is True
    assert [t["itemCount"] for t in data["meta"]["tabs"]] == [2, 1]
    assert [t["headerRow"] for t in data["meta"]["tabs"]] == [2, 1]
    assert data["headers"] == ["公司名稱", "集團名稱", "城市", "電話"]
    assert [i["公司名稱"] for i in data["items"]] == ["ACME", "Beta", "Gamma"]
    assert data["items"][2]["__tab"] == "南部"
    assert data["items"][2]["__gid"] == "20"


def test_merge_limit_and_subset():
    r = client.get("/", params={"limit": "1", "tabs": "south,unknown"})
    data = r.json()
    assert [t["key"] for t in data["meta"]["tabs"]] == ["south"]
    assert data["items"] == [{"公司名稱": "Gamma", "集團名稱": "G3", "電話": "123"}]


def test_merge_fetch_failure_reports_tabs():
    bad = Settings(
        sheet_id="sheet-x",
        tabs_json=json.dumps(TABS + [{"key": "lost", "name": "Lost", "gid": "99"}]),
    )
    app.dependency_overrides[get_settings] = lambda: bad
    r = client.get("/")
    assert r.status_code == 502
    error = r.json()["error"]
    assert error["message"] == "One or more tabs failed to fetch"
    assert error["failures"] == [
        {"key": "lost", "name": "Lost", "gid": "99", "message": "Upstream returned non-200", "status": 404}
    ]


def test_single_fetch_failure():
    r = client.get("/", params={"gid": "404"})
    assert r.status_code == 502
    assert r.json() == {"ok": False, "error": {"message": "Upstream returned non-200", "status": 404}}


def test_pretty_output():
    r = client.get("/", params={"gid": "0", "shape": "items", "pretty": "1"})
    assert r.text == json.dumps([{"a": "1", "b": "2"}], indent=2)


def test_responses_are_cached(overrides):
    first = client.get("/north")
    second = client.get("/north")
    assert first.content == second.content
    assert overrides == ["10"]


def test_method_not_allowed():
    r = client.post("/north")
    assert r.status_code == 405
    assert r.json() == {"ok": False, "error": {"message": "Method Not Allowed"}}


def test_options_preflight():
    r = client.options("/north")
    assert r.status_code == 204


def test_parse_positive_int():
    assert parse_positive_int("5") == 5
    assert parse_positive_int("12abc") == 12
    assert parse_positive_int("0") is None
    assert parse_positive_int("-3") is None
    assert parse_positive_int("x") is None
    assert parse_positive_int(None) is None


def test_cache_stays_bounded_under_distinct_urls():
    small = ResponseCache(ttl_seconds=120, max_entries=50)
    app.dependency_overrides[get_cache] = lambda: small
    for i in range(200):
        assert client.get("/", params={"gid": "0", "junk": str(i)}).status_code == 200
    assert len(small) == 50


def test_merge_parse_failure_names_the_tab(monkeypatch):
    real = aggregate.map_rows

    def failing(rows, spec, omit_empty=True, limit=None):
        if "電話" in spec.names:
            raise MemoryError("oom")
        return real(rows, spec, omit_empty, limit)

    monkeypatch.setattr(aggregate, "map_rows", failing)
    r = client.get("/")
    assert r.status_code == 500
    assert r.json() == {
        "ok": False,
        "error": {"message": "CSV parse failed", "details": "oom", "tab": TABS[1]},
    }


def test_single_parse_failure(monkeypatch):
    def failing(text):
        raise RuntimeError("broken")

    monkeypatch.setattr(aggregate, "parse_csv", failing)
    r = client.get("/north")
    assert r.status_code == 500
    assert r.json() == {"ok": False, "error": {"message": "CSV parse failed", "details": "broken"}}
