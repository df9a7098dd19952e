import json

import pytest
import requests

import sheets
from sheets import (
    SheetClient,
    TabLocator,
    discover_tabs,
    extract_sheet_id,
    parse_csv_row,
    probe_gid_tabs,
    response_csv_lines,
    tab_name_from_disposition,
    tabs_from_document,
    worksheet_feed_tabs,
    worksheet_id_to_gid,
)
from conftest import FakeSheetSession, export_key, gviz_key, make_response


# --- CSV row parsing ---

@pytest.mark.parametrize("row", ["a,b,c", " Song , Artist ,Rock", "one", "x,,z"])
def test_plain_rows_match_split(row):
    assert parse_csv_row(row) == [f.strip() for f in row.split(",")]


def test_quoted_field_keeps_its_comma():
    assert parse_csv_row('a,"b,c",d') == ["a", "b,c", "d"]


def test_quoted_fields_are_unwrapped():
    assert parse_csv_row('"Song A","Artist 1"') == ["Song A", "Artist 1"]


def test_empty_row_is_one_empty_field():
    assert parse_csv_row("") == [""]


def test_broken_quoting_does_not_raise():
    # the unterminated quote swallows the rest of the line
    assert parse_csv_row('"Song, with no end,Artist') == ["Song, with no end,Artist"]


def test_doubled_quotes_are_just_toggles():
    assert parse_csv_row('"He said ""hi""",X') == ["He said hi", "X"]


# --- Sheet id ---

def test_extract_sheet_id():
    assert extract_sheet_id("https://docs.google.com/spreadsheets/d/ABC123/edit") == "ABC123"
    assert extract_sheet_id("https://docs.google.com/spreadsheets/d/1a-B_c2/edit#gid=0") == "1a-B_c2"


@pytest.mark.parametrize("url", ["https://example.com/no-id-here", "", None])
def test_extract_sheet_id_missing(url):
    assert extract_sheet_id(url) is None


# --- Responses ---

def test_csv_lines_drop_blank_lines():
    resp = make_response(body="Title,Artist\r\n\r\nSong,Band\r\n   \r\n")
    assert response_csv_lines(resp) == ["Title,Artist", "Song,Band"]


def test_csv_lines_strip_bom():
    resp = make_response(body="\ufeffTitle,Artist\nSong,Band\n")
    assert response_csv_lines(resp)[0] == "Title,Artist"


@pytest.mark.parametrize("resp", [
    None,
    make_response(404, "Title,Artist\nSong,Band"),
    make_response(200, "<html>sign in</html>\n<p>x</p>", content_type="text/html"),
    make_response(200, "Title,Artist\n"),
])
def test_csv_lines_rejects_unusable_responses(resp):
    assert response_csv_lines(resp) is None


@pytest.mark.parametrize("header, expected", [
    ('attachment; filename="DJ Library - Rock.csv"', "Rock"),
    ("attachment; filename=Disco.csv", "Disco"),
    ('attachment; filename="x.csv"; filename*=UTF-8\'\'DJ%20Library%20-%20Slow%20Jamz.csv', "Slow Jamz"),
    ("inline", None),
    (None, None),
])
def test_tab_name_from_disposition(header, expected):
    assert tab_name_from_disposition(header) == expected


def test_worksheet_id_to_gid():
    assert worksheet_id_to_gid("od6") == "0"
    assert worksheet_id_to_gid("od7") == "1"
    assert worksheet_id_to_gid("not a wid!") is None
    assert worksheet_id_to_gid("") is None


# --- Document scraping ---

def test_tabs_from_htmlview_items():
    body = (
        'items.push({name: "Rock", pageUrl: "https:\\/\\/x\\/htmlview?gid\\u003d0", gid: "0",initialSheet: true});'
        'items.push({name: "Hip Hop|Rap|Funk|R\\u0026B", pageUrl: "y", gid: "98765"});'
        'items.push({name: "Rock", pageUrl: "z", gid: "0"});'
    )
    assert tabs_from_document(body) == [
        TabLocator("Rock", "0"),
        TabLocator("Hip Hop|Rap|Funk|R&B", "98765"),
    ]


def test_tabs_from_sheet_buttons():
    body = (
        '<ul id="sheet-menu"><li id="sheet-button-0"><a href="#">Disco</a></li>'
        '<li id="sheet-button-5"><a href="#">Slow Jamz &amp; Soul</a></li></ul>'
    )
    assert tabs_from_document(body) == [TabLocator("Disco", "0"), TabLocator("Slow Jamz & Soul", "5")]


def test_tabs_from_editor_bootstrap():
    body = r'bootstrapData = "[0,0,\"123\",[{\"1\":[[0,0,\"R&B\"]]}]"; [1,0,\"456\",[{\"1\":[[0,0,\"Other\"]'
    assert tabs_from_document(body) == [TabLocator("R&B", "123"), TabLocator("Other", "456")]


def test_tabs_from_document_without_markers():
    assert tabs_from_document("<html><body>nothing here</body></html>") == []


# --- SheetClient ---

def test_fetch_tab_by_gid_and_cache():
    session = FakeSheetSession({export_key("7"): make_response(body="Title,Artist\nA,B\n")})
    client = SheetClient("XYZ", session=session)
    loc = TabLocator("Rock", "7")
    assert client.fetch_tab(loc) == ["Title,Artist", "A,B"]
    assert client.fetch_tab(loc) == ["Title,Artist", "A,B"]
    assert len(session.calls) == 1
    url, params = session.calls[0]
    assert url == "https://docs.google.com/spreadsheets/d/XYZ/export"
    assert params == {"format": "csv", "gid": "7"}


def test_fetch_tab_by_name_uses_gviz():
    session = FakeSheetSession({gviz_key("Slow Jamz"): make_response(body='"Title","Artist"\n"A","B"\n')})
    client = SheetClient("XYZ", session=session)
    assert client.fetch_tab(TabLocator("Slow Jamz")) == ['"Title","Artist"', '"A","B"']
    assert session.calls[0][0].endswith("/gviz/tq")


def test_fetch_tab_network_error_is_a_miss():
    session = FakeSheetSession(raise_for=("/export",))
    client = SheetClient("XYZ", session=session)
    assert client.fetch_tab(TabLocator("Rock", "0")) is None


def test_client_closes_only_its_own_session(monkeypatch):
    created = FakeSheetSession()
    monkeypatch.setattr(sheets, "new_session", lambda: created)
    SheetClient("XYZ").close()
    assert created.closed

    passed_in = FakeSheetSession()
    SheetClient("XYZ", session=passed_in).close()
    assert not passed_in.closed


# --- Feed ---

def test_worksheet_feed_tabs():
    feed = {"feed": {"entry": [
        {"title": {"$t": "Rock"},
         "id": {"$t": "https://spreadsheets.google.com/feeds/worksheets/XYZ/public/basic/od6"}},
        {"title": {"$t": "Disco"},
         "link": [{"href": "https://docs.google.com/spreadsheets/d/XYZ/pubhtml?gid=4242"}]},
        {"title": {"$t": "Other"}, "id": {"$t": "???"}},
        {"title": {"$t": ""}},
    ]}}
    session = FakeSheetSession({
        ("/public/basic", frozenset({"alt": "json"}.items())): make_response(
            body=json.dumps(feed), content_type="application/json"),
    })
    assert worksheet_feed_tabs(SheetClient("XYZ", session=session)) == [
        TabLocator("Rock", "0"),
        TabLocator("Disco", "4242"),
        TabLocator("Other", None),
    ]


def test_worksheet_feed_missing_is_empty():
    assert worksheet_feed_tabs(SheetClient("XYZ", session=FakeSheetSession())) == []


# --- Probing ---

def test_probe_names_tabs_and_stops_after_misses():
    session = FakeSheetSession({
        export_key(0): make_response(
            body="Title,Artist\nA,B\n",
            headers={"Content-Disposition": 'attachment; filename="Library - Rock.csv"'}),
        export_key(1): make_response(body="Title,Artist\nC,D\n"),
    })
    client = SheetClient("XYZ", session=session)
    found = probe_gid_tabs(client, max_gid=300, max_misses=3)
    assert found == [TabLocator("Rock", "0"), TabLocator("Sheet 2", "1")]
    assert len(session.calls) == 5
    # probed tabs are not downloaded again
    client.fetch_tab(found[0])
    assert len(session.calls) == 5


# --- Strategy chain ---

def test_chain_stops_at_first_validated_strategy():
    seen = []

    def first(client):
        seen.append("first")
        return []

    def second(client):
        seen.append("second")
        return [TabLocator("Rock", "0")]

    def third(client):
        seen.append("third")
        return [TabLocator("Disco", "1")]

    result = discover_tabs(None, strategies=(("a", first), ("b", second), ("c", third)))
    assert result == [TabLocator("Rock", "0")]
    assert seen == ["first", "second"]


def test_chain_skips_strategies_that_fail_validation_or_raise():
    def broken(client):
        raise requests.ConnectionError("down")

    def empty_tabs(client):
        return [TabLocator("Empty", "9")]

    def good(client):
        return [TabLocator("Rock", "0")]

    result = discover_tabs(
        None,
        validate=lambda loc: loc.gid == "0",
        strategies=(("broken", broken), ("empty", empty_tabs), ("good", good)),
    )
    assert result == [TabLocator("Rock", "0")]


def test_chain_exhausted_returns_empty():
    assert discover_tabs(None, strategies=(("none", lambda c: []),)) == []


def test_scrape_moves_on_when_htmlview_errors():
    session = FakeSheetSession(
        {("/edit", frozenset()): make_response(
            body='<li id="sheet-button-3"><a href="#">Other</a></li>', content_type="text/html")},
        raise_for=("/htmlview",),
    )
    client = SheetClient("XYZ", session=session)
    assert sheets.scrape_document_tabs(client) == [TabLocator("Other", "3")]


def test_configured_names(monkeypatch):
    monkeypatch.setattr(sheets, "SHEET_TAB_NAMES", ["Rock", "Disco"])
    assert sheets.configured_name_tabs(None) == [TabLocator("Rock"), TabLocator("Disco")]


def test_csv_lines_split_only_on_newlines():
    resp = make_response(body="Title,Artist\r\nSong Two,Band\x0bX\r\n")
    assert response_csv_lines(resp) == ["Title,Artist", "Song Two,Band\x0bX"]


def test_escaped_emoji_tab_name_is_one_character():
    body = r'items.push({name: "Rock \ud83c\udfb8", pageUrl: "a", gid: "0"});'
    assert tabs_from_document(body) == [TabLocator("Rock \U0001F3B8", "0")]


def test_lone_surrogate_escape_does_not_leak():
    body = r'items.push({name: "Odd \ud83c", pageUrl: "a", gid: "4"});'
    name = tabs_from_document(body)[0].name
    name.encode("utf-8")
    assert name.startswith("Odd ")


@pytest.mark.parametrize("feed", [
    {"feed": {"entry": ["Rock"]}},
    {"feed": ["Rock"]},
    {"feed": {"entry": {"title": "Rock"}}},
    {"feed": {"entry": [{"title": "Rock", "link": "nope"}]}},
])
def test_worksheet_feed_with_unexpected_shape_is_empty(feed):
    session = FakeSheetSession({
        ("/public/basic", frozenset({"alt": "json"}.items())): make_response(
            body=json.dumps(feed), content_type="application/json"),
    })
    assert worksheet_feed_tabs(SheetClient("XYZ", session=session)) == []


def test_chain_moves_on_when_a_strategy_breaks_on_bad_data():
    def broken(client):
        raise AttributeError("'str' object has no attribute 'get'")

    result = discover_tabs(None, strategies=(("broken", broken), ("good", lambda c: [TabLocator("Rock", "0")])))
    assert result == [TabLocator("Rock", "0")]
