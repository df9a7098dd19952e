"""Read-only access to a publicly shared Google Sheet.

Everything here works against the unauthenticated export surface that a
"anyone with the link can view" spreadsheet exposes. None of those endpoints
are a documented API, so tab discovery is an ordered chain of strategies and
every network miss is treated as "nothing found" rather than an error.
"""
import html
import logging
import re
from dataclasses import dataclass
from urllib.parse import unquote

import requests

from config import (
    SHEET_PROBE_MAX_GID,
    SHEET_PROBE_MAX_MISSES,
    SHEET_TAB_NAMES,
    SHEETS_TIMEOUT,
)

logger = logging.getLogger(__name__)

SHEETS_BASE_URL = "https://docs.google.com/spreadsheets/d/{sheet_id}"
WORKSHEET_FEED_URL = "https://spreadsheets.google.com/feeds/worksheets/{sheet_id}/public/basic"
USER_AGENT = "Mozilla/5.0 (compatible; VibeQueue library sync)"

_SHEET_ID_RE = re.compile(r"/d/([A-Za-z0-9_-]+)")


@dataclass(frozen=True)
class TabLocator:
    """One worksheet: its display name (the genre) and, when known, its gid."""
    name: str
    gid: str | None = None


# --- CSV helpers ---

def _finish_field(buf: str) -> str:
    field = buf.strip()
    if field.startswith('"'):
        field = field[1:]
    if field.endswith('"'):
        field = field[:-1]
    return field


def parse_csv_row(row: str) -> list[str]:
    """Split one exported CSV line into fields.

    Quotes only toggle the "inside a quoted field" state, so ``a,"b,c",d``
    gives ``["a", "b,c", "d"]``. Doubled quotes are not unescaped and broken
    quoting never raises. There is always at least one field.
    """
    fields = []
    current = []
    in_quotes = False
    for char in row:
        if char == '"':
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            fields.append(_finish_field("".join(current)))
            current = []
        else:
            current.append(char)
    fields.append(_finish_field("".join(current)))
    return fields


def extract_sheet_id(url: str | None) -> str | None:
    """Return the spreadsheet id from a ``.../d/<id>/...`` URL, or None."""
    if not url:
        return None
    m = _SHEET_ID_RE.search(url)
    return m.group(1) if m else None


def _is_csv_response(resp) -> bool:
    ctype = (resp.headers.get("Content-Type") or "").lower()
    return "csv" in ctype or "text/plain" in ctype


def response_csv_lines(resp) -> list[str] | None:
    """Non-blank lines of a CSV export, or None if it isn't a usable one."""
    if resp is None or not 200 <= resp.status_code < 300:
        return None
    if not _is_csv_response(resp):
        return None
    # utf-8-sig strips BOM if present
    text_data = resp.content.decode("utf-8-sig", errors="replace")
    lines = [line.rstrip("\r") for line in text_data.split("\n")]
    lines = [line for line in lines if line.strip()]
    if len(lines) < 2:
        return None
    return lines


def tab_name_from_disposition(header: str | None) -> str | None:
    """Recover a tab name from an export's suggested filename.

    Exports are named ``"<Document title> - <Tab name>.csv"``.
    """
    if not header:
        return None
    m = re.search(r"filename\*\s*=\s*(?:UTF-8'')?([^;]+)", header, re.I)
    if m:
        filename = unquote(m.group(1).strip().strip('"'))
    else:
        m = re.search(r'filename\s*=\s*"?([^";]+)"?', header, re.I)
        if not m:
            return None
        filename = m.group(1)
    name = re.sub(r"\.csv$", "", filename.strip(), flags=re.I)
    if " - " in name:
        name = name.rsplit(" - ", 1)[1]
    return name.strip() or None


def new_session() -> requests.Session:
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    return session


class SheetClient:
    """HTTP access to one spreadsheet for the duration of a single sync.

    Tab exports are cached by locator so a tab fetched while validating a
    discovery strategy is not downloaded a second time.
    """

    def __init__(self, sheet_id: str, session: requests.Session | None = None, timeout: float | None = None):
        self.sheet_id = sheet_id
        self._owns_session = session is None
        self.session = session if session is not None else new_session()
        self.timeout = timeout or SHEETS_TIMEOUT
        self._tab_cache: dict[tuple[str, str], list[str] | None] = {}

    @property
    def base_url(self) -> str:
        return SHEETS_BASE_URL.format(sheet_id=self.sheet_id)

    def close(self) -> None:
        if self._owns_session:
            self.session.close()

    def get(self, url: str, params: dict | None = None):
        """GET that reports network failures as None instead of raising."""
        try:
            return self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.info("Sheets request failed: %s (%s)", url, exc)
            return None

    def fetch_export(self, gid: str | None = None) -> tuple[list[str] | None, str | None]:
        """CSV export of one tab by gid (the first tab when gid is None).

        Returns the lines and the Content-Disposition header.
        """
        params = {"format": "csv"}
        if gid is not None:
            params["gid"] = gid
        resp = self.get(f"{self.base_url}/export", params=params)
        lines = response_csv_lines(resp)
        disposition = resp.headers.get("Content-Disposition") if resp is not None else None
        if gid is not None:
            self._tab_cache[("gid", gid)] = lines
        return lines, disposition

    def fetch_tab(self, locator: TabLocator) -> list[str] | None:
        if locator.gid is not None:
            key = ("gid", locator.gid)
        else:
            key = ("name", locator.name)
        if key in self._tab_cache:
            return self._tab_cache[key]

        if locator.gid is not None:
            lines, _ = self.fetch_export(locator.gid)
        else:
            resp = self.get(
                f"{self.base_url}/gviz/tq",
                params={"tqx": "out:csv", "sheet": locator.name},
            )
            lines = response_csv_lines(resp)
            self._tab_cache[key] = lines
        if lines is None:
            logger.info("Tab %r (gid=%s) returned no CSV data", locator.name, locator.gid)
        return lines

    def fetch_default(self) -> list[str] | None:
        lines, _ = self.fetch_export(None)
        return lines


# --- Tab discovery strategies ---
# Each takes a SheetClient and returns a (possibly empty) list of TabLocators.

_DOCUMENT_VIEWS = ("htmlview", "edit")

_DOCUMENT_TAB_PATTERNS = (
    # htmlview: items.push({name: "Rock", pageUrl: "...", gid: "0", ...})
    re.compile(r'name:\s*"(?P<name>(?:[^"\\]|\\.)*)"[^{}]*?gid:\s*"(?P<gid>\d+)"'),
    # published view buttons: <li id="sheet-button-123"><a href="#">Rock</a></li>
    re.compile(r'id="sheet-button-(?P<gid>\d+)"[^>]*>\s*<a[^>]*>(?P<name>.*?)</a>', re.S),
    # editor bootstrap data: [0,0,\"123\",[{\"1\":[[0,0,\"Rock\"]
    re.compile(r'\[\d+,0,\\"(?P<gid>\d+)\\",\[\{\\"1\\":\[\[0,0,\\"(?P<name>(?:[^"\\]|\\u[0-9a-fA-F]{4})*)\\"'),
    # sheet properties blob: "sheetId":123,"title":"Rock"
    re.compile(r'"sheetId"\s*:\s*(?P<gid>\d+)\s*,\s*"title"\s*:\s*"(?P<name>(?:[^"\\]|\\.)*)"'),
)


def _decode_tab_name(raw: str) -> str:
    name = re.sub(r"\\u([0-9a-fA-F]{4})", lambda m: chr(int(m.group(1), 16)), raw)
    # join surrogate pairs left by escaped emoji
    name = name.encode("utf-16", "surrogatepass").decode("utf-16", errors="replace")
    name = name.replace('\\"', '"').replace("\\/", "/")
    name = re.sub(r"<[^>]+>", "", name)
    return html.unescape(name).strip()


def tabs_from_document(body: str) -> list[TabLocator]:
    """Pair gids with tab names using the first pattern that matches."""
    for pattern in _DOCUMENT_TAB_PATTERNS:
        seen = set()
        found = []
        for m in pattern.finditer(body):
            gid = m.group("gid")
            name = _decode_tab_name(m.group("name"))
            if not name or gid in seen:
                continue
            seen.add(gid)
            found.append(TabLocator(name=name, gid=gid))
        if found:
            return found
    return []


def scrape_document_tabs(client: SheetClient) -> list[TabLocator]:
    for view in _DOCUMENT_VIEWS:
        resp = client.get(f"{client.base_url}/{view}")
        if resp is None or resp.status_code != 200:
            continue
        if "html" not in (resp.headers.get("Content-Type") or "").lower():
            continue
        found = tabs_from_document(resp.text)
        if found:
            logger.info("Found %d tab(s) in the %s page", len(found), view)
            return found
    return []


def worksheet_id_to_gid(worksheet_id: str | None) -> str | None:
    """Convert a legacy feed worksheet id (``od6``, ``o1a2b3c``) to a gid."""
    if not worksheet_id:
        return None
    try:
        if len(worksheet_id) > 3:
            return str(int(worksheet_id[1:], 36) ^ 474)
        return str(int(worksheet_id, 36) ^ 31578)
    except ValueError:
        return None


def worksheet_feed_tabs(client: SheetClient) -> list[TabLocator]:
    # Only answers for sheets that were "published to the web".
    resp = client.get(WORKSHEET_FEED_URL.format(sheet_id=client.sheet_id), params={"alt": "json"})
    if resp is None or resp.status_code != 200:
        return []
    try:
        data = resp.json()
    except ValueError:
        return []
    if not isinstance(data, dict):
        return []

    feed = data.get("feed")
    entries = feed.get("entry") if isinstance(feed, dict) else None
    if not isinstance(entries, list):
        return []

    found = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        title = entry.get("title")
        name = str((title.get("$t") if isinstance(title, dict) else None) or "").strip()
        if not name:
            continue
        gid = None
        links = entry.get("link")
        for link in links if isinstance(links, list) else []:
            if not isinstance(link, dict):
                continue
            m = re.search(r"[?&#]gid=(\d+)", str(link.get("href") or ""))
            if m:
                gid = m.group(1)
                break
        if gid is None:
            entry_id = entry.get("id")
            entry_id = str((entry_id.get("$t") if isinstance(entry_id, dict) else None) or "").rstrip("/")
            gid = worksheet_id_to_gid(entry_id.rsplit("/", 1)[-1])
        found.append(TabLocator(name=name, gid=gid))
    return found


def configured_name_tabs(client: SheetClient) -> list[TabLocator]:
    return [TabLocator(name=name) for name in SHEET_TAB_NAMES]


def probe_gid_tabs(client: SheetClient, max_gid: int | None = None, max_misses: int | None = None) -> list[TabLocator]:
    """Try gids 0, 1, 2, ... as CSV exports until too many misses in a row."""
    max_gid = SHEET_PROBE_MAX_GID if max_gid is None else max_gid
    max_misses = SHEET_PROBE_MAX_MISSES if max_misses is None else max_misses
    found = []
    misses = 0
    for gid in range(max_gid):
        lines, disposition = client.fetch_export(str(gid))
        if lines is None:
            misses += 1
            if misses >= max_misses:
                logger.info("Stopped gid probing at %d after %d misses in a row", gid, misses)
                break
            continue
        misses = 0
        name = tab_name_from_disposition(disposition) or f"Sheet {len(found) + 1}"
        found.append(TabLocator(name=name, gid=str(gid)))
    return found


DISCOVERY_STRATEGIES = (
    ("document-metadata", scrape_document_tabs),
    ("worksheet-feed", worksheet_feed_tabs),
    ("configured-names", configured_name_tabs),
    ("gid-probe", probe_gid_tabs),
)


def discover_tabs(client: SheetClient, validate=None, strategies=DISCOVERY_STRATEGIES) -> list[TabLocator]:
    """Run the strategies in order and return the first usable result.

    ``validate`` is called per locator; a strategy only counts when at least
    one of its locators validates. Returns [] when every strategy comes up
    empty.
    """
    for label, strategy in strategies:
        try:
            locators = strategy(client)
        except (requests.RequestException, ValueError, TypeError, AttributeError, KeyError) as exc:
            logger.warning("Tab discovery via %s failed: %s", label, exc)
            continue
        if not locators:
            logger.info("Tab discovery via %s found nothing", label)
            continue
        if validate is not None and not any(validate(loc) for loc in locators):
            logger.info("Tab discovery via %s found %d tab(s) but none had data rows", label, len(locators))
            continue
        logger.info("Discovered %d tab(s) via %s: %s", len(locators), label, ", ".join(loc.name for loc in locators))
        return locators
    return []
