"""Replace the song library with the contents of the DJ's Google Sheet.

One call of :func:`sync_song_library` walks the stages in :class:`SyncStage`.
Any failure raises a :class:`SyncError` that remembers the stage it happened
in; the existing catalog is only touched once songs have been found.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple

from sqlalchemy.exc import SQLAlchemyError

from config import SHEET_TAB_NAMES, SYNC_INSERT_BATCH_SIZE, SYNC_STRICT_REPLACE
from models import db, get_setting, Song, SongRequest
from routes.auth import dj_pin_matches
from sheets import SheetClient, discover_tabs, extract_sheet_id, parse_csv_row

logger = logging.getLogger(__name__)

FALLBACK_TAB_NAME = "default"
# In single-sheet mode the genre is read from this column instead of the tab name
FALLBACK_GENRE_COLUMN = 2


class SyncStage(Enum):
    IDLE = "idle"
    AUTHORIZING = "authorizing"
    LOCATING_SHEET = "locating_sheet"
    DISCOVERING_TABS = "discovering_tabs"
    FETCHING_TABS = "fetching_tabs"
    NORMALIZING = "normalizing"
    REPLACING_CATALOG = "replacing_catalog"
    DONE = "done"
    ERROR = "error"


# --- Errors ---

class SyncError(Exception):
    status_code = 400

    def __init__(self, message: str, stage: SyncStage = SyncStage.ERROR, *, status_code: int | None = None,
                 expected_tabs: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.stage = stage
        if status_code is not None:
            self.status_code = status_code
        self.expected_tabs = expected_tabs

    def to_response(self) -> dict:
        body = {"error": self.message}
        if self.expected_tabs:
            body["expectedTabs"] = list(self.expected_tabs)
        return body


class SyncAuthError(SyncError):
    status_code = 401


class SyncConfigError(SyncError):
    pass


class NoSongsFoundError(SyncError):
    pass


class CatalogReplaceError(SyncError):
    status_code = 500


# --- Records ---

class RawSongRow(NamedTuple):
    title: str
    artist: str
    genre: str | None


@dataclass(frozen=True)
class CanonicalSong:
    title: str
    artist: str
    genre: str | None
    is_available: bool = True

    @property
    def key(self) -> str:
        return dedup_key(self.title, self.artist)


@dataclass
class TabRows:
    """CSV lines of one fetched tab, header first."""
    name: str
    lines: list[str]
    genre_column: int | None = None  # None: the tab name is the genre


@dataclass(frozen=True)
class SyncResult:
    count: int
    tab_names: list[str] = field(default_factory=list)

    def to_response(self) -> dict:
        return {
            "success": True,
            "count": self.count,
            "sheets": list(self.tab_names),
            "genres": list(self.tab_names),
        }


# --- Normalizing ---

def dedup_key(title: str, artist: str) -> str:
    return f"{title.lower()}|||{artist.lower()}"


def iter_raw_rows(tab: TabRows):
    """Yield one RawSongRow per data line that has a title."""
    for line in tab.lines[1:]:
        cols = parse_csv_row(line)
        title = cols[0].strip()
        if not title:
            continue
        artist = (cols[1].strip() if len(cols) > 1 else "") or "Unknown"
        if tab.genre_column is None:
            genre = tab.name
        else:
            col = tab.genre_column
            genre = (cols[col].strip() if len(cols) > col else "") or None
        yield RawSongRow(title, artist, genre)


def normalize_songs(tabs: list[TabRows]) -> list[CanonicalSong]:
    """Flatten tabs into songs, keeping the first of each title/artist pair."""
    seen = set()
    songs = []
    for tab in tabs:
        kept = 0
        for row in iter_raw_rows(tab):
            key = dedup_key(row.title, row.artist)
            if key in seen:
                continue
            seen.add(key)
            songs.append(CanonicalSong(title=row.title, artist=row.artist, genre=row.genre))
            kept += 1
        logger.info("Parsed %d songs from tab %r", kept, tab.name)
    return songs


# --- Catalog replace ---

def _insert_batch(batch: list[CanonicalSong]) -> None:
    db.session.add_all([
        Song(title=s.title, artist=s.artist, genre=s.genre, is_available=s.is_available)
        for s in batch
    ])
    db.session.flush()


def replace_catalog(songs: list[CanonicalSong], *, batch_size: int | None = None, strict: bool | None = None) -> int:
    """Delete every song (and the requests pointing at them), then insert ``songs``.

    Strict mode runs everything in one transaction: a failed batch rolls the
    whole replacement back and raises CatalogReplaceError. Otherwise each
    batch gets its own savepoint, failed batches are logged and skipped, and
    the number of songs attempted is returned.
    """
    batch_size = batch_size or SYNC_INSERT_BATCH_SIZE
    strict = SYNC_STRICT_REPLACE if strict is None else strict

    inserted = 0
    try:
        # song_requests.song_id cascades; bulk deletes skip the ORM cascade
        dropped_requests = SongRequest.query.delete(synchronize_session=False)
        dropped_songs = Song.query.delete(synchronize_session=False)
        logger.info("Cleared %d songs and %d requests", dropped_songs, dropped_requests)

        for start in range(0, len(songs), batch_size):
            batch = songs[start:start + batch_size]
            if strict:
                _insert_batch(batch)
                inserted += len(batch)
                continue
            try:
                with db.session.begin_nested():
                    _insert_batch(batch)
                inserted += len(batch)
            except SQLAlchemyError as exc:
                logger.error("Insert of songs %d-%d failed: %s", start, start + len(batch) - 1, exc)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Catalog replace rolled back")
        raise CatalogReplaceError(
            "Failed to save the song library; the previous library was kept.",
            SyncStage.REPLACING_CATALOG,
        ) from exc

    if strict:
        return inserted
    if inserted < len(songs):
        logger.warning("Inserted %d of %d songs", inserted, len(songs))
    return len(songs)


# --- Orchestration ---

def fetch_discovered_tabs(client: SheetClient, locators) -> list[TabRows]:
    tabs = []
    for locator in locators:
        lines = client.fetch_tab(locator)
        if lines is None:
            logger.info("Skipping tab %r: no data rows", locator.name)
            continue
        tabs.append(TabRows(name=locator.name, lines=lines))
    return tabs


def fetch_single_sheet_fallback(client: SheetClient) -> list[TabRows]:
    """Read the sheet's default export, taking genres from a column."""
    lines = client.fetch_default()
    if lines is None:
        logger.info("Single-sheet fallback found no data for sheet %s", client.sheet_id)
        return []
    return [TabRows(name=FALLBACK_TAB_NAME, lines=lines, genre_column=FALLBACK_GENRE_COLUMN)]


def _unique(names) -> list[str]:
    out = []
    for name in names:
        if name not in out:
            out.append(name)
    return out


def _enter(stage: SyncStage) -> None:
    logger.debug("Library sync stage: %s", stage.value)


def _authorize(pin) -> None:
    if not pin or not isinstance(pin, str):
        raise SyncAuthError("DJ PIN is required to sync library", SyncStage.AUTHORIZING)
    if not get_setting("dj_pin"):
        raise SyncConfigError("DJ PIN is not configured", SyncStage.AUTHORIZING, status_code=500)
    if not dj_pin_matches(pin):
        raise SyncAuthError("Invalid DJ PIN", SyncStage.AUTHORIZING)


def _locate_sheet() -> str:
    sheet_url = (get_setting("google_sheet_url") or "").strip()
    if not sheet_url:
        raise SyncConfigError("Google Sheet URL not configured. Add it in DJ Settings.", SyncStage.LOCATING_SHEET)
    sheet_id = extract_sheet_id(sheet_url)
    if not sheet_id:
        raise SyncConfigError("Invalid Google Sheet URL", SyncStage.LOCATING_SHEET)
    return sheet_id


def sync_song_library(pin, session=None) -> SyncResult:
    """Authorize, read every tab of the configured sheet, and replace the library.

    ``session`` is an optional requests.Session used for every sheet request.
    """
    _enter(SyncStage.AUTHORIZING)
    _authorize(pin)

    _enter(SyncStage.LOCATING_SHEET)
    sheet_id = _locate_sheet()
    client = SheetClient(sheet_id, session=session)
    try:
        _enter(SyncStage.DISCOVERING_TABS)
        logger.info("Syncing song library from sheet %s", sheet_id)
        locators = discover_tabs(client, validate=lambda loc: client.fetch_tab(loc) is not None)

        _enter(SyncStage.FETCHING_TABS)
        if locators:
            tabs = fetch_discovered_tabs(client, locators)
        else:
            logger.info("No tabs discovered; falling back to the sheet's default export")
            tabs = fetch_single_sheet_fallback(client)
    finally:
        client.close()

    _enter(SyncStage.NORMALIZING)
    songs = normalize_songs(tabs)

    _enter(SyncStage.REPLACING_CATALOG)
    # Checked before anything is deleted
    if not songs:
        raise NoSongsFoundError(
            "No songs found. Make sure the Google Sheet is shared as 'Anyone with the link can view' "
            "and each tab has a header row followed by title and artist columns.",
            SyncStage.REPLACING_CATALOG,
            expected_tabs=SHEET_TAB_NAMES or None,
        )
    tab_names = _unique(tab.name for tab in tabs)
    logger.info("Total unique songs: %d from %d tabs", len(songs), len(tab_names))
    count = replace_catalog(songs)

    _enter(SyncStage.DONE)
    logger.info("Song library sync done: %d songs", count)
    return SyncResult(count=count, tab_names=tab_names)
