from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import or_

from library_sync import SyncError, sync_song_library
from models import db, Song, serialize_song
from routes.auth import dj_pin_required

songs_bp = Blueprint('songs', __name__)


def _song_or_none(song_id: int) -> "Song | None":
    return db.session.get(Song, song_id)


@songs_bp.get("/api/songs")
def list_songs():
    search = (request.args.get("search") or "").strip()
    genres = [g for g in (request.args.get("genres") or "").split(",") if g]

    query = Song.query.filter(Song.is_available.is_(True))
    if search:
        like = f"%{search}%"
        query = query.filter(or_(Song.title.ilike(like), Song.artist.ilike(like)))
    if genres:
        query = query.filter(Song.genre.in_(genres))
    songs = query.order_by(Song.title.asc()).all()
    return jsonify([serialize_song(s) for s in songs])


@songs_bp.get("/api/songs/<int:song_id>")
def get_song(song_id):
    song = _song_or_none(song_id)
    if not song:
        return jsonify({"error": "Song not found"}), 404
    return jsonify(serialize_song(song))


@songs_bp.post("/api/songs")
def create_song():
    """Custom songs typed in by the audience; hidden from browsing by default."""
    payload = request.get_json(silent=True) or {}
    title = str(payload.get("title") or "").strip()
    artist = str(payload.get("artist") or "").strip()
    if not title or not artist:
        return jsonify({"error": "Title and artist are required"}), 400
    genre = str(payload.get("genre") or "").strip() or None

    song = Song(
        title=title,
        artist=artist,
        genre=genre,
        is_available=bool(payload.get("isAvailable", False)),
    )
    db.session.add(song)
    db.session.commit()
    return jsonify(serialize_song(song)), 201


@songs_bp.patch("/api/songs/<int:song_id>")
@dj_pin_required
def update_song(song_id):
    song = _song_or_none(song_id)
    if not song:
        return jsonify({"error": "Song not found"}), 404
    payload = request.get_json(silent=True) or {}
    title = str(payload.get("title") or "").strip()
    artist = str(payload.get("artist") or "").strip()
    # blank fields keep their current value
    if title:
        song.title = title
    if artist:
        song.artist = artist
    db.session.commit()
    return jsonify(serialize_song(song))


@songs_bp.get("/api/genres")
def list_genres():
    rows = (db.session.query(Song.genre)
            .filter(Song.is_available.is_(True), Song.genre.isnot(None))
            .distinct()
            .all())
    return jsonify(sorted(r[0] for r in rows))


@songs_bp.post("/api/sync-google-sheets")
def sync_google_sheets():
    payload = request.get_json(silent=True) or {}
    try:
        result = sync_song_library(payload.get("pin"))
    except SyncError as exc:
        current_app.logger.warning("Library sync failed while %s: %s", exc.stage.value, exc.message)
        return jsonify(exc.to_response()), exc.status_code
    except Exception as exc:
        current_app.logger.exception("Sync error")
        return jsonify({"error": str(exc) or "Unknown error occurred"}), 500
    return jsonify(result.to_response())
