"""Song recognition and lyrics lookups, passed straight through to AudD."""
import requests
from flask import Blueprint, current_app, jsonify, request

import config

lookup_bp = Blueprint('lookup', __name__)

AUDD_RECOGNIZE_URL = "https://api.audd.io/"
AUDD_LYRICS_URL = "https://api.audd.io/findLyrics/"


def _audd_post(url: str, data: dict) -> dict:
    resp = requests.post(url, data={"api_token": config.AUDD_API_TOKEN, **data}, timeout=20)
    if resp.status_code != 200:
        raise RuntimeError(f"AudD API error: {resp.status_code}")
    return resp.json()


def _audd_error(result: dict, default: str) -> str:
    return ((result.get("error") or {}).get("error_message")) or default


@lookup_bp.post("/api/recognize-song")
def recognize_song():
    if not config.AUDD_API_TOKEN:
        return jsonify({
            "error": "Song recognition is not configured. Add AUDD_API_TOKEN to enable this feature."
        }), 503
    payload = request.get_json(silent=True) or {}
    audio_data = payload.get("audioData")
    if not audio_data:
        return jsonify({"error": "Audio data is required"}), 400

    try:
        result = _audd_post(AUDD_RECOGNIZE_URL, {"audio": audio_data, "return": "lyrics,spotify"})
    except (requests.RequestException, RuntimeError, ValueError) as exc:
        current_app.logger.error("Song recognition error: %s", exc)
        return jsonify({"error": "Failed to recognize song"}), 500

    if result.get("status") == "error":
        return jsonify({"error": _audd_error(result, "Recognition failed")}), 400
    match = result.get("result")
    if not match:
        return jsonify({"found": False, "message": "No song recognized"})
    return jsonify({
        "found": True,
        "song": {
            "title": match.get("title"),
            "artist": match.get("artist"),
            "album": match.get("album"),
            "releaseDate": match.get("release_date"),
            "lyrics": (match.get("lyrics") or {}).get("lyrics"),
            "spotify": match.get("spotify"),
        },
    })


@lookup_bp.post("/api/get-lyrics")
def get_lyrics():
    if not config.AUDD_API_TOKEN:
        return jsonify({
            "error": "Lyrics lookup is not configured. Add AUDD_API_TOKEN to enable this feature."
        }), 503
    payload = request.get_json(silent=True) or {}
    title = str(payload.get("title") or "").strip()
    artist = str(payload.get("artist") or "").strip()
    if not title or not artist:
        return jsonify({"error": "Title and artist are required"}), 400

    try:
        result = _audd_post(AUDD_LYRICS_URL, {"q": f"{artist} {title}"})
    except (requests.RequestException, RuntimeError, ValueError) as exc:
        current_app.logger.error("Lyrics lookup error: %s", exc)
        return jsonify({"error": "Failed to get lyrics"}), 500

    if result.get("status") == "error":
        return jsonify({"error": _audd_error(result, "Lyrics lookup failed")}), 400
    matches = result.get("result") or []
    if not matches:
        return jsonify({"found": False, "message": "No lyrics found"})
    match = matches[0]
    return jsonify({
        "found": True,
        "lyrics": {
            "title": match.get("title"),
            "artist": match.get("artist"),
            "lyrics": match.get("lyrics"),
        },
    })
