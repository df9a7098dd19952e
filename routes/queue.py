from datetime import datetime

from flask import Blueprint, current_app, jsonify, request

from config import ACTIVE_REQUEST_STATUSES, REQUEST_STATUS_CHOICES, REQUEST_STATUS_TRANSITIONS
from models import db, Song, SongRequest, serialize_song_request
from routes.auth import dj_pin_required

queue_bp = Blueprint('queue', __name__)

# Statuses a request may be created with; "playing" is the DJ's manual play
CREATE_STATUSES = ("pending", "playing")


def _to_int(value) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _has_active_request(song_id: int) -> bool:
    return (SongRequest.query
            .filter(SongRequest.song_id == song_id, SongRequest.status.in_(ACTIVE_REQUEST_STATUSES))
            .first()) is not None


def _next_position() -> int:
    current_max = db.session.query(db.func.max(SongRequest.position)).scalar() or 0
    return current_max + 1


@queue_bp.get("/api/requests")
def list_requests():
    raw = (request.args.get("status") or "").strip()
    statuses = [s for s in raw.split(",") if s] or list(ACTIVE_REQUEST_STATUSES)
    unknown = [s for s in statuses if s not in REQUEST_STATUS_CHOICES]
    if unknown:
        return jsonify({"error": f"Unknown status: {', '.join(unknown)}"}), 400

    rows = (SongRequest.query
            .filter(SongRequest.status.in_(statuses))
            .order_by(SongRequest.position.asc(), SongRequest.created_at.asc())
            .all())
    return jsonify([serialize_song_request(r) for r in rows])


@queue_bp.get("/api/requests/played")
def list_played_requests():
    limit = _to_int(request.args.get("limit")) or 10
    rows = (SongRequest.query
            .filter_by(status="played")
            .order_by(SongRequest.updated_at.desc())
            .limit(max(1, min(limit, 100)))
            .all())
    return jsonify([serialize_song_request(r) for r in rows])


@queue_bp.get("/api/requests/<int:request_id>")
def get_request(request_id):
    req = db.session.get(SongRequest, request_id)
    if not req:
        return jsonify({"error": "Request not found"}), 404
    return jsonify(serialize_song_request(req))


@queue_bp.get("/api/requests/check-duplicate/<int:song_id>")
def check_duplicate(song_id):
    return jsonify({"isDuplicate": _has_active_request(song_id)})


@queue_bp.post("/api/requests")
def create_request():
    payload = request.get_json(silent=True) or {}
    song_id = _to_int(payload.get("songId"))
    username = str(payload.get("requesterUsername") or "").strip()
    status = str(payload.get("status") or "pending").lower()

    if song_id is None or not username:
        return jsonify({"error": "songId and requesterUsername are required"}), 400
    if status not in CREATE_STATUSES:
        return jsonify({"error": "Invalid status."}), 400
    song = db.session.get(Song, song_id)
    if not song:
        return jsonify({"error": "Song not found"}), 404
    if status == "pending" and _has_active_request(song.id):
        return jsonify({"error": "This song is already in the queue.", "isDuplicate": True}), 409

    req = SongRequest(
        song_id=song.id,
        requester_username=username[:120],
        status=status,
        is_tipped=payload.get("isTipped") is True,
        position=_next_position(),
    )
    db.session.add(req)
    db.session.commit()
    current_app.logger.info("New request #%s: %s (%s)", req.id, req.label(), status)
    return jsonify(serialize_song_request(req)), 201


@queue_bp.patch("/api/requests/<int:request_id>")
def update_request_status(request_id):
    req = db.session.get(SongRequest, request_id)
    if not req:
        return jsonify({"error": "Request not found"}), 404
    payload = request.get_json(silent=True) or {}
    status = str(payload.get("status") or "").lower()

    if status not in REQUEST_STATUS_CHOICES:
        return jsonify({"ok": False, "error": "Invalid status."}), 400

    previous_status = req.status
    if status != previous_status:
        if status not in REQUEST_STATUS_TRANSITIONS.get(previous_status, ()):
            msg = f"Cannot move a {previous_status} request to {status}."
            return jsonify({"ok": False, "error": msg}), 409
        req.status = status
        req.updated_at = datetime.utcnow()
        db.session.commit()

    message_map = {
        "next_up": "Request accepted!",
        "playing": "Now playing!",
        "played": "Marked as played",
        "rejected": "Request rejected",
        "pending": "Moved back to pending.",
    }
    return jsonify({
        "ok": True,
        "request": serialize_song_request(req),
        "message": message_map.get(status, f"Marked request as {status}."),
        "previousStatus": previous_status,
    })


@queue_bp.post("/api/requests/reorder")
@dj_pin_required
def reorder_requests():
    payload = request.get_json(silent=True) or {}
    positions = payload.get("positions")
    if not isinstance(positions, list):
        return jsonify({"error": "positions must be a list of {id, position}"}), 400

    updates = {}
    for item in positions:
        if not isinstance(item, dict):
            return jsonify({"error": "positions must be a list of {id, position}"}), 400
        rid = _to_int(item.get("id"))
        pos = _to_int(item.get("position"))
        if rid is None or pos is None:
            return jsonify({"error": "Each position needs an integer id and position"}), 400
        updates[rid] = pos

    rows = SongRequest.query.filter(SongRequest.id.in_(list(updates))).all() if updates else []
    now = datetime.utcnow()
    for row in rows:
        row.position = updates[row.id]
        row.updated_at = now
    db.session.commit()
    missing = sorted(set(updates) - {row.id for row in rows})
    return jsonify({"ok": True, "updated": len(rows), "missing": missing})


@queue_bp.post("/api/requests/clear-played")
@dj_pin_required
def clear_played_requests():
    cleared = SongRequest.query.filter_by(status="played").delete(synchronize_session=False)
    db.session.commit()
    current_app.logger.info("Cleared %d played requests", cleared)
    return jsonify({"ok": True, "cleared": cleared})
