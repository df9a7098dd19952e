import functools
import secrets

from flask import Blueprint, jsonify, request

from models import get_setting

auth_bp = Blueprint('auth', __name__)


def dj_pin_matches(pin) -> bool:
    """Compare a submitted PIN with the stored ``dj_pin`` setting."""
    stored = get_setting("dj_pin")
    if not stored or not pin or not isinstance(pin, str):
        return False
    return secrets.compare_digest(stored.encode("utf-8"), pin.encode("utf-8"))


def dj_pin_required(view):
    """Reject the call unless the JSON body carries the DJ PIN."""
    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        payload = request.get_json(silent=True) or {}
        pin = payload.get("pin")
        if not pin or not isinstance(pin, str):
            return jsonify({"error": "DJ PIN is required"}), 401
        if not dj_pin_matches(pin):
            return jsonify({"error": "Invalid DJ PIN"}), 401
        return view(*args, **kwargs)
    return wrapper


@auth_bp.post("/api/verify-pin")
def verify_pin():
    payload = request.get_json(silent=True) or {}
    pin = payload.get("pin")
    if not pin or not isinstance(pin, str):
        return jsonify({"valid": False, "error": "PIN is required"}), 400
    return jsonify({"valid": dj_pin_matches(pin)})
