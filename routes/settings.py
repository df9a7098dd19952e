import re

from flask import Blueprint, current_app, jsonify, request

from config import ALLOWED_SETTING_KEYS, PUBLIC_SETTING_KEYS
from models import get_settings, update_setting
from routes.auth import dj_pin_required

settings_bp = Blueprint('settings', __name__)

_PIN_RE = re.compile(r"^\d{4}$")


@settings_bp.get("/api/settings")
def public_settings():
    # dj_pin never leaves the server
    all_settings = get_settings()
    return jsonify({k: all_settings[k] for k in PUBLIC_SETTING_KEYS if k in all_settings})


@settings_bp.post("/api/update-settings")
@dj_pin_required
def update_settings():
    payload = request.get_json(silent=True) or {}
    key = payload.get("key")
    value = payload.get("value")

    if not key or key not in ALLOWED_SETTING_KEYS:
        return jsonify({"error": "Invalid setting key"}), 400
    if not isinstance(value, str):
        return jsonify({"error": "Value is required and must be a string"}), 400
    if key == "dj_pin" and not _PIN_RE.match(value):
        return jsonify({"error": "DJ PIN must be 4 digits"}), 400

    update_setting(key, value.strip() if key != "dj_pin" else value)
    current_app.logger.info("Setting %r updated", key)
    return jsonify({"success": True})
