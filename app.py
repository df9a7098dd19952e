import logging
from io import BytesIO

import qrcode
from dotenv import load_dotenv
from flask import Flask, jsonify, request, send_file, url_for
from markupsafe import escape
from sqlalchemy import text

load_dotenv()

from config import *

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = Flask(__name__)

app.config["SECRET_KEY"] = FLASK_SECRET_KEY
app.url_map.strict_slashes = False

from models import db, get_setting, initialize_default_settings

# --- Database config (uses DATABASE_URL if set; else SQLite) ---
db_url = SQLALCHEMY_DATABASE_URI

# Render/Railway sometimes prefix with postgres:// – SQLAlchemy accepts postgresql://
if db_url.startswith("postgres://"):
    db_url = db_url.replace("postgres://", "postgresql+psycopg://", 1)
elif db_url.startswith("postgresql://") and "+psycopg" not in db_url:
    db_url = db_url.replace("postgresql://", "postgresql+psycopg://", 1)

app.config["SQLALCHEMY_DATABASE_URI"] = db_url
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

db.init_app(app)

from routes.auth import auth_bp
from routes.lookup import lookup_bp
from routes.queue import queue_bp
from routes.settings import settings_bp
from routes.songs import songs_bp

app.register_blueprint(auth_bp)
app.register_blueprint(songs_bp)
app.register_blueprint(queue_bp)
app.register_blueprint(settings_bp)
app.register_blueprint(lookup_bp)


def audience_url() -> str:
    """Where guests browse the library; PUBLIC_BASE_URL wins over the request host."""
    if PUBLIC_BASE_URL:
        return PUBLIC_BASE_URL.rstrip("/") + "/"
    return url_for("home", _external=True)


@app.errorhandler(404)
def not_found(e):
    if request.path.startswith("/api/"):
        return jsonify({"error": "Not found"}), 404
    return "Not found", 404


@app.errorhandler(405)
def method_not_allowed(e):
    if request.path.startswith("/api/"):
        return jsonify({"error": "Method not allowed"}), 405
    return "Method not allowed", 405


@app.get("/")
def home():
    event_name = get_setting("event_name") or "VibeQueue"
    return f"""
    <h1>{escape(event_name)}</h1>
    <p>Scan to browse the song library and send a request.</p>
    <p><img src="{url_for('audience_qr')}" alt="Request QR code" width="240" height="240"></p>
    <p><a href="{url_for('songs.list_songs')}">Song library (JSON)</a> ·
       <a href="{url_for('queue.list_requests')}">Live queue (JSON)</a></p>
    """


@app.get("/qr.png")
def audience_qr():
    # generate QR as PNG in-memory
    buf = BytesIO()
    img = qrcode.make(audience_url())
    img.save(buf, format="PNG")
    buf.seek(0)
    return send_file(
        buf,
        mimetype="image/png",
        as_attachment=False,
        download_name="request-qr.png",
        max_age=0,
    )


@app.get("/healthz")
def healthz():
    # quick DB ping; never crash health
    try:
        db.session.execute(text("SELECT 1"))
        db_ok = True
    except Exception:
        db_ok = False
    return (f"ok | db={ 'up' if db_ok else 'down' }", 200)


def ensure_schema():
    """Create missing tables and default settings, idempotently."""
    with app.app_context():
        db.create_all()
        created = initialize_default_settings()
        for key in created:
            app.logger.info("Initialized default setting: %s", key)

# single init call
def _init_schema_on_import():
    try:
        ensure_schema()
    except Exception as e:
        app.logger.warning("ensure_schema on import warning: %s", e)

_init_schema_on_import()

if __name__ == "__main__":
    app.run(debug=True, port=5055)
