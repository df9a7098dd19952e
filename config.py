import os

# --- Request queue ---

REQUEST_STATUS_CHOICES = ("pending", "next_up", "playing", "played", "rejected")
ACTIVE_REQUEST_STATUSES = ("pending", "next_up", "playing")

# DJ console flow: accept -> next_up, start -> playing, finish -> played
REQUEST_STATUS_TRANSITIONS = {
    "pending": ("next_up", "rejected", "playing"),
    "next_up": ("playing", "pending", "rejected"),
    "playing": ("played", "next_up"),
    "rejected": ("pending",),
    "played": (),
}

# --- Settings store ---

DEFAULT_SETTINGS = {
    "dj_pin": "1234",
    "event_name": "VibeQueue",
    "venmo_handle": "",
    "paypal_handle": "",
    "cashapp_handle": "",
    "google_sheet_url": "",
}
ALLOWED_SETTING_KEYS = tuple(DEFAULT_SETTINGS)
PUBLIC_SETTING_KEYS = ("event_name", "venmo_handle", "paypal_handle", "cashapp_handle", "google_sheet_url")

# Database config
BASE_DIR = os.path.abspath(os.path.dirname(__file__))
DEFAULT_SQLITE = "sqlite:///" + os.path.join(BASE_DIR, "vibequeue.db")
SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', DEFAULT_SQLITE)

# --- Google Sheets library sync ---

SHEETS_TIMEOUT = float(os.getenv("SHEETS_TIMEOUT", "10"))
# Optional comma-separated list of tab names the DJ's sheet is expected to have
SHEET_TAB_NAMES = [t.strip() for t in os.getenv("SHEET_TAB_NAMES", "").split(",") if t.strip()]
SHEET_PROBE_MAX_GID = int(os.getenv("SHEET_PROBE_MAX_GID", "300"))
SHEET_PROBE_MAX_MISSES = int(os.getenv("SHEET_PROBE_MAX_MISSES", "50"))
SYNC_INSERT_BATCH_SIZE = int(os.getenv("SYNC_INSERT_BATCH_SIZE", "50"))
SYNC_STRICT_REPLACE = os.getenv("SYNC_STRICT_REPLACE", "1").lower() not in ("0", "false", "no")

# Other configs
AUDD_API_TOKEN = os.getenv("AUDD_API_TOKEN")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
FLASK_SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret")
