from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

from config import DEFAULT_SETTINGS

db = SQLAlchemy()

# --- Song model ---
class Song(db.Model):
    __tablename__ = "songs"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    artist = db.Column(db.String(300), nullable=False)
    genre = db.Column(db.String(200), nullable=True, index=True)  # derived from the sheet tab name
    # False for audience-submitted custom songs; they never show up in browsing
    is_available = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    requests = db.relationship(
        "SongRequest",
        back_populates="song",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Song id={self.id} title={self.title!r} artist={self.artist!r} genre={self.genre!r}>"

# --- Requests queue ---
class SongRequest(db.Model):
    __tablename__ = "song_requests"

    id = db.Column(db.Integer, primary_key=True)
    song_id = db.Column(db.Integer, db.ForeignKey("songs.id", ondelete="CASCADE"), nullable=False, index=True)
    requester_username = db.Column(db.String(120), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    is_tipped = db.Column(db.Boolean, nullable=False, default=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    song = db.relationship("Song", back_populates="requests", lazy="joined")

    def label(self) -> str:
        if self.song:
            return f"{self.song.title} - {self.song.artist}"
        return "(Unknown song)"

# --- Key/value settings ---
class Setting(db.Model):
    __tablename__ = "settings"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(80), unique=True, nullable=False)
    value = db.Column(db.Text, nullable=False, default="")
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


def get_setting(key: str) -> str | None:
    row = Setting.query.filter_by(key=key).first()
    return row.value if row else None


def get_settings() -> dict:
    return {row.key: row.value for row in Setting.query.all()}


def update_setting(key: str, value: str) -> None:
    row = Setting.query.filter_by(key=key).first()
    if row:
        row.value = value
        row.updated_at = datetime.utcnow()
    else:
        db.session.add(Setting(key=key, value=value))
    db.session.commit()


def initialize_default_settings() -> list[str]:
    """Insert any missing default settings. Returns the keys that were created."""
    existing = {row.key for row in Setting.query.all()}
    created = []
    for key, value in DEFAULT_SETTINGS.items():
        if key not in existing:
            db.session.add(Setting(key=key, value=value))
            created.append(key)
    if created:
        db.session.commit()
    return created


def serialize_song(song: "Song") -> dict:
    return {
        "id": song.id,
        "title": song.title,
        "artist": song.artist,
        "genre": song.genre,
        "isAvailable": song.is_available,
        "createdAt": song.created_at.isoformat() if song.created_at else None,
        "updatedAt": song.updated_at.isoformat() if song.updated_at else None,
    }


def serialize_song_request(req: "SongRequest") -> dict:
    """Return a compact dict for the audience queue and the DJ console."""
    song = req.song
    return {
        "id": req.id,
        "songId": req.song_id,
        "requesterUsername": req.requester_username,
        "status": req.status,
        "statusLabel": req.status.replace("_", " ").title(),
        "label": req.label(),
        "isTipped": req.is_tipped,
        "position": req.position,
        "song": serialize_song(song) if song else None,
        "createdAt": req.created_at.isoformat() if req.created_at else None,
        "updatedAt": req.updated_at.isoformat() if req.updated_at else None,
    }
