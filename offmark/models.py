import uuid
from datetime import datetime, timezone

from offmark.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_identity() -> str:
    return uuid.uuid4().hex


class PendingBookmark(db.Model):
    """A bookmark saved while the server was unreachable, waiting for sync."""

    __tablename__ = "pending_bookmarks"

    id = db.Column(db.String(32), primary_key=True, default=new_identity)
    url = db.Column(db.Text, nullable=False, unique=True)
    title = db.Column(db.String(512), nullable=False, default="")
    tags_text = db.Column(db.Text, nullable=False, default="")
    attempt_count = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (db.Index("ix_pending_created", "created_at", "id"),)


class Tag(db.Model):
    __tablename__ = "tags"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True, index=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)


class ReadProgress(db.Model):
    __tablename__ = "read_progress"

    id = db.Column(db.Integer, primary_key=True)
    bookmark_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    progress = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
