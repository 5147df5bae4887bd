from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from flask import Flask
from sqlalchemy.exc import SQLAlchemyError

from offmark.extensions import db
from offmark.models import PendingBookmark, ReadProgress, Tag
from offmark.services.common import join_tags, parse_tags


class StorageError(Exception):
    pass


@dataclass(frozen=True)
class BookmarkRecord:
    identity: str
    url: str
    title: str
    tags: tuple[str, ...]
    attempt_count: int = 0
    last_error: str | None = None
    created_at: datetime | None = None

    def as_dict(self):
        return {
            "id": self.identity,
            "url": self.url,
            "title": self.title,
            "tags": list(self.tags),
            "attempt_count": self.attempt_count,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class TagRecord:
    name: str
    usage_count: int = 0

    def as_dict(self):
        return {"name": self.name, "usage_count": self.usage_count}


def _to_record(row: PendingBookmark) -> BookmarkRecord:
    return BookmarkRecord(
        identity=row.id,
        url=row.url,
        title=row.title or "",
        tags=tuple(parse_tags(row.tags_text or "")),
        attempt_count=row.attempt_count or 0,
        last_error=row.last_error,
        created_at=row.created_at,
    )


class LocalRecordStore:
    def __init__(self, app: Flask, logger: logging.Logger | None = None):
        self._app = app
        self._lock = threading.RLock()
        self.logger = logger or logging.getLogger(__name__)

    @contextmanager
    def _session(self):
        with self._lock, self._app.app_context():
            try:
                yield db.session
            except SQLAlchemyError as exc:
                db.session.rollback()
                self.logger.warning("Local storage operation failed: %s", exc)
                raise StorageError(str(exc)) from exc

    def upsert_bookmark(self, url: str, title: str = "", tags=None) -> BookmarkRecord:
        url = (url or "").strip()
        if not url:
            raise ValueError("url is required")

        with self._session() as session:
            row = PendingBookmark.query.filter_by(url=url).first()
            if row:
                row.title = title or ""
                row.tags_text = join_tags(tags)
                # A fresh save gives a dead-lettered record another chance.
                row.attempt_count = 0
                row.last_error = None
            else:
                row = PendingBookmark(
                    url=url, title=title or "", tags_text=join_tags(tags)
                )
                session.add(row)
            session.commit()
            self.logger.info("Bookmark saved offline: %s", url)
            return _to_record(row)

    def get_bookmark(self, identity: str) -> BookmarkRecord | None:
        with self._session():
            row = db.session.get(PendingBookmark, identity)
            return _to_record(row) if row else None

    def list_pending_bookmarks(self, max_attempts: int = 0) -> list[BookmarkRecord]:
        with self._session():
            query = PendingBookmark.query
            if max_attempts > 0:
                query = query.filter(PendingBookmark.attempt_count < max_attempts)
            rows = query.order_by(
                PendingBookmark.created_at.asc(), PendingBookmark.id.asc()
            ).all()
            return [_to_record(row) for row in rows]

    def list_dead_letters(self, max_attempts: int) -> list[BookmarkRecord]:
        if max_attempts <= 0:
            return []
        with self._session():
            rows = (
                PendingBookmark.query.filter(
                    PendingBookmark.attempt_count >= max_attempts
                )
                .order_by(PendingBookmark.created_at.asc(), PendingBookmark.id.asc())
                .all()
            )
            return [_to_record(row) for row in rows]

    def count_pending(self, max_attempts: int = 0) -> int:
        with self._session():
            query = PendingBookmark.query
            if max_attempts > 0:
                query = query.filter(PendingBookmark.attempt_count < max_attempts)
            return query.count()

    def delete_bookmark(self, identity: str) -> bool:
        with self._session() as session:
            row = session.get(PendingBookmark, identity)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def mark_sync_failed(self, identity: str, error: str) -> int | None:
        with self._session() as session:
            row = session.get(PendingBookmark, identity)
            if not row:
                return None
            row.attempt_count = (row.attempt_count or 0) + 1
            row.last_error = (error or "")[:1000] or None
            session.commit()
            return row.attempt_count

    def upsert_tags(self, names, usage_counts: dict[str, int] | None = None) -> int:
        clean = list(dict.fromkeys(str(n).strip() for n in names or [] if n))
        clean = [name for name in clean if name]
        if not clean:
            return 0

        usage_counts = usage_counts or {}
        with self._session() as session:
            existing = {
                tag.name for tag in Tag.query.filter(Tag.name.in_(clean)).all()
            }
            inserted = 0
            for name in clean:
                if name in existing:
                    continue
                count = max(0, int(usage_counts.get(name, 0) or 0))
                session.add(Tag(name=name, usage_count=count))
                inserted += 1
            if inserted:
                session.commit()
            return inserted

    def add_tag(self, name: str) -> bool:
        trimmed = (name or "").strip()
        if not trimmed:
            return False
        created = self.upsert_tags([trimmed], usage_counts={trimmed: 1}) == 1
        if not created:
            self.logger.debug("Label '%s' already exists, skipping creation", trimmed)
        return created

    def list_tags(self) -> list[TagRecord]:
        with self._session():
            rows = Tag.query.order_by(Tag.name.asc()).all()
            return [
                TagRecord(name=row.name, usage_count=row.usage_count) for row in rows
            ]

    def get_read_progress(self, bookmark_id: str) -> int | None:
        with self._session():
            row = ReadProgress.query.filter_by(bookmark_id=bookmark_id).first()
            return row.progress if row else None

    def merge_read_progress(self, bookmark_id: str, value: int) -> int:
        """Keep the highest progress seen; lower values never overwrite."""
        value = max(0, min(100, int(value or 0)))
        with self._session() as session:
            row = ReadProgress.query.filter_by(bookmark_id=bookmark_id).first()
            if not row:
                row = ReadProgress(bookmark_id=bookmark_id, progress=value)
                session.add(row)
                session.commit()
            elif value > row.progress:
                row.progress = value
                session.commit()
            return row.progress
