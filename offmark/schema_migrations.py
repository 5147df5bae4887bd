from __future__ import annotations

from sqlalchemy import inspect, text

from offmark.extensions import db


PENDING_BOOKMARK_COLUMNS = {
    "attempt_count": "INTEGER NOT NULL DEFAULT 0",
    "last_error": "TEXT",
}


def add_sync_attempt_columns() -> bool:
    engine = db.engine
    if engine.dialect.name != "sqlite":
        return False

    inspector = inspect(engine)
    if not inspector.has_table("pending_bookmarks"):
        return False

    columns = {
        column["name"] for column in inspector.get_columns("pending_bookmarks")
    }
    missing = [name for name in PENDING_BOOKMARK_COLUMNS if name not in columns]
    if not missing:
        return False

    for name in missing:
        db.session.execute(
            text(
                f"ALTER TABLE pending_bookmarks ADD COLUMN {name} "
                f"{PENDING_BOOKMARK_COLUMNS[name]}"
            )
        )
    db.session.commit()
    return True
