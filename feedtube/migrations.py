"""Named, run-once schema migrations and the legacy JSON import.

The ``migrations`` table is the ledger: a migration whose name is recorded
there is never applied again. Column additions tolerate the column already
existing, since a freshly created schema has every column from the start.
"""
from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Any, Callable

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection
from sqlalchemy.exc import OperationalError

from .dateutils import format_timestamp, parse_timestamp, utcnow
from .models import ChannelView, Migration, Setting, Subscription, Video, Watched

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_FILE = "subscriptions.json"
WATCHED_FILE = "watched.json"
VIDEOS_FILE = "videos.json"


def adopt_legacy_database(path: Path, legacy_path: Path) -> bool:
    """Copy a database from the old location when none exists at ``path``."""
    if path.exists() or not legacy_path.exists():
        return False
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(legacy_path, path)
    except OSError as exc:
        logger.warning("Could not copy legacy database %s: %s", legacy_path, exc)
        return False
    logger.info("Adopted legacy database from %s", legacy_path)
    return True


def _add_columns(conn: Connection, table: str, columns: list[sa.Column]) -> None:
    existing = {c["name"] for c in sa.inspect(conn).get_columns(table)}
    ops = Operations(MigrationContext.configure(conn))
    for column in columns:
        if column.name in existing:
            continue
        try:
            ops.add_column(table, column)
        except OperationalError as exc:
            if "duplicate column" not in str(exc).lower():
                raise


def add_video_metadata(conn: Connection, legacy_dir: Path) -> None:
    _add_columns(
        conn,
        "videos",
        [sa.Column("duration", sa.Integer()), sa.Column("view_count", sa.Integer())],
    )


def _read_json(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Skipping unreadable legacy file %s: %s", path, exc)
        return None
    return data if isinstance(data, dict) else None


def _entries(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _import_subscriptions_file(conn: Connection, data: dict[str, Any]) -> None:
    for sub in data.get("subscriptions") or []:
        if not isinstance(sub, dict) or not sub.get("id") or not sub.get("url"):
            continue
        conn.execute(
            sqlite_insert(Subscription.__table__)
            .values(
                id=str(sub["id"]),
                name=str(sub.get("name") or sub["id"]),
                url=str(sub["url"]),
                added_at=sub.get("addedAt") or utcnow(),
            )
            .on_conflict_do_nothing()
        )
    for key, value in _entries(data, "settings").items():
        stmt = sqlite_insert(Setting.__table__).values(key=key, value=json.dumps(value))
        conn.execute(
            stmt.on_conflict_do_update(index_elements=["key"], set_={"value": stmt.excluded.value})
        )
    for channel_id, ts in _entries(data, "channelLastViewed").items():
        stmt = sqlite_insert(ChannelView.__table__).values(channel_id=channel_id, last_viewed_at=ts)
        conn.execute(
            stmt.on_conflict_do_update(
                index_elements=["channel_id"],
                set_={"last_viewed_at": stmt.excluded.last_viewed_at},
            )
        )


def _import_watched_file(conn: Connection, data: dict[str, Any]) -> None:
    for video_id, entry in _entries(data, "videos").items():
        watched_at = entry.get("watchedAt") if isinstance(entry, dict) else None
        conn.execute(
            sqlite_insert(Watched.__table__)
            .values(video_id=video_id, watched_at=watched_at or utcnow())
            .on_conflict_do_nothing()
        )


def _import_videos_file(conn: Connection, data: dict[str, Any]) -> None:
    for entry in _entries(data, "videos").values():
        if not isinstance(entry, dict) or not entry.get("id"):
            continue
        conn.execute(
            sqlite_insert(Video.__table__)
            .values(
                id=str(entry["id"]),
                title=str(entry.get("title") or ""),
                url=str(entry.get("url") or f"https://www.youtube.com/watch?v={entry['id']}"),
                is_short=bool(entry.get("isShort")),
                channel_name=entry.get("channelName"),
                channel_id=entry.get("channelId"),
                published_date=entry.get("publishedDate"),
                stored_at=entry.get("storedAt") or utcnow(),
            )
            .on_conflict_do_nothing()
        )


# Table -> (key column, timestamp columns)
_TIMESTAMP_COLUMNS = {
    "videos": ("id", ("published_date", "stored_at")),
    "subscriptions": ("id", ("added_at",)),
    "watched": ("video_id", ("watched_at",)),
    "channel_views": ("channel_id", ("last_viewed_at",)),
}


def normalize_timestamps(conn: Connection, legacy_dir: Path) -> None:
    """Rewrite stored timestamps into the canonical text form.

    Older databases hold empty strings for missing dates and a mix of
    RFC 3339 and ``CURRENT_TIMESTAMP`` text. Aggregates compare the stored text,
    so every value must share one fixed-width form; unparsable values become
    NULL.
    """
    for table, (key, columns) in _TIMESTAMP_COLUMNS.items():
        for column in columns:
            rows = conn.execute(
                sa.text(f"SELECT {key}, {column} FROM {table} WHERE {column} IS NOT NULL")
            ).all()
            updates = []
            for row_key, raw in rows:
                parsed = parse_timestamp(raw)
                value = format_timestamp(parsed) if parsed is not None else None
                if value != raw:
                    updates.append({"key": row_key, "value": value})
            if updates:
                conn.execute(
                    sa.text(f"UPDATE {table} SET {column} = :value WHERE {key} = :key"), updates
                )
                logger.info("Normalized %d values of %s.%s", len(updates), table, column)


_LEGACY_FILES: list[tuple[str, Callable[[Connection, dict[str, Any]], None]]] = [
    (SUBSCRIPTIONS_FILE, _import_subscriptions_file),
    (WATCHED_FILE, _import_watched_file),
    (VIDEOS_FILE, _import_videos_file),
]


def import_legacy_json(conn: Connection, legacy_dir: Path) -> None:
    """Best-effort import of the old flat-file format.

    Missing or malformed files are skipped. Files that were imported are moved
    into ``backup/`` next to them.
    """
    imported: list[Path] = []
    for filename, importer in _LEGACY_FILES:
        path = legacy_dir / filename
        data = _read_json(path)
        if data is None:
            continue
        importer(conn, data)
        imported.append(path)
        logger.info("Imported legacy file %s", path)

    if not imported:
        return
    backup_dir = legacy_dir / "backup"
    try:
        backup_dir.mkdir(parents=True, exist_ok=True)
        for path in imported:
            path.rename(backup_dir / path.name)
    except OSError as exc:
        logger.warning("Could not move legacy files to %s: %s", backup_dir, exc)


MIGRATIONS: list[tuple[str, Callable[[Connection, Path], None]]] = [
    ("json_import", import_legacy_json),
    ("add_video_metadata", add_video_metadata),
    ("normalize_timestamps", normalize_timestamps),
]


def run_migrations(conn: Connection, legacy_dir: Path) -> list[str]:
    """Apply every migration not yet in the ledger; returns the names applied."""
    done = set(conn.execute(select(Migration.name)).scalars().all())
    applied: list[str] = []
    for name, migrate in MIGRATIONS:
        if name in done:
            continue
        migrate(conn, Path(legacy_dir))
        conn.execute(
            sqlite_insert(Migration.__table__)
            .values(name=name, applied_at=utcnow())
            .on_conflict_do_nothing()
        )
        applied.append(name)
    return applied
