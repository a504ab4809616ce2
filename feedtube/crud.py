from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence, TypeVar

from pydantic import ValidationError
from sqlalchemy import delete, func, or_, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .dateutils import utcnow
from .errors import Conflict, NotFound
from .models import ChannelView, Setting, Subscription, Video, Watched
from .schemas import ChannelStats, SubscriptionIn, UserSettings, VideoIn

logger = logging.getLogger(__name__)

# SQLite's historical host-parameter limit is 999; stay under it per statement
MAX_BOUND_PARAMS = 900
PAGE_SIZE_MAX = 1000
_VIDEO_COLUMNS = 10

# Alias (as stored) -> UserSettings field
SETTING_KEYS = {
    "player": "player",
    "videosPerChannel": "videos_per_channel",
    "hideShorts": "hide_shorts",
}

T = TypeVar("T")


@dataclass
class VideoPage:
    total: int
    page: int
    page_size: int
    items: list[Video] = field(default_factory=list)


def bounded_ids(ids: Iterable[str]) -> list[str]:
    """De-duplicate ``ids`` for use as bound parameters of one statement.

    Raises ValueError if the list would exceed ``MAX_BOUND_PARAMS``.
    """
    unique = list(dict.fromkeys(ids))
    if len(unique) > MAX_BOUND_PARAMS:
        raise ValueError(f"too many ids for one query ({len(unique)} > {MAX_BOUND_PARAMS})")
    return unique


def _chunks(items: Sequence[T], size: int) -> Iterable[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


# ── Subscriptions ──────────────────────────────────────────


async def add_subscription(session: AsyncSession, sub: SubscriptionIn) -> Subscription:
    existing = await session.scalar(
        select(Subscription.id)
        .where(or_(Subscription.id == sub.id, Subscription.url == sub.url))
        .limit(1)
    )
    if existing is not None:
        raise Conflict(f"Subscription already exists: {sub.id}")
    row = Subscription(id=sub.id, name=sub.name, url=sub.url)
    session.add(row)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise Conflict(f"Subscription already exists: {sub.id}") from exc
    return row


async def remove_subscription(session: AsyncSession, channel_id: str) -> None:
    result = await session.execute(delete(Subscription).where(Subscription.id == channel_id))
    if not result.rowcount:
        raise NotFound(f"Subscription not found: {channel_id}")


async def get_subscription(session: AsyncSession, channel_id: str) -> Subscription:
    row = await session.get(Subscription, channel_id)
    if row is None:
        raise NotFound(f"Subscription not found: {channel_id}")
    return row


async def list_subscriptions(session: AsyncSession) -> list[Subscription]:
    rows = await session.execute(
        select(Subscription).order_by(func.lower(Subscription.name), Subscription.id)
    )
    return list(rows.scalars().all())


# ── Videos ─────────────────────────────────────────────────

# Newest first; undated rows last; id keeps pages disjoint between equal dates
_NEWEST_FIRST = (Video.published_date.is_(None), Video.published_date.desc(), Video.id)


def _video_row(v: VideoIn | Mapping[str, Any]) -> dict[str, Any]:
    if not isinstance(v, VideoIn):
        v = VideoIn.model_validate(v)
    return {
        "id": v.id,
        "title": v.title,
        "url": v.url,
        "is_short": v.is_short,
        "channel_name": v.channel_name,
        "channel_id": v.channel_id,
        "published_date": v.published_date,
        "duration": v.duration,
        "view_count": v.view_count,
    }


def _merge_rows(old: dict[str, Any], new: dict[str, Any]) -> dict[str, Any]:
    merged = dict(new)
    for key in ("published_date", "duration", "view_count"):
        if merged[key] is None:
            merged[key] = old[key]
    merged["is_short"] = bool(old["is_short"] or new["is_short"])
    return merged


async def upsert_videos(session: AsyncSession, videos: Sequence[VideoIn | Mapping[str, Any]]) -> int:
    """Insert or update videos by id.

    Title, url and channel fields take the incoming value. Duration, view
    count and published date keep the stored value unless the incoming one is
    non-null, and a video once classified as short stays short.
    Returns the number of rows touched.
    """
    if not videos:
        return 0

    merged: dict[str, dict[str, Any]] = {}
    for v in videos:
        row = _video_row(v)
        if row["id"] in merged:
            row = _merge_rows(merged[row["id"]], row)
        merged[row["id"]] = row
    rows = list(merged.values())

    now = utcnow()
    for chunk in _chunks(rows, MAX_BOUND_PARAMS // _VIDEO_COLUMNS):
        stmt = sqlite_insert(Video).values([{**r, "stored_at": now} for r in chunk])
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[Video.id],
            set_={
                "title": excluded.title,
                "url": excluded.url,
                "channel_name": excluded.channel_name,
                "channel_id": excluded.channel_id,
                "is_short": or_(excluded.is_short, Video.is_short),
                "published_date": func.coalesce(excluded.published_date, Video.published_date),
                "duration": func.coalesce(excluded.duration, Video.duration),
                "view_count": func.coalesce(excluded.view_count, Video.view_count),
            },
        )
        await session.execute(stmt)
    return len(rows)


async def get_videos(session: AsyncSession, channel_id: str) -> list[Video]:
    rows = await session.execute(
        select(Video).where(Video.channel_id == channel_id).order_by(*_NEWEST_FIRST)
    )
    return list(rows.scalars().all())


async def get_videos_paginated(
    session: AsyncSession,
    channel_ids: Iterable[str] | None = None,
    page: int = 0,
    page_size: int = 100,
) -> VideoPage:
    page_size = max(1, min(page_size, PAGE_SIZE_MAX))
    page = max(page, 0)

    where = []
    if channel_ids is not None:
        ids = bounded_ids(channel_ids)
        if not ids:
            return VideoPage(total=0, page=page, page_size=page_size)
        where.append(Video.channel_id.in_(ids))

    total = await session.scalar(select(func.count()).select_from(Video).where(*where))
    rows = await session.execute(
        select(Video)
        .where(*where)
        .order_by(*_NEWEST_FIRST)
        .offset(page * page_size)
        .limit(page_size)
    )
    return VideoPage(
        total=int(total or 0), page=page, page_size=page_size, items=list(rows.scalars().all())
    )


async def get_enriched_ids(session: AsyncSession, channel_id: str) -> set[str]:
    """Ids of a channel's videos whose metadata has already been fetched."""
    rows = await session.execute(
        select(Video.id).where(Video.channel_id == channel_id, Video.duration.is_not(None))
    )
    return set(rows.scalars().all())


# ── Watched ────────────────────────────────────────────────


async def mark_watched(session: AsyncSession, video_id: str) -> None:
    await session.execute(
        sqlite_insert(Watched).values(video_id=video_id, watched_at=utcnow()).on_conflict_do_nothing()
    )


async def is_watched(session: AsyncSession, video_id: str) -> bool:
    return await session.get(Watched, video_id) is not None


async def get_watched_ids(session: AsyncSession) -> set[str]:
    rows = await session.execute(select(Watched.video_id))
    return set(rows.scalars().all())


async def get_watched_among(session: AsyncSession, video_ids: Iterable[str]) -> set[str]:
    ids = list(dict.fromkeys(video_ids))
    watched: set[str] = set()
    for chunk in _chunks(ids, MAX_BOUND_PARAMS):
        rows = await session.execute(select(Watched.video_id).where(Watched.video_id.in_(chunk)))
        watched.update(rows.scalars().all())
    return watched


async def toggle_watched(session: AsyncSession, video_id: str) -> bool:
    """Flip the watched mark; returns the new state."""
    result = await session.execute(delete(Watched).where(Watched.video_id == video_id))
    if result.rowcount:
        return False
    await session.execute(sqlite_insert(Watched).values(video_id=video_id, watched_at=utcnow()))
    return True


async def mark_many_watched(session: AsyncSession, video_ids: Iterable[str]) -> int:
    """Mark ids watched; returns how many marks were newly inserted."""
    ids = list(dict.fromkeys(video_ids))
    inserted = 0
    for chunk in _chunks(ids, MAX_BOUND_PARAMS):
        existing = await get_watched_among(session, chunk)
        now = utcnow()
        to_insert = [{"video_id": i, "watched_at": now} for i in chunk if i not in existing]
        if not to_insert:
            continue
        await session.execute(sqlite_insert(Watched).values(to_insert).on_conflict_do_nothing())
        inserted += len(to_insert)
    return inserted


# ── Channel views & aggregates ─────────────────────────────


async def update_channel_last_viewed(
    session: AsyncSession, channel_id: str, at: datetime | None = None
) -> None:
    await mark_all_channels_viewed(session, [channel_id], at=at)


async def mark_all_channels_viewed(
    session: AsyncSession, channel_ids: Iterable[str], at: datetime | None = None
) -> None:
    ids = list(dict.fromkeys(channel_ids))
    if not ids:
        return
    at = at or utcnow()
    for chunk in _chunks(ids, MAX_BOUND_PARAMS // 2):
        stmt = sqlite_insert(ChannelView).values(
            [{"channel_id": i, "last_viewed_at": at} for i in chunk]
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ChannelView.channel_id],
            set_={"last_viewed_at": stmt.excluded.last_viewed_at},
        )
        await session.execute(stmt)


async def get_channel_last_viewed(session: AsyncSession, channel_id: str) -> datetime | None:
    row = await session.get(ChannelView, channel_id)
    return row.last_viewed_at if row is not None else None


def _subscribed_videos(*columns, hide_shorts: bool):
    # Inner join: videos of removed channels drop out of every aggregate
    stmt = select(*columns).join(Subscription, Subscription.id == Video.channel_id)
    if hide_shorts:
        stmt = stmt.where(Video.is_short.is_(False))
    return stmt


async def new_video_counts(session: AsyncSession, hide_shorts: bool = False) -> dict[str, int]:
    """Per channel, videos published after the channel was last viewed.

    A channel never viewed counts every dated video as new.
    """
    stmt = (
        _subscribed_videos(Video.channel_id, func.count(), hide_shorts=hide_shorts)
        .outerjoin(ChannelView, ChannelView.channel_id == Video.channel_id)
        .where(
            Video.published_date.is_not(None),
            or_(
                ChannelView.last_viewed_at.is_(None),
                Video.published_date > ChannelView.last_viewed_at,
            ),
        )
        .group_by(Video.channel_id)
    )
    rows = await session.execute(stmt)
    return {channel_id: int(count) for channel_id, count in rows.all()}


async def channel_stats(session: AsyncSession, hide_shorts: bool = False) -> dict[str, ChannelStats]:
    stmt = _subscribed_videos(
        Video.channel_id, func.count(), func.max(Video.published_date), hide_shorts=hide_shorts
    ).group_by(Video.channel_id)
    rows = await session.execute(stmt)
    return {
        channel_id: ChannelStats(count=int(count), latest_published_date=latest)
        for channel_id, count, latest in rows.all()
    }


async def fully_watched_channels(session: AsyncSession, hide_shorts: bool = False) -> set[str]:
    total = func.count(Video.id)
    watched = func.count(Watched.video_id)
    stmt = (
        _subscribed_videos(Video.channel_id, hide_shorts=hide_shorts)
        .outerjoin(Watched, Watched.video_id == Video.id)
        .group_by(Video.channel_id)
        .having(total > 0, total == watched)
    )
    rows = await session.execute(stmt)
    return set(rows.scalars().all())


# ── Settings ───────────────────────────────────────────────


async def get_user_settings(session: AsyncSession) -> UserSettings:
    """Stored settings merged over defaults; undecodable values are ignored."""
    settings = UserSettings()
    rows = await session.execute(select(Setting).where(Setting.key.in_(list(SETTING_KEYS))))
    for row in rows.scalars().all():
        try:
            value = json.loads(row.value)
            settings = UserSettings.model_validate(
                {**settings.model_dump(), SETTING_KEYS[row.key]: value}
            )
        except (ValueError, ValidationError):
            logger.warning("Ignoring invalid value for setting %s: %r", row.key, row.value)
    return settings


async def set_user_setting(session: AsyncSession, key: str, value: Any) -> None:
    """Store ``value`` JSON-encoded. Field names are stored under their alias."""
    aliases = {f: alias for alias, f in SETTING_KEYS.items()}
    key = aliases.get(key, key)
    stmt = sqlite_insert(Setting).values(key=key, value=json.dumps(value))
    stmt = stmt.on_conflict_do_update(
        index_elements=[Setting.key], set_={"value": stmt.excluded.value}
    )
    await session.execute(stmt)
