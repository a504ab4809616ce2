from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from .dateutils import format_timestamp, parse_timestamp, utcnow
from .db import Base


class Timestamp(TypeDecorator):
    """UTC timestamp stored as canonical ISO text, parsed leniently on read.

    Unparsable input is stored as NULL rather than as raw text.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        parsed = parse_timestamp(value)
        return format_timestamp(parsed) if parsed is not None else None

    def process_result_value(self, value, dialect):
        return parse_timestamp(value)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    added_at: Mapped[datetime | None] = mapped_column(Timestamp, default=utcnow)


class Video(Base):
    __tablename__ = "videos"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    is_short: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    channel_name: Mapped[str | None] = mapped_column(Text)
    channel_id: Mapped[str | None] = mapped_column(Text)
    published_date: Mapped[datetime | None] = mapped_column(Timestamp)
    stored_at: Mapped[datetime | None] = mapped_column(Timestamp, default=utcnow)
    duration: Mapped[int | None] = mapped_column(Integer)
    view_count: Mapped[int | None] = mapped_column(Integer)

    __table_args__ = (
        Index("idx_videos_channel", "channel_id"),
        Index("idx_videos_published", "published_date"),
    )


class Watched(Base):
    __tablename__ = "watched"

    video_id: Mapped[str] = mapped_column(Text, primary_key=True)
    watched_at: Mapped[datetime | None] = mapped_column(Timestamp, default=utcnow)


class ChannelView(Base):
    __tablename__ = "channel_views"

    channel_id: Mapped[str] = mapped_column(Text, primary_key=True)
    last_viewed_at: Mapped[datetime | None] = mapped_column(Timestamp, default=utcnow)


class Setting(Base):
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    # JSON-encoded
    value: Mapped[str] = mapped_column(Text, nullable=False)


class Migration(Base):
    __tablename__ = "migrations"

    name: Mapped[str] = mapped_column(Text, primary_key=True)
    applied_at: Mapped[datetime | None] = mapped_column(Timestamp, default=utcnow)
