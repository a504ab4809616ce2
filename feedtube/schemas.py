from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .dateutils import format_duration, format_views, relative_date


class SubscriptionIn(BaseModel):
    id: str
    name: str
    url: str


class SubscriptionOut(SubscriptionIn):
    model_config = ConfigDict(from_attributes=True)

    added_at: Optional[datetime] = None


class SubscriptionCreate(BaseModel):
    url: str


class ChannelInfo(BaseModel):
    id: str
    name: str
    url: str


class VideoIn(BaseModel):
    id: str
    title: str
    url: str
    is_short: bool = False
    channel_name: Optional[str] = None
    channel_id: Optional[str] = None
    published_date: Optional[datetime] = None
    duration: Optional[int] = None
    view_count: Optional[int] = Field(default=None, ge=0)


class VideoOut(VideoIn):
    model_config = ConfigDict(from_attributes=True)

    stored_at: Optional[datetime] = None
    watched: bool = False

    @computed_field
    @property
    def relative_date(self) -> str:
        return relative_date(self.published_date)

    @computed_field
    @property
    def duration_string(self) -> str:
        return format_duration(self.duration)

    @computed_field
    @property
    def views(self) -> str:
        return format_views(self.view_count)


class PaginatedVideos(BaseModel):
    total: int
    page: int
    page_size: int
    next_page: int | None = None
    prev_page: int | None = None
    items: list[VideoOut]


class ChannelStats(BaseModel):
    count: int
    latest_published_date: Optional[datetime] = None


class ChannelSummary(SubscriptionOut):
    count: int = 0
    new_count: int = 0
    latest_published_date: Optional[datetime] = None
    fully_watched: bool = False


class ItemMetadata(BaseModel):
    """One record from the metadata provider."""

    id: str
    title: str = ""
    url: Optional[str] = None
    published: Optional[str | int] = None
    duration: Optional[int] = None
    view_count: Optional[int] = None


class SyncResult(BaseModel):
    added: int
    total_remote: int
    skipped: int
    failed: int
    items: list[VideoIn] = Field(default_factory=list)


class SyncReport(BaseModel):
    channel_id: str
    added: int
    total_remote: int
    skipped: int
    failed: int
    stored: int


class UserSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    player: str = "mpv"
    videos_per_channel: int = Field(default=15, alias="videosPerChannel")
    hide_shorts: bool = Field(default=True, alias="hideShorts")


class SettingUpdate(BaseModel):
    key: str
    value: str | int | bool


class WatchedIds(BaseModel):
    ids: list[str]


class CountOut(BaseModel):
    count: int
