from __future__ import annotations

from typing import Iterable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..models import Video
from ..provider import MetadataProvider, YtDlpProvider
from ..schemas import VideoOut
from ..youtube_client import FeedClient, FeedSource

_provider: MetadataProvider | None = None
_feed_source: FeedSource | None = None


def get_provider() -> MetadataProvider:
    global _provider
    if _provider is None:
        _provider = YtDlpProvider()
    return _provider


def get_feed_source() -> FeedSource:
    global _feed_source
    if _feed_source is None:
        _feed_source = FeedClient()
    return _feed_source


async def close_feed_source() -> None:
    global _feed_source
    if _feed_source is not None:
        await _feed_source.close()
    _feed_source = None


def to_video_out(rows: Iterable[Video], watched: set[str]) -> list[VideoOut]:
    return [
        VideoOut.model_validate(row).model_copy(update={"watched": row.id in watched})
        for row in rows
    ]


async def with_watched(session: AsyncSession, rows: Sequence[Video]) -> list[VideoOut]:
    watched = await crud.get_watched_among(session, [row.id for row in rows])
    return to_video_out(rows, watched)
