from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from .. import crud
from ..config import get_settings
from ..db import get_session
from ..schemas import CountOut, PaginatedVideos, WatchedIds
from ..sync import refresh_subscriptions
from ..youtube_client import FeedSource
from .deps import get_feed_source, with_watched

router = APIRouter(prefix="/api/videos", tags=["videos"])


async def _pagination_params(
    page: int = Query(0, ge=0),
    page_size: int = Query(None, ge=1),
):
    settings = get_settings()
    if page_size is None:
        page_size = settings.page_size_default
    page_size = min(page_size, settings.page_size_max)
    return page, page_size


@router.get("", response_model=PaginatedVideos)
async def get_videos(
    qp=Depends(_pagination_params),
    channel_id: list[str] | None = Query(None, description="Only these channels"),
):
    page, page_size = qp
    async with get_session() as session:
        result = await crud.get_videos_paginated(
            session, channel_ids=channel_id, page=page, page_size=page_size
        )
        items = await with_watched(session, result.items)
    total = result.total
    return {
        "total": total,
        "page": result.page,
        "page_size": result.page_size,
        "next_page": page + 1 if (page + 1) * page_size < total else None,
        "prev_page": page - 1 if page > 0 else None,
        "items": items,
    }


@router.post("/{video_id}/watched/toggle")
async def toggle_watched(video_id: str):
    async with get_session() as session:
        watched = await crud.toggle_watched(session, video_id)
    return {"video_id": video_id, "watched": watched}


@router.post("/watched", response_model=CountOut)
async def mark_watched(body: WatchedIds):
    async with get_session() as session:
        inserted = await crud.mark_many_watched(session, body.ids)
    return CountOut(count=inserted)


@router.post("/_refresh", response_model=CountOut)
async def refresh_now(source: FeedSource = Depends(get_feed_source)):
    """Poll every subscribed channel's feed now and store the results."""
    async with get_session() as session:
        stored = await refresh_subscriptions(session, source)
    return CountOut(count=stored)
