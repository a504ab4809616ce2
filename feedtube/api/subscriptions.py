from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from .. import crud
from ..db import get_session
from ..provider import MetadataProvider
from ..schemas import (
    ChannelSummary,
    CountOut,
    SubscriptionCreate,
    SubscriptionIn,
    SubscriptionOut,
    SyncReport,
    VideoOut,
)
from ..sync import prime_subscription
from .deps import get_provider, with_watched

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


@router.get("", response_model=list[ChannelSummary])
async def list_channels():
    """Subscriptions with video counts, new-video counts and watched state."""
    async with get_session() as session:
        prefs = await crud.get_user_settings(session)
        subs = await crud.list_subscriptions(session)
        stats = await crud.channel_stats(session, hide_shorts=prefs.hide_shorts)
        new_counts = await crud.new_video_counts(session, hide_shorts=prefs.hide_shorts)
        done = await crud.fully_watched_channels(session, hide_shorts=prefs.hide_shorts)

    summaries = []
    for sub in subs:
        stat = stats.get(sub.id)
        summaries.append(
            ChannelSummary(
                **SubscriptionOut.model_validate(sub).model_dump(),
                count=stat.count if stat else 0,
                latest_published_date=stat.latest_published_date if stat else None,
                new_count=new_counts.get(sub.id, 0),
                fully_watched=sub.id in done,
            )
        )
    return summaries


@router.post("", response_model=SubscriptionOut, status_code=status.HTTP_201_CREATED)
async def add_channel(
    body: SubscriptionCreate, provider: MetadataProvider = Depends(get_provider)
):
    try:
        info = await provider.get_channel_info(body.url)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    async with get_session() as session:
        row = await crud.add_subscription(
            session, SubscriptionIn(id=info.id, name=info.name, url=info.url)
        )
    return row


@router.delete("/{channel_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_channel(channel_id: str):
    async with get_session() as session:
        await crud.remove_subscription(session, channel_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{channel_id}/videos", response_model=list[VideoOut])
async def channel_videos(channel_id: str):
    async with get_session() as session:
        await crud.get_subscription(session, channel_id)
        rows = await crud.get_videos(session, channel_id)
        return await with_watched(session, rows)


@router.post("/{channel_id}/prime", response_model=SyncReport)
async def prime(channel_id: str, provider: MetadataProvider = Depends(get_provider)):
    """Backfill the channel's full history."""
    return await prime_subscription(provider, channel_id)


@router.post("/{channel_id}/viewed", status_code=status.HTTP_204_NO_CONTENT)
async def mark_viewed(channel_id: str):
    async with get_session() as session:
        await crud.get_subscription(session, channel_id)
        await crud.update_channel_last_viewed(session, channel_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/viewed", response_model=CountOut)
async def mark_all_viewed():
    async with get_session() as session:
        subs = await crud.list_subscriptions(session)
        await crud.mark_all_channels_viewed(session, [s.id for s in subs])
    return CountOut(count=len(subs))
