"""Channel synchronization: priming (full backfill) and refresh (feed poll).

Priming lists a channel's whole catalog, skips videos whose metadata is
already stored, and fetches the rest in small batches under one concurrency
limit per call. A batch that keeps failing is counted and dropped; only a
failure to list the catalog aborts the call.

Refresh pulls every subscribed channel's feed in fixed-size waves with no
retries. Re-storing what is already known is harmless because upserts are
idempotent.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional, Sequence, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from . import crud
from .config import Settings, get_settings
from .dateutils import parse_timestamp
from .db import get_session
from .errors import BatchFailed, ListFailed, ProviderError, ProviderTimeout
from .feed import WATCH_URL, is_short_url, parse_feed
from .provider import MetadataProvider
from .schemas import ItemMetadata, SyncReport, SyncResult, VideoIn
from .youtube_client import FeedSource

logger = logging.getLogger(__name__)

THROTTLE_MARKERS = ("429", "too many requests", "rate limit")
SHORT_MAX_SECONDS = 60

T = TypeVar("T")


def is_throttled(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in THROTTLE_MARKERS)


async def with_retry(
    call: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``call``, retrying timeouts and throttling errors with backoff.

    The delay before retry ``n`` (zero-based) is ``base_delay * 2**n``. Any
    other ProviderError is raised at once.
    """
    for attempt in range(attempts):
        try:
            return await call()
        except ProviderTimeout:
            if attempt == attempts - 1:
                raise
        except ProviderError as e:
            if attempt == attempts - 1 or not is_throttled(str(e)):
                raise
        delay = base_delay * 2 ** attempt
        logger.info("Provider throttled or timed out, retrying in %.1fs", delay)
        await sleep(delay)
    raise ProviderError("no attempts made")


@dataclass(frozen=True)
class ProgressUpdate:
    done: int
    total: int


class SyncProgress:
    """Progress observer for a priming run.

    Holds the latest update and fans updates out to subscriber queues. Queues
    are bounded; when one is full its oldest update is dropped, so a slow
    reader only ever misses intermediate values. ``close()`` sends ``None``
    to every subscriber.
    """

    def __init__(self) -> None:
        self.latest = ProgressUpdate(0, 0)
        self._subscribers: list[asyncio.Queue[Optional[ProgressUpdate]]] = []

    def subscribe(self, maxsize: int = 16) -> asyncio.Queue[Optional[ProgressUpdate]]:
        queue: asyncio.Queue[Optional[ProgressUpdate]] = asyncio.Queue(maxsize=maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, done: int, total: int) -> None:
        self.latest = ProgressUpdate(done, total)
        for queue in self._subscribers:
            _offer(queue, self.latest)

    def close(self) -> None:
        for queue in self._subscribers:
            _offer(queue, None)


def _offer(queue: asyncio.Queue, item) -> None:
    while True:
        try:
            queue.put_nowait(item)
            return
        except asyncio.QueueFull:
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                pass


def channel_videos_url(url: str) -> str:
    if "/videos" in url:
        return url
    return url.rstrip("/") + "/videos"


def metadata_to_video(meta: ItemMetadata, channel_id: str, channel_name: str) -> VideoIn:
    url = meta.url or WATCH_URL.format(meta.id)
    short_by_length = meta.duration is not None and 0 < meta.duration <= SHORT_MAX_SECONDS
    return VideoIn(
        id=meta.id,
        title=meta.title,
        url=url,
        is_short=short_by_length or is_short_url(url),
        channel_name=channel_name,
        channel_id=channel_id,
        published_date=parse_timestamp(meta.published),
        duration=meta.duration,
        view_count=meta.view_count,
    )


async def prime_channel(
    provider: MetadataProvider,
    channel_id: str,
    channel_name: str,
    channel_url: str,
    existing_ids: Iterable[str],
    progress: SyncProgress | None = None,
    *,
    settings: Settings | None = None,
) -> SyncResult:
    settings = settings or get_settings()
    progress = progress or SyncProgress()
    existing = set(existing_ids)
    list_url = channel_videos_url(channel_url)

    try:
        listed = await with_retry(
            lambda: provider.list_item_ids(list_url, settings.list_max_items),
            attempts=settings.list_attempts,
            base_delay=settings.list_base_delay,
        )
    except ProviderError as e:
        raise ListFailed(f"Failed to list videos: {e}") from e

    listed = list(dict.fromkeys(listed))
    to_fetch = [video_id for video_id in listed if video_id not in existing]
    total = len(to_fetch)
    progress.publish(0, total)
    logger.info(
        "Priming %s: %d listed, %d to fetch", channel_id, len(listed), total,
        extra={"channel_id": channel_id},
    )
    if not to_fetch:
        return SyncResult(added=0, total_remote=len(listed), skipped=len(existing), failed=0)

    size = max(1, settings.prime_batch_size)
    batches = [to_fetch[i:i + size] for i in range(0, total, size)]
    semaphore = asyncio.Semaphore(max(1, settings.prime_concurrency))
    finished: asyncio.Queue[tuple[list[str], list[ItemMetadata] | BatchFailed]] = asyncio.Queue()

    async def run_batch(batch: list[str]) -> None:
        outcome: list[ItemMetadata] | BatchFailed
        async with semaphore:
            try:
                outcome = await with_retry(
                    lambda: provider.fetch_batch_metadata(batch),
                    attempts=settings.batch_attempts,
                    base_delay=settings.batch_base_delay,
                )
            except ProviderError as e:
                outcome = BatchFailed(batch, str(e))
            except Exception as e:
                logger.exception("Unexpected error fetching batch for %s", channel_id)
                outcome = BatchFailed(batch, repr(e))
        await finished.put((batch, outcome))

    tasks = [asyncio.create_task(run_batch(batch)) for batch in batches]
    processed = 0
    failed = 0
    videos: list[VideoIn] = []
    try:
        for _ in batches:
            batch, outcome = await finished.get()
            processed += len(batch)
            if isinstance(outcome, BatchFailed):
                failed += len(batch)
                logger.warning(
                    "Batch of %d failed for %s: %s", len(batch), channel_id, outcome,
                    extra={"channel_id": channel_id},
                )
            else:
                videos.extend(metadata_to_video(m, channel_id, channel_name) for m in outcome)
            progress.publish(min(processed, total), total)
        await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()

    progress.publish(total, total)
    return SyncResult(
        added=len(videos),
        total_remote=len(listed),
        skipped=len(existing),
        failed=failed,
        items=videos,
    )


async def _fetch_channel_feed(source: FeedSource, channel_id: str, channel_name: str) -> list[VideoIn]:
    try:
        xml = await source.fetch_raw_feed(channel_id)
    except ProviderError as e:
        logger.info("No feed for %s this round: %s", channel_id, e, extra={"channel_id": channel_id})
        return []
    return parse_feed(xml, channel_id, channel_name)


async def refresh_channels(
    source: FeedSource,
    channels: Sequence[tuple[str, str]],
    wave_size: int = 20,
) -> list[VideoIn]:
    """Fetch and parse the feed of each ``(channel_id, channel_name)``."""
    videos: list[VideoIn] = []
    wave_size = max(1, wave_size)
    for start in range(0, len(channels), wave_size):
        wave = channels[start:start + wave_size]
        results = await asyncio.gather(
            *(_fetch_channel_feed(source, cid, name) for cid, name in wave),
            return_exceptions=True,
        )
        for (cid, _), result in zip(wave, results):
            if isinstance(result, BaseException):
                logger.warning("Feed refresh failed for %s: %r", cid, result)
                continue
            videos.extend(result)
    return videos


async def prime_subscription(
    provider: MetadataProvider,
    channel_id: str,
    progress: SyncProgress | None = None,
) -> SyncReport:
    """Prime one subscribed channel and store what was fetched.

    The provider calls run between two short sessions, so no transaction
    stays open while the catalog is being fetched.
    """
    async with get_session() as session:
        sub = await crud.get_subscription(session, channel_id)
        existing = await crud.get_enriched_ids(session, channel_id)
    result = await prime_channel(provider, sub.id, sub.name, sub.url, existing, progress)
    async with get_session() as session:
        stored = await crud.upsert_videos(session, result.items)
    return SyncReport(
        channel_id=sub.id,
        added=result.added,
        total_remote=result.total_remote,
        skipped=result.skipped,
        failed=result.failed,
        stored=stored,
    )


async def refresh_subscriptions(
    session: AsyncSession, source: FeedSource, settings: Settings | None = None
) -> int:
    """Refresh every subscription's feed and store the results."""
    settings = settings or get_settings()
    subs = await crud.list_subscriptions(session)
    videos = await refresh_channels(
        source, [(s.id, s.name) for s in subs], wave_size=settings.refresh_wave_size
    )
    return await crud.upsert_videos(session, videos)
