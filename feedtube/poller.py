from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .config import get_settings
from .db import get_session
from .sync import refresh_subscriptions
from .youtube_client import FeedClient, FeedSource

logger = logging.getLogger(__name__)


class BackgroundPoller:
    """Refreshes every subscription's feed on a fixed interval."""

    def __init__(self, source: FeedSource | None = None, interval: float | None = None):
        self._task: Optional[asyncio.Task] = None
        self._source = source or FeedClient()
        self._interval = interval if interval is not None else get_settings().poll_interval
        self._running = False

    async def start(self):
        if self._task is None:
            self._running = True
            self._task = asyncio.create_task(self._run())

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._source.close()

    async def poll_once(self) -> int:
        async with get_session() as session:
            stored = await refresh_subscriptions(session, self._source)
        logger.info("Feed refresh stored %d videos", stored)
        return stored

    async def _run(self):
        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                # One failed round must not end the loop
                logger.exception("Feed refresh round failed")
            await asyncio.sleep(self._interval)
