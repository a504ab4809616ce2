from __future__ import annotations

import abc
import logging

import httpx

from .config import get_settings
from .errors import ProviderError, ProviderTimeout

logger = logging.getLogger(__name__)

YOUTUBE_FEED_URL = "https://www.youtube.com/feeds/videos.xml"


class FeedSource(abc.ABC):
    """Source of a channel's shallow recent-items feed."""

    @abc.abstractmethod
    async def fetch_raw_feed(self, channel_id: str) -> str:
        """Return the raw feed text or raise ProviderError."""

    async def close(self) -> None:
        pass


class FeedClient(FeedSource):
    def __init__(self, client: httpx.AsyncClient | None = None):
        settings = get_settings()
        self.client = client or httpx.AsyncClient(
            timeout=settings.feed_timeout, follow_redirects=True
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def fetch_raw_feed(self, channel_id: str) -> str:
        try:
            resp = await self.client.get(YOUTUBE_FEED_URL, params={"channel_id": channel_id})
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"Feed request timed out: {type(e).__name__}") from e
        except httpx.RequestError as e:
            raise ProviderError(f"Request error: {type(e).__name__}") from e
        if resp.status_code != 200:
            raise ProviderError(f"HTTP {resp.status_code} for feed {channel_id}")
        return resp.text
