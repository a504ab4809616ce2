import asyncio

import pytest

from feedtube import crud
from feedtube.db import get_session
from feedtube.errors import ProviderError
from feedtube.poller import BackgroundPoller
from feedtube.schemas import SubscriptionIn
from feedtube.youtube_client import FeedSource


class CountingFeeds(FeedSource):
    def __init__(self):
        self.calls = 0
        self.closed = False

    async def fetch_raw_feed(self, channel_id):
        self.calls += 1
        if self.calls > 1:
            raise ProviderError("HTTP 500")
        return "<entry><yt:videoId>p1</yt:videoId><title>Polled</title></entry>"

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_poll_once_stores_feed_items(db):
    async with get_session() as s:
        await crud.add_subscription(
            s, SubscriptionIn(id="ch1", name="Chan", url="https://www.youtube.com/@chan")
        )
    poller = BackgroundPoller(source=CountingFeeds(), interval=3600)
    assert await poller.poll_once() == 1
    # a failing channel yields nothing but does not raise
    assert await poller.poll_once() == 0


@pytest.mark.asyncio
async def test_start_and_stop(db):
    source = CountingFeeds()
    poller = BackgroundPoller(source=source, interval=3600)
    await poller.start()
    await asyncio.sleep(0.05)
    await poller.stop()
    assert source.closed is True
