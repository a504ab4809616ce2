import httpx
import pytest

from feedtube.errors import ProviderError, ProviderTimeout
from feedtube.feed import decode_xml_entities, extract_attr, extract_tag, parse_feed
from feedtube.youtube_client import FeedClient

FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns:yt="http://www.youtube.com/xml/schemas/2015">
 <title>Channel</title>
 <entry>
  <id>yt:video:abc123def45</id>
  <yt:videoId>abc123def45</yt:videoId>
  <title>Fish &amp; Chips &lt;live&gt;</title>
  <link rel="alternate" href="https://www.youtube.com/watch?v=abc123def45"/>
  <published>2024-03-01T10:00:00+00:00</published>
 </entry>
 <entry>
  <yt:videoId>short000001</yt:videoId>
  <title>Quick one</title>
  <link rel="alternate" href="https://www.youtube.com/shorts/short000001"/>
  <published>not a date</published>
 </entry>
 <entry>
  <title>No id here</title>
 </entry>
</feed>
"""


def test_parse_feed_extracts_entries():
    videos = parse_feed(FEED, "UCchan", "Chan")
    assert [v.id for v in videos] == ["abc123def45", "short000001"]

    first, second = videos
    assert first.title == "Fish & Chips <live>"
    assert first.url == "https://www.youtube.com/watch?v=abc123def45"
    assert first.published_date.isoformat() == "2024-03-01T10:00:00+00:00"
    assert first.is_short is False
    assert first.channel_id == "UCchan"
    assert first.channel_name == "Chan"

    assert second.is_short is True
    assert second.published_date is None


def test_parse_feed_tolerates_garbage():
    assert parse_feed("", "c", "n") == []
    assert parse_feed("<html>nope</html>", "c", "n") == []
    # unterminated entry is dropped
    assert parse_feed("<entry><yt:videoId>x</yt:videoId><title>t</title>", "c", "n") == []


def test_missing_link_falls_back_to_watch_url():
    xml = "<entry><yt:videoId>vid</yt:videoId><title>t</title></entry>"
    (video,) = parse_feed(xml, "c", "n")
    assert video.url == "https://www.youtube.com/watch?v=vid"


def test_extract_helpers():
    assert extract_tag("<a>1</a><a>2</a>", "a") == "1"
    assert extract_tag("<a>1", "a") is None
    assert extract_attr('<link rel="x" href="http://h"/>', "link", "href") == "http://h"
    assert extract_attr('<link rel="x"/>', "link", "href") is None
    assert decode_xml_entities("&quot;a&quot; &#39;b&apos;") == "\"a\" 'b'"


@pytest.mark.asyncio
async def test_feed_client_fetches_by_channel_id():
    seen = []

    def handler(request):
        seen.append(request.url.params["channel_id"])
        if request.url.params["channel_id"] == "UCgone":
            return httpx.Response(404)
        return httpx.Response(200, text=FEED)

    client = FeedClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    try:
        xml = await client.fetch_raw_feed("UCchan")
        assert len(parse_feed(xml, "UCchan", "Chan")) == 2
        with pytest.raises(ProviderError):
            await client.fetch_raw_feed("UCgone")
    finally:
        await client.close()
    assert seen == ["UCchan", "UCgone"]


@pytest.mark.asyncio
async def test_feed_client_maps_timeouts():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    client = FeedClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    try:
        with pytest.raises(ProviderTimeout):
            await client.fetch_raw_feed("UCchan")
    finally:
        await client.close()
