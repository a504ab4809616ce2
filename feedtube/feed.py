"""Minimal parser for YouTube channel Atom feeds.

The feed is a small fixed format, so entries and fields are located with
substring search instead of an XML parser. Malformed input yields fewer
entries, never an exception.
"""
from __future__ import annotations

import logging
from typing import Optional

from .dateutils import parse_timestamp
from .schemas import VideoIn

logger = logging.getLogger(__name__)

ENTRY_OPEN = "<entry>"
ENTRY_CLOSE = "</entry>"
SHORTS_PATH = "/shorts/"
WATCH_URL = "https://www.youtube.com/watch?v={}"

_XML_ENTITIES = (
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&apos;", "'"),
)


def decode_xml_entities(text: str) -> str:
    for entity, char in _XML_ENTITIES:
        text = text.replace(entity, char)
    return text


def extract_tag(xml: str, tag: str) -> Optional[str]:
    """Text between the first ``<tag>`` and the following ``</tag>``."""
    open_tag = f"<{tag}>"
    start = xml.find(open_tag)
    if start < 0:
        return None
    start += len(open_tag)
    end = xml.find(f"</{tag}>", start)
    if end < 0:
        return None
    return xml[start:end]


def extract_attr(xml: str, tag: str, attr: str) -> Optional[str]:
    """Value of ``attr`` on the first self-closing ``<tag .../>``."""
    start = xml.find(f"<{tag}")
    if start < 0:
        return None
    end = xml.find("/>", start)
    if end < 0:
        return None
    element = xml[start:end]
    marker = f'{attr}="'
    attr_start = element.find(marker)
    if attr_start < 0:
        return None
    attr_start += len(marker)
    attr_end = element.find('"', attr_start)
    if attr_end < 0:
        return None
    return element[attr_start:attr_end]


def is_short_url(url: str) -> bool:
    return SHORTS_PATH in url


def parse_entry(entry: str, channel_id: str, channel_name: str) -> Optional[VideoIn]:
    video_id = extract_tag(entry, "yt:videoId")
    title = extract_tag(entry, "title")
    if not video_id or title is None:
        return None
    url = extract_attr(entry, "link", "href") or WATCH_URL.format(video_id)
    return VideoIn(
        id=video_id.strip(),
        title=decode_xml_entities(title),
        url=decode_xml_entities(url),
        is_short=is_short_url(url),
        channel_name=channel_name,
        channel_id=channel_id,
        published_date=parse_timestamp(extract_tag(entry, "published")),
    )


def parse_feed(xml: str, channel_id: str, channel_name: str) -> list[VideoIn]:
    videos: list[VideoIn] = []
    pos = 0
    while True:
        start = xml.find(ENTRY_OPEN, pos)
        if start < 0:
            break
        end = xml.find(ENTRY_CLOSE, start)
        if end < 0:
            break
        video = parse_entry(xml[start + len(ENTRY_OPEN):end], channel_id, channel_name)
        if video is None:
            logger.debug("Skipping feed entry without id or title (channel %s)", channel_id)
        else:
            videos.append(video)
        pos = end + len(ENTRY_CLOSE)
    return videos
