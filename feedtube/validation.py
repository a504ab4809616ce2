from __future__ import annotations

import re
from urllib.parse import urlparse

YOUTUBE_VIDEO_ID_RE = re.compile(r"^[a-zA-Z0-9_\-]{11}$")
YOUTUBE_CHANNEL_ID_RE = re.compile(r"^UC[a-zA-Z0-9_\-]{22}$")
YOUTUBE_URL_PATTERNS = [
    re.compile(r"^https?://(www\.)?(youtube\.com|youtu\.be)/"),
    re.compile(r"^https?://(www\.)?youtube\.com/@[\w.\-]+"),
]
SEARCH_QUERY_MAX = 500


def is_valid_url(url: str | None) -> bool:
    if not url:
        return False
    try:
        return urlparse(url).scheme in ("http", "https")
    except ValueError:
        return False


def is_valid_youtube_url(url: str | None) -> bool:
    if not url:
        return False
    return any(p.match(url) for p in YOUTUBE_URL_PATTERNS)


def is_valid_video_id(video_id: str | None) -> bool:
    return bool(video_id) and bool(YOUTUBE_VIDEO_ID_RE.match(video_id))


def is_valid_channel_id(channel_id: str | None) -> bool:
    return bool(channel_id) and bool(YOUTUBE_CHANNEL_ID_RE.match(channel_id))


def sanitize_search_query(query: str | None) -> str:
    if not query:
        return ""
    return query.strip()[:SEARCH_QUERY_MAX]
