"""Metadata provider: remote catalog listing and per-video metadata.

The production implementation shells out to ``yt-dlp``. Errors carry the
tool's stderr text so callers can look for throttling markers in it.
"""
from __future__ import annotations

import abc
import asyncio
import json
import logging
from typing import Any, Sequence

from .config import get_settings
from .dateutils import parse_timestamp
from .errors import ProviderError, ProviderTimeout
from .feed import WATCH_URL
from .schemas import ChannelInfo, ItemMetadata, VideoIn
from .validation import is_valid_url, is_valid_youtube_url, sanitize_search_query

logger = logging.getLogger(__name__)

SKIP_STREAMS = ["--extractor-args", "youtube:skip=dash,hls"]
SEARCH_TIMEOUT = 30.0
SEARCH_LIMIT_MAX = 50


class MetadataProvider(abc.ABC):
    @abc.abstractmethod
    async def list_item_ids(self, channel_url: str, max_count: int) -> list[str]:
        """Ordered ids of the channel's videos, at most ``max_count``."""

    @abc.abstractmethod
    async def fetch_batch_metadata(self, ids: Sequence[str]) -> list[ItemMetadata]:
        """Metadata for every id in one call."""

    @abc.abstractmethod
    async def get_channel_info(self, url: str) -> ChannelInfo:
        """Resolve a channel, handle or video URL to its channel."""

    @abc.abstractmethod
    async def search(self, query: str, limit: int = 20) -> list[VideoIn]:
        """Free-text video search."""


def _json_lines(stdout: str) -> list[dict[str, Any]]:
    records = []
    for line in stdout.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except ValueError:
            logger.debug("Skipping non-JSON yt-dlp output line")
            continue
        if isinstance(data, dict):
            records.append(data)
    return records


def _int_or_none(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class YtDlpProvider(MetadataProvider):
    def __init__(self, binary: str | None = None, timeout: float | None = None):
        settings = get_settings()
        self.binary = binary or settings.ytdlp_binary
        self.timeout = timeout or settings.provider_timeout

    async def _run(self, args: list[str], timeout: float | None = None) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProviderError(f"Failed to run {self.binary}: {e}") from e
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout or self.timeout)
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            raise ProviderTimeout(f"{self.binary} timed out")
        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise ProviderError(message or f"{self.binary} exited with status {proc.returncode}")
        return stdout.decode("utf-8", errors="replace")

    async def list_item_ids(self, channel_url: str, max_count: int) -> list[str]:
        stdout = await self._run(
            [
                "--flat-playlist",
                "--print",
                "%(id)s",
                "--no-warnings",
                *SKIP_STREAMS,
                "--playlist-end",
                str(max_count),
                channel_url,
            ]
        )
        return [line.strip() for line in stdout.splitlines() if line.strip()]

    async def fetch_batch_metadata(self, ids: Sequence[str]) -> list[ItemMetadata]:
        urls = [WATCH_URL.format(i) for i in ids]
        stdout = await self._run(
            ["--dump-json", "--no-warnings", *SKIP_STREAMS, "--socket-timeout", "30", *urls]
        )
        items = []
        for data in _json_lines(stdout):
            if not data.get("id"):
                continue
            items.append(
                ItemMetadata(
                    id=str(data["id"]),
                    title=str(data.get("title") or ""),
                    url=data.get("webpage_url"),
                    published=data.get("timestamp") or data.get("upload_date"),
                    duration=_int_or_none(data.get("duration")),
                    view_count=_int_or_none(data.get("view_count")),
                )
            )
        return items

    async def get_channel_info(self, url: str) -> ChannelInfo:
        channel_url = url.strip()
        if not is_valid_url(channel_url):
            raise ValueError("Invalid URL format")
        if not is_valid_youtube_url(channel_url):
            raise ValueError("Not a valid YouTube URL")
        is_video_url = "/watch?" in channel_url or "youtu.be/" in channel_url

        stdout = await self._run(
            ["--dump-json", "--playlist-items", "1", "--no-warnings", channel_url]
        )
        records = _json_lines(stdout)
        if not records:
            raise ProviderError("yt-dlp returned no metadata")
        data = records[0]
        channel_id = data.get("channel_id")
        name = data.get("channel") or data.get("uploader")
        if not channel_id:
            raise ProviderError("No channel_id found")
        if not name:
            raise ProviderError("No channel name found")
        resolved = data.get("channel_url")
        if not resolved:
            resolved = (
                f"https://www.youtube.com/channel/{channel_id}" if is_video_url else channel_url
            )
        return ChannelInfo(id=channel_id, name=name, url=resolved)

    async def search(self, query: str, limit: int = 20) -> list[VideoIn]:
        sanitized = sanitize_search_query(query)
        if not sanitized:
            raise ValueError("Search query cannot be empty")
        limit = max(1, min(limit, SEARCH_LIMIT_MAX))
        stdout = await self._run(
            [f"ytsearch{limit}:{sanitized}", "--flat-playlist", "--dump-json", "--no-warnings"],
            timeout=SEARCH_TIMEOUT,
        )
        videos = []
        for data in _json_lines(stdout):
            if not data.get("id"):
                continue
            video_id = str(data["id"])
            videos.append(
                VideoIn(
                    id=video_id,
                    title=str(data.get("title") or ""),
                    url=data.get("webpage_url") or data.get("url") or WATCH_URL.format(video_id),
                    channel_name=data.get("channel") or data.get("uploader") or "Unknown",
                    channel_id=data.get("channel_id"),
                    published_date=parse_timestamp(
                        data.get("release_timestamp") or data.get("timestamp")
                    ),
                    duration=_int_or_none(data.get("duration")),
                    view_count=_int_or_none(data.get("view_count")),
                )
            )
        return videos
