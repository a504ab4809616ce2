"""Timestamp parsing and display helpers.

Timestamps reach the store in several textual shapes (feed RFC 3339 values,
SQLite ``CURRENT_TIMESTAMP`` text, yt-dlp ``upload_date`` and epoch values,
legacy JSON exports). ``parse_timestamp`` tries each known shape in order and
returns ``None`` when none match; it never raises on a miss.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_yyyymmdd(s: str) -> Optional[datetime]:
    if len(s) != 8 or not s.isdigit():
        return None
    return datetime(int(s[0:4]), int(s[4:6]), int(s[6:8]), tzinfo=timezone.utc)


def _parse_epoch(s: str) -> Optional[datetime]:
    # Short digit runs are malformed dates, not 1970 epochs
    if not s.isdigit() or len(s) < 9:
        return None
    return datetime.fromtimestamp(int(s), tz=timezone.utc)


def _parse_iso(s: str) -> Optional[datetime]:
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return _as_utc(datetime.fromisoformat(s))


def _strptime(fmt: str) -> Callable[[str], Optional[datetime]]:
    def parse(s: str) -> Optional[datetime]:
        return _as_utc(datetime.strptime(s, fmt))
    return parse


# First success wins. The 8-digit date must come before the epoch parser.
_PARSERS: list[Callable[[str], Optional[datetime]]] = [
    _parse_yyyymmdd,
    _parse_epoch,
    _parse_iso,
    _strptime("%Y-%m-%dT%H:%M:%S.%fZ"),
    _strptime("%Y-%m-%d %H:%M:%S"),
]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Best-effort conversion of ``value`` to an aware UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if not text:
        return None
    for parser in _PARSERS:
        try:
            parsed = parser(text)
        except (ValueError, OverflowError, OSError):
            continue
        if parsed is not None:
            return parsed
    return None


def format_timestamp(dt: datetime) -> str:
    """Canonical storage form: fixed-width UTC ISO 8601.

    Fixed width keeps lexical order equal to chronological order, which the
    aggregate queries rely on when comparing stored text in SQL.
    """
    return _as_utc(dt).isoformat(timespec="microseconds")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def relative_date(dt: Optional[datetime], now: Optional[datetime] = None) -> str:
    if dt is None:
        return ""
    now = now or utcnow()
    seconds = (now - _as_utc(dt)).total_seconds()
    if seconds < 0:
        return "upcoming"
    mins = int(seconds // 60)
    hours = int(seconds // 3600)
    days = int(seconds // 86400)
    if mins < 60:
        return f"{max(mins, 1)}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    if days < 30:
        return f"{days // 7}w ago"
    if days < 365:
        return f"{days // 30}mo ago"
    return f"{days // 365}y ago"


def format_duration(seconds: Optional[int]) -> str:
    if not seconds:
        return "--:--"
    hours, rem = divmod(int(seconds), 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_views(count: Optional[int]) -> str:
    if count is None:
        return ""
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    if count >= 1_000:
        return f"{count // 1000}K"
    return str(count)
