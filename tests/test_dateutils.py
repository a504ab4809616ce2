from datetime import datetime, timedelta, timezone

import pytest

from feedtube.dateutils import (
    format_duration,
    format_timestamp,
    format_views,
    parse_timestamp,
    relative_date,
)

UTC = timezone.utc


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2024-03-01T10:00:00+00:00", datetime(2024, 3, 1, 10, tzinfo=UTC)),
        ("2024-03-01T12:00:00+02:00", datetime(2024, 3, 1, 10, tzinfo=UTC)),
        ("2024-03-01T10:00:00Z", datetime(2024, 3, 1, 10, tzinfo=UTC)),
        ("2024-03-01T10:00:00.250Z", datetime(2024, 3, 1, 10, 0, 0, 250000, tzinfo=UTC)),
        ("2024-03-01 10:00:00", datetime(2024, 3, 1, 10, tzinfo=UTC)),
        ("20240301", datetime(2024, 3, 1, tzinfo=UTC)),
        ("1709287200", datetime(2024, 3, 1, 10, tzinfo=UTC)),
        (1709287200, datetime(2024, 3, 1, 10, tzinfo=UTC)),
    ],
)
def test_parse_timestamp_formats(value, expected):
    assert parse_timestamp(value) == expected


@pytest.mark.parametrize("value", [None, "", "garbage", "20241340", "1234", True])
def test_parse_timestamp_misses_return_none(value):
    assert parse_timestamp(value) is None


def test_naive_datetime_is_taken_as_utc():
    assert parse_timestamp(datetime(2024, 1, 1)) == datetime(2024, 1, 1, tzinfo=UTC)


def test_format_timestamp_is_fixed_width_and_sortable():
    a = format_timestamp(datetime(2024, 3, 1, 10, tzinfo=UTC))
    b = format_timestamp(datetime(2024, 3, 1, 10, 0, 0, 1, tzinfo=UTC))
    assert a == "2024-03-01T10:00:00.000000+00:00"
    assert len(a) == len(b)
    assert a < b


def test_relative_date():
    now = datetime(2024, 3, 10, tzinfo=UTC)
    assert relative_date(None, now) == ""
    assert relative_date(now - timedelta(seconds=5), now) == "1m ago"
    assert relative_date(now - timedelta(hours=3), now) == "3h ago"
    assert relative_date(now - timedelta(days=2), now) == "2d ago"
    assert relative_date(now - timedelta(days=15), now) == "2w ago"
    assert relative_date(now - timedelta(days=65), now) == "2mo ago"
    assert relative_date(now - timedelta(days=800), now) == "2y ago"


def test_format_duration_and_views():
    assert format_duration(None) == "--:--"
    assert format_duration(0) == "--:--"
    assert format_duration(65) == "1:05"
    assert format_duration(3725) == "1:02:05"
    assert format_views(None) == ""
    assert format_views(999) == "999"
    assert format_views(12_345) == "12K"
    assert format_views(2_500_000) == "2.5M"
