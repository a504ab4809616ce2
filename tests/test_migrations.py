import json

import pytest
from sqlalchemy import select, text

from feedtube import crud
from feedtube.db import configure_engine, dispose_engine, get_session, init_db
from feedtube.migrations import MIGRATIONS, adopt_legacy_database
from feedtube.models import Migration, Video
from feedtube.schemas import VideoIn


def write_legacy_files(legacy_dir):
    legacy_dir.mkdir(parents=True, exist_ok=True)
    (legacy_dir / "subscriptions.json").write_text(
        json.dumps(
            {
                "subscriptions": [
                    {"id": "ch1", "name": "Chan", "url": "https://www.youtube.com/@chan",
                     "addedAt": "2023-05-01T00:00:00.000Z"},
                    {"name": "broken entry"},
                ],
                "settings": {"hideShorts": False, "player": "vlc"},
                "channelLastViewed": {"ch1": "2024-01-01T00:00:00.000Z"},
            }
        )
    )
    (legacy_dir / "watched.json").write_text(
        json.dumps({"videos": {"v1": {"watchedAt": "2024-01-02T00:00:00.000Z"}}})
    )
    (legacy_dir / "videos.json").write_text(
        json.dumps(
            {
                "videos": {
                    "v1": {"id": "v1", "title": "Old", "url": "https://www.youtube.com/watch?v=v1",
                           "channelId": "ch1", "channelName": "Chan",
                           "publishedDate": "2023-12-31T00:00:00.000Z", "isShort": False},
                    "v2": {"id": "v2", "title": "New", "channelId": "ch1", "channelName": "Chan",
                           "publishedDate": "2024-02-01T00:00:00.000Z", "isShort": True},
                }
            }
        )
    )


@pytest.fixture
def engine_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'data.db'}"


async def applied_migrations():
    async with get_session() as s:
        return set((await s.execute(select(Migration.name))).scalars().all())


@pytest.mark.asyncio
async def test_fresh_database_records_every_migration(tmp_path, engine_url):
    configure_engine(engine_url)
    try:
        await init_db(tmp_path / "legacy")
        assert await applied_migrations() == {name for name, _ in MIGRATIONS}
        # second bootstrap is a no-op
        await init_db(tmp_path / "legacy")
        assert await applied_migrations() == {name for name, _ in MIGRATIONS}
    finally:
        await dispose_engine()


@pytest.mark.asyncio
async def test_legacy_json_is_imported_once(tmp_path, engine_url):
    legacy = tmp_path / "legacy"
    write_legacy_files(legacy)
    configure_engine(engine_url)
    try:
        await init_db(legacy)

        async with get_session() as s:
            subs = await crud.list_subscriptions(s)
            assert [sub.id for sub in subs] == ["ch1"]
            assert await crud.get_watched_ids(s) == {"v1"}
            videos = await crud.get_videos(s, "ch1")
            assert [v.id for v in videos] == ["v2", "v1"]
            assert videos[0].is_short is True
            settings = await crud.get_user_settings(s)
            assert settings.hide_shorts is False
            assert settings.player == "vlc"
            # only v2 was published after the imported last-viewed time
            assert await crud.new_video_counts(s) == {"ch1": 1}

        assert not (legacy / "subscriptions.json").exists()
        assert (legacy / "backup" / "subscriptions.json").exists()
        assert (legacy / "backup" / "videos.json").exists()

        # files that reappear later are not imported again
        write_legacy_files(legacy / "again")
        for name in ("subscriptions.json", "watched.json", "videos.json"):
            (legacy / "again" / name).rename(legacy / name)
        (legacy / "subscriptions.json").write_text(
            json.dumps({"subscriptions": [{"id": "ch2", "name": "Two", "url": "https://x/@two"}]})
        )
        await init_db(legacy)
        async with get_session() as s:
            assert [sub.id for sub in await crud.list_subscriptions(s)] == ["ch1"]
    finally:
        await dispose_engine()


@pytest.mark.asyncio
async def test_metadata_columns_added_to_old_schema(tmp_path, engine_url):
    engine = configure_engine(engine_url)
    try:
        async with engine.begin() as conn:
            await conn.execute(
                text(
                    "CREATE TABLE videos (id TEXT PRIMARY KEY, title TEXT NOT NULL, "
                    "url TEXT NOT NULL, is_short BOOLEAN NOT NULL DEFAULT 0, channel_name TEXT, "
                    "channel_id TEXT, published_date TEXT, stored_at TEXT)"
                )
            )
            await conn.execute(
                text("INSERT INTO videos (id, title, url, channel_id) VALUES ('old', 't', 'u', 'ch1')")
            )

        await init_db(tmp_path / "legacy")

        async with get_session() as s:
            await crud.upsert_videos(
                s,
                [VideoIn(id="old", title="t", url="u", channel_id="ch1", duration=30, view_count=3)],
            )
        async with get_session() as s:
            row = await s.get(Video, "old")
            assert row.duration == 30
            assert row.view_count == 3
    finally:
        await dispose_engine()


def test_adopt_legacy_database(tmp_path):
    legacy = tmp_path / "old" / "data.db"
    legacy.parent.mkdir()
    legacy.write_bytes(b"legacy")
    target = tmp_path / "new" / "data.db"

    assert adopt_legacy_database(target, legacy) is True
    assert target.read_bytes() == b"legacy"

    legacy.write_bytes(b"changed")
    assert adopt_legacy_database(target, legacy) is False
    assert target.read_bytes() == b"legacy"


def test_adopt_without_legacy_database(tmp_path):
    assert adopt_legacy_database(tmp_path / "data.db", tmp_path / "missing.db") is False


@pytest.mark.asyncio
async def test_old_database_timestamps_are_normalized(tmp_path, engine_url):
    engine = configure_engine(engine_url)
    try:
        async with engine.begin() as conn:
            for ddl in (
                "CREATE TABLE subscriptions (id TEXT PRIMARY KEY, name TEXT NOT NULL, "
                "url TEXT NOT NULL UNIQUE, added_at TEXT DEFAULT CURRENT_TIMESTAMP)",
                "CREATE TABLE videos (id TEXT PRIMARY KEY, title TEXT NOT NULL, url TEXT NOT NULL, "
                "is_short INTEGER DEFAULT 0, channel_name TEXT, channel_id TEXT, "
                "published_date TEXT, stored_at TEXT DEFAULT CURRENT_TIMESTAMP)",
                "CREATE TABLE channel_views (channel_id TEXT PRIMARY KEY, "
                "last_viewed_at TEXT DEFAULT CURRENT_TIMESTAMP)",
                "INSERT INTO subscriptions (id, name, url) VALUES ('ch1', 'Chan', 'https://x/@c1')",
                "INSERT INTO subscriptions (id, name, url) VALUES ('ch2', 'Two', 'https://x/@c2')",
                "INSERT INTO videos (id, title, url, channel_id, published_date) "
                "VALUES ('undated', 't', 'u', 'ch1', '')",
                "INSERT INTO videos (id, title, url, channel_id, published_date) "
                "VALUES ('dated', 't', 'u', 'ch1', '2024-03-01T10:00:00+00:00')",
                "INSERT INTO videos (id, title, url, channel_id, published_date) "
                "VALUES ('late', 't', 'u', 'ch2', '2024-03-01T12:00:00+02:00')",
                "INSERT INTO videos (id, title, url, channel_id, published_date) "
                "VALUES ('later', 't', 'u', 'ch2', '2024-03-01 11:00:00')",
                "INSERT INTO channel_views (channel_id, last_viewed_at) "
                "VALUES ('ch2', '2024-03-01 10:30:00')",
            ):
                await conn.execute(text(ddl))

        await init_db(tmp_path / "legacy")

        async with engine.connect() as conn:
            raw = dict(
                (await conn.execute(text("SELECT id, published_date FROM videos"))).all()
            )
            viewed = await conn.scalar(text("SELECT last_viewed_at FROM channel_views"))
        assert raw["undated"] is None
        assert raw["dated"] == "2024-03-01T10:00:00.000000+00:00"
        assert raw["late"] == "2024-03-01T10:00:00.000000+00:00"
        assert raw["later"] == "2024-03-01T11:00:00.000000+00:00"
        assert viewed == "2024-03-01T10:30:00.000000+00:00"

        async with get_session() as s:
            # the empty date no longer counts as new; ch2 only has one video after its view
            assert await crud.new_video_counts(s) == {"ch1": 1, "ch2": 1}
            stats = await crud.channel_stats(s)
            assert stats["ch2"].latest_published_date.isoformat() == "2024-03-01T11:00:00+00:00"
    finally:
        await dispose_engine()
