from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_Session: async_sessionmaker[AsyncSession] | None = None


def _sqlite_path(url: str) -> Path | None:
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite") or not parsed.database:
        return None
    if parsed.database == ":memory:":
        return None
    return Path(parsed.database)


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def configure_engine(database_url: str | None = None) -> AsyncEngine:
    """Create the process-wide engine; the composition root owns it."""
    global _engine, _Session
    settings = get_settings()
    url = database_url or settings.database_url
    is_sqlite = make_url(url).drivername.startswith("sqlite")
    path = _sqlite_path(url)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
    # sqlite3's busy timeout bounds how long a writer waits on the file lock
    connect_args = {"timeout": settings.db_busy_timeout} if is_sqlite else {}
    _engine = create_async_engine(url, echo=False, connect_args=connect_args)
    if is_sqlite:
        event.listen(_engine.sync_engine, "connect", _set_sqlite_pragmas)
    _Session = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        configure_engine()
    assert _engine is not None
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    if _Session is None:
        get_engine()
    assert _Session is not None
    return _Session


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    session_maker = get_session_maker()
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(legacy_config_dir: Path | None = None) -> None:
    """Bootstrap the schema, then apply pending named migrations."""
    from .migrations import adopt_legacy_database, run_migrations
    from . import models  # noqa: F401  register tables on Base.metadata

    settings = get_settings()
    path = _sqlite_path(settings.database_url)
    if _engine is None and path is not None:
        adopt_legacy_database(path, settings.legacy_db_path)

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        applied = await conn.run_sync(
            run_migrations, legacy_config_dir or settings.legacy_config_dir
        )
    if applied:
        logger.info("Applied migrations: %s", ", ".join(applied))


async def dispose_engine() -> None:
    global _engine, _Session
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _Session = None
