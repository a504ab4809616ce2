import os
import sys
import tempfile

import pytest
import pytest_asyncio

# Ensure repository root is on sys.path so `from feedtube ...` works
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# Keep tests away from the user's real data BEFORE importing feedtube modules
_SCRATCH = tempfile.mkdtemp(prefix="feedtube-tests-")
os.environ["DISABLE_POLLER"] = "1"
os.environ["FEEDTUBE_DATA_DIR"] = _SCRATCH
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_SCRATCH, 'data.db')}"
os.environ["FEEDTUBE_LEGACY_DB"] = os.path.join(_SCRATCH, "no-legacy.db")
os.environ["FEEDTUBE_LEGACY_CONFIG_DIR"] = os.path.join(_SCRATCH, "no-legacy")

from feedtube.db import configure_engine, dispose_engine, get_session, init_db


@pytest_asyncio.fixture
async def db(tmp_path):
    """A fresh SQLite database file per test."""
    configure_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(tmp_path / "legacy")
    yield
    await dispose_engine()


@pytest_asyncio.fixture
async def session(db):
    async with get_session() as s:
        yield s
