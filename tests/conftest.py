"""Shared fixtures. Points the app at a throwaway SQLite file before anything imports it."""

import os
import tempfile
from pathlib import Path

import pytest_asyncio

_TMP_DIR = tempfile.mkdtemp(prefix="flashcards-tests-")
os.environ["FLASHCARDS_DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_TMP_DIR) / 'test.db'}"

from backend.database import async_session, engine, init_db  # noqa: E402
from backend.models import Base  # noqa: E402


@pytest_asyncio.fixture
async def db():
    """Fresh tables for one test, dropped afterwards."""
    await init_db()
    async with async_session() as session:
        yield session
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
