from __future__ import annotations

from pathlib import Path

import pytest_asyncio

import cardsched.db as dbmod


@pytest_asyncio.fixture
async def store(tmp_path, monkeypatch):
    """Point every DB operation at a fresh temp SQLite file."""
    db_file: Path = tmp_path / "test.db"
    monkeypatch.setattr(dbmod, "DB_PATH", db_file, raising=False)
    await dbmod.init_db()
    yield db_file
