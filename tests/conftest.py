"""Shared fixtures for tests that need a migrated database."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import Engine

from release_builder.db import db_create_engine

_ALEMBIC_INI_PATH = Path(__file__).resolve().parents[1] / "alembic.ini"


@pytest.fixture
def sqlite_database_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    """Point DATABASE_URL at a temporary SQLite file.

    Args:
        tmp_path: Temporary directory for the database file.
        monkeypatch: Pytest environment patcher.

    Returns:
        str: SQLAlchemy URL of the temporary database.

    Raises:
        RuntimeError: This fixture does not raise runtime errors.
    """

    database_url = f"sqlite:///{tmp_path / 'release_builder.db'}"
    monkeypatch.setenv("DATABASE_URL", database_url)
    return database_url


@pytest.fixture
def migrated_engine(sqlite_database_url: str) -> Iterator[Engine]:
    """Upgrade the temporary database to head and yield an engine for it.

    Args:
        sqlite_database_url: Temporary database URL.

    Returns:
        Iterator[Engine]: Engine bound to the migrated database.

    Raises:
        RuntimeError: Raised when migrations fail.
    """

    command.upgrade(Config(str(_ALEMBIC_INI_PATH)), "head")
    engine = db_create_engine(database_url=sqlite_database_url)
    try:
        yield engine
    finally:
        engine.dispose()
