"""Pytest fixtures for integration tests.

Provides a SQLite database in a temporary directory with the Reviewgate
schema, a SQL-backed result store over it, and a TOML config pointing at
the same database for CLI tests.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from reviewgate.config import DatabaseConfig
from reviewgate.database import get_engine, get_session_factory, init_schema
from reviewgate.workflow import InMemoryStageResultStore, SqlStageResultStore


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """URL of a fresh SQLite database file."""
    return f"sqlite+aiosqlite:///{tmp_path / 'reviewgate.db'}"


@pytest_asyncio.fixture
async def engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Create an engine with the schema in place.

    Yields:
        AsyncEngine bound to the temporary database.
    """
    test_engine = get_engine(DatabaseConfig(url=database_url))
    await init_schema(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the test engine."""
    return get_session_factory(engine)


@pytest_asyncio.fixture
async def sql_store(session_factory: async_sessionmaker[AsyncSession]) -> SqlStageResultStore:
    """Create a SQL-backed store over the test database."""
    return SqlStageResultStore(session_factory)


@pytest_asyncio.fixture(params=["memory", "sql"])
async def any_store(request: pytest.FixtureRequest, session_factory):
    """Provide each store backend in turn."""
    if request.param == "memory":
        return InMemoryStageResultStore()
    return SqlStageResultStore(session_factory)
