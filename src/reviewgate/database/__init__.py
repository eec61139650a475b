"""Database layer for Reviewgate.

Handles database connections, session management, the ORM schema for
changes and stage results, and the query functions used by the SQL store.

Public API:
    get_engine: Create an AsyncEngine from DatabaseConfig.
    get_session_factory: Create an async_sessionmaker from an engine.
    init_schema: Create missing tables.
    Base: SQLAlchemy declarative base for all models.
"""

from reviewgate.database.connection import get_engine, get_session_factory, init_schema
from reviewgate.database.models import (
    Base,
    ChangeRecord,
    FindingResolutionRecord,
    StageResultRecord,
    TimestampMixin,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "init_schema",
    "Base",
    "TimestampMixin",
    "ChangeRecord",
    "StageResultRecord",
    "FindingResolutionRecord",
]
