"""SQLAlchemy ORM models for Reviewgate.

Defines the schema for changes, stage results, and finding resolutions.
All models use SQLAlchemy 2.0 declarative style with Mapped[] type annotations.
"""

from reviewgate.database.models.base import Base, TimestampMixin, as_utc
from reviewgate.database.models.change import ChangeRecord
from reviewgate.database.models.stage_result import (
    FindingResolutionRecord,
    StageResultRecord,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "as_utc",
    "ChangeRecord",
    "StageResultRecord",
    "FindingResolutionRecord",
]
