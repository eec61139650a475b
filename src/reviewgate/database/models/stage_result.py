"""Stage result and finding resolution models for Reviewgate.

Both tables are append-only. A stage result is superseded by inserting a
newer row for the same change and stage; ``seq`` gives the insertion order
used to pick the latest one.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from reviewgate.database.models.base import Base


class StageResultRecord(Base):
    """A persisted, immutable stage result.

    Attributes:
        seq: Autoincrement insertion order.
        id: UUID string of the result.
        change_id: Foreign key to the change.
        stage: StageName value.
        outcome: StageOutcome value.
        findings: Serialized findings.
        reason: Free-text context for the outcome.
        revision: Change revision the result was recorded against.
        recorded_at: When the result was recorded.
    """

    __tablename__ = "stage_results"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    change_id: Mapped[str] = mapped_column(
        ForeignKey("changes.id"), nullable=False, index=True
    )
    stage: Mapped[str] = mapped_column(String(32), nullable=False)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    findings: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class FindingResolutionRecord(Base):
    """Marks a finding as resolved without touching the result that reported it.

    Attributes:
        seq: Autoincrement insertion order.
        change_id: Foreign key to the change.
        finding_id: ID of the resolved finding.
        note: Optional explanation of the resolution.
        resolved_at: When the finding was resolved.
    """

    __tablename__ = "finding_resolutions"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    change_id: Mapped[str] = mapped_column(
        ForeignKey("changes.id"), nullable=False, index=True
    )
    finding_id: Mapped[str] = mapped_column(String(36), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
