"""Change model for Reviewgate.

Stores the lifecycle state of each change under review. Blockers attached
by the gate are kept as JSON so a change can be shown with its open issues
without re-evaluating the gate.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from reviewgate.database.models.base import Base, TimestampMixin


class ChangeRecord(TimestampMixin, Base):
    """A persisted change.

    Attributes:
        id: UUID string primary key, generated by the application.
        description: What the change does.
        classification: ChangeClassification value.
        state: ChangeState value.
        revision: Implement-then-review round counter.
        open_blockers: Serialized blockers from the last closed gate.
        opened_at: When work on the change began.
        closed_at: When the change reached a terminal state.
        close_reason: Why the change was abandoned.
    """

    __tablename__ = "changes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    classification: Mapped[str] = mapped_column(String(32), nullable=False)
    state: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    open_blockers: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    close_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
