"""Change query functions for Reviewgate.

Provides async functions for inserting, reading, updating, and listing
ChangeRecord rows.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reviewgate.database.models.change import ChangeRecord

logger = structlog.get_logger(__name__)


async def insert_change(
    session: AsyncSession,
    change_id: str,
    description: str,
    classification: str,
    state: str,
    opened_at: datetime,
    revision: int = 0,
) -> ChangeRecord:
    """Insert a new change row.

    Args:
        session: Active async database session.
        change_id: UUID string of the change.
        description: What the change does.
        classification: ChangeClassification value.
        state: Initial ChangeState value.
        opened_at: When work on the change began.
        revision: Initial revision counter.

    Returns:
        The newly created ChangeRecord.
    """
    record = ChangeRecord(
        id=change_id,
        description=description,
        classification=classification,
        state=state,
        revision=revision,
        open_blockers=[],
        opened_at=opened_at,
    )

    async with session.begin():
        session.add(record)
        await session.flush()

    logger.debug("change_row_inserted", change_id=change_id, state=state)
    return record


async def get_change_record(session: AsyncSession, change_id: str) -> ChangeRecord | None:
    """Fetch a change row by ID.

    Args:
        session: Active async database session.
        change_id: UUID string of the change.

    Returns:
        The ChangeRecord, or None if it does not exist.
    """
    result = await session.execute(select(ChangeRecord).where(ChangeRecord.id == change_id))
    return result.scalar_one_or_none()


async def update_change_record(
    session: AsyncSession,
    change_id: str,
    **values: Any,
) -> ChangeRecord | None:
    """Update mutable columns of a change row.

    Args:
        session: Active async database session.
        change_id: UUID string of the change.
        **values: Column values to set (state, revision, open_blockers,
            closed_at, close_reason).

    Returns:
        The updated ChangeRecord, or None if it does not exist.
    """
    async with session.begin():
        result = await session.execute(
            select(ChangeRecord).where(ChangeRecord.id == change_id)
        )
        record = result.scalar_one_or_none()
        if record is None:
            return None
        for key, value in values.items():
            setattr(record, key, value)
        await session.flush()

    logger.debug("change_row_updated", change_id=change_id, fields=sorted(values))
    return record


async def list_change_records(
    session: AsyncSession,
    state: str | None = None,
) -> list[ChangeRecord]:
    """List change rows, oldest first.

    Args:
        session: Active async database session.
        state: Optional ChangeState value to filter by.

    Returns:
        List of ChangeRecord rows.
    """
    stmt = select(ChangeRecord)
    if state is not None:
        stmt = stmt.where(ChangeRecord.state == state)
    stmt = stmt.order_by(ChangeRecord.opened_at.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())
