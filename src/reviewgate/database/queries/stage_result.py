"""Stage result query functions for Reviewgate.

Stage results and finding resolutions are append-only: these functions
insert and read rows but never update or delete them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reviewgate.database.models.stage_result import (
    FindingResolutionRecord,
    StageResultRecord,
)

logger = structlog.get_logger(__name__)


async def insert_stage_result(
    session: AsyncSession,
    result_id: str,
    change_id: str,
    stage: str,
    outcome: str,
    findings: list[dict[str, Any]],
    reason: str | None,
    revision: int,
    recorded_at: datetime,
) -> StageResultRecord:
    """Append a stage result row.

    Args:
        session: Active async database session.
        result_id: UUID string of the result.
        change_id: UUID string of the change.
        stage: StageName value.
        outcome: StageOutcome value.
        findings: Serialized findings.
        reason: Free-text context for the outcome.
        revision: Change revision the result belongs to.
        recorded_at: When the result was recorded.

    Returns:
        The inserted StageResultRecord.
    """
    record = StageResultRecord(
        id=result_id,
        change_id=change_id,
        stage=stage,
        outcome=outcome,
        findings=findings,
        reason=reason,
        revision=revision,
        recorded_at=recorded_at,
    )

    async with session.begin():
        session.add(record)
        await session.flush()

    logger.debug(
        "stage_result_row_inserted",
        change_id=change_id,
        stage=stage,
        outcome=outcome,
        seq=record.seq,
    )
    return record


async def get_latest_stage_result(
    session: AsyncSession,
    change_id: str,
    stage: str,
) -> StageResultRecord | None:
    """Fetch the most recently inserted result for a change and stage.

    Args:
        session: Active async database session.
        change_id: UUID string of the change.
        stage: StageName value.

    Returns:
        The latest StageResultRecord, or None if the stage never ran.
    """
    stmt = (
        select(StageResultRecord)
        .where(StageResultRecord.change_id == change_id)
        .where(StageResultRecord.stage == stage)
        .order_by(StageResultRecord.seq.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_stage_results(
    session: AsyncSession,
    change_id: str,
    stage: str | None = None,
) -> list[StageResultRecord]:
    """List results for a change in insertion order.

    Args:
        session: Active async database session.
        change_id: UUID string of the change.
        stage: Optional StageName value to filter by.

    Returns:
        List of StageResultRecord rows, oldest first.
    """
    stmt = select(StageResultRecord).where(StageResultRecord.change_id == change_id)
    if stage is not None:
        stmt = stmt.where(StageResultRecord.stage == stage)
    stmt = stmt.order_by(StageResultRecord.seq.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def insert_finding_resolution(
    session: AsyncSession,
    change_id: str,
    finding_id: str,
    note: str | None,
    resolved_at: datetime,
) -> FindingResolutionRecord:
    """Append a finding resolution row.

    Args:
        session: Active async database session.
        change_id: UUID string of the change.
        finding_id: ID of the finding being resolved.
        note: Optional explanation.
        resolved_at: When the finding was resolved.

    Returns:
        The inserted FindingResolutionRecord.
    """
    record = FindingResolutionRecord(
        change_id=change_id,
        finding_id=finding_id,
        note=note,
        resolved_at=resolved_at,
    )

    async with session.begin():
        session.add(record)
        await session.flush()

    logger.debug("finding_resolution_inserted", change_id=change_id, finding_id=finding_id)
    return record


async def list_resolved_finding_ids(session: AsyncSession, change_id: str) -> set[str]:
    """Return the IDs of every resolved finding for a change."""
    stmt = select(FindingResolutionRecord.finding_id).where(
        FindingResolutionRecord.change_id == change_id
    )
    result = await session.execute(stmt)
    return {row[0] for row in result.all()}
