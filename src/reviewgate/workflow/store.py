"""StageResult store: append-only persistence for changes and stage results.

Two backends share the ``StageResultStore`` protocol:

- InMemoryStageResultStore keeps everything in dictionaries. It suits tests
  and callers that embed the engine in a single process.
- SqlStageResultStore persists through SQLAlchemy so the CLI and HTTP API
  share state across processes.

Stage results are never updated or deleted. Recording a new result for a
stage supersedes the previous one for gate purposes; ``latest`` always
returns the most recently recorded result.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewgate.database.models import ChangeRecord, StageResultRecord, as_utc
from reviewgate.database.queries import (
    get_change_record,
    get_latest_stage_result,
    insert_change,
    insert_finding_resolution,
    insert_stage_result,
    list_change_records,
    list_resolved_finding_ids,
    list_stage_results,
    update_change_record,
)
from reviewgate.workflow.errors import ChangeNotFoundError
from reviewgate.workflow.models import (
    Blocker,
    Change,
    ChangeClassification,
    ChangeState,
    Finding,
    StageName,
    StageOutcome,
    StageResult,
)

logger = structlog.get_logger(__name__)


@runtime_checkable
class StageResultStore(Protocol):
    """Persistence contract for changes, stage results and resolutions."""

    async def add_change(self, change: Change) -> Change: ...

    async def get_change(self, change_id: str) -> Change | None: ...

    async def save_change(self, change: Change) -> Change: ...

    async def list_changes(self, state: ChangeState | None = None) -> list[Change]: ...

    async def record(
        self,
        change_id: str,
        stage: StageName,
        outcome: StageOutcome,
        findings: Iterable[Finding] = (),
        reason: str | None = None,
        revision: int = 0,
    ) -> StageResult: ...

    async def latest(self, change_id: str, stage: StageName) -> StageResult | None: ...

    async def latest_results(self, change_id: str) -> dict[StageName, StageResult]: ...

    async def history(
        self, change_id: str, stage: StageName | None = None
    ) -> list[StageResult]: ...

    async def resolve_finding(
        self, change_id: str, finding_id: str, note: str | None = None
    ) -> None: ...

    async def resolved_finding_ids(self, change_id: str) -> set[str]: ...


class InMemoryStageResultStore:
    """Dictionary-backed store.

    Changes are copied on the way in and out so callers cannot mutate
    stored state without going through ``save_change``.
    """

    def __init__(self) -> None:
        self._changes: dict[str, Change] = {}
        self._results: dict[str, list[StageResult]] = {}
        self._resolutions: dict[str, dict[str, str | None]] = {}

    async def add_change(self, change: Change) -> Change:
        self._changes[change.id] = change.model_copy(deep=True)
        self._results.setdefault(change.id, [])
        logger.debug("change_stored", change_id=change.id, backend="memory")
        return change

    async def get_change(self, change_id: str) -> Change | None:
        change = self._changes.get(change_id)
        return change.model_copy(deep=True) if change is not None else None

    async def save_change(self, change: Change) -> Change:
        if change.id not in self._changes:
            raise ChangeNotFoundError(change.id)
        self._changes[change.id] = change.model_copy(deep=True)
        return change

    async def list_changes(self, state: ChangeState | None = None) -> list[Change]:
        changes = [
            c.model_copy(deep=True)
            for c in self._changes.values()
            if state is None or c.state == state
        ]
        changes.sort(key=lambda c: c.created_at)
        return changes

    async def record(
        self,
        change_id: str,
        stage: StageName,
        outcome: StageOutcome,
        findings: Iterable[Finding] = (),
        reason: str | None = None,
        revision: int = 0,
    ) -> StageResult:
        if change_id not in self._changes:
            raise ChangeNotFoundError(change_id)
        result = StageResult(
            change_id=change_id,
            stage=stage,
            outcome=outcome,
            findings=tuple(findings),
            reason=reason,
            revision=revision,
        )
        self._results[change_id].append(result)
        logger.debug(
            "stage_result_stored",
            change_id=change_id,
            stage=stage.value,
            outcome=outcome.value,
            backend="memory",
        )
        return result

    async def latest(self, change_id: str, stage: StageName) -> StageResult | None:
        for result in reversed(self._results.get(change_id, [])):
            if result.stage == stage:
                return result
        return None

    async def latest_results(self, change_id: str) -> dict[StageName, StageResult]:
        latest: dict[StageName, StageResult] = {}
        for result in self._results.get(change_id, []):
            latest[result.stage] = result
        return latest

    async def history(
        self, change_id: str, stage: StageName | None = None
    ) -> list[StageResult]:
        return [
            r
            for r in self._results.get(change_id, [])
            if stage is None or r.stage == stage
        ]

    async def resolve_finding(
        self, change_id: str, finding_id: str, note: str | None = None
    ) -> None:
        if change_id not in self._changes:
            raise ChangeNotFoundError(change_id)
        self._resolutions.setdefault(change_id, {})[finding_id] = note

    async def resolved_finding_ids(self, change_id: str) -> set[str]:
        return set(self._resolutions.get(change_id, {}))


# ---------------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------------


def _change_from_record(record: ChangeRecord) -> Change:
    return Change(
        id=record.id,
        description=record.description,
        classification=ChangeClassification(record.classification),
        state=ChangeState(record.state),
        revision=record.revision,
        open_blockers=[Blocker.model_validate(b) for b in record.open_blockers or []],
        created_at=as_utc(record.opened_at),
        updated_at=as_utc(record.updated_at) or as_utc(record.opened_at),
        closed_at=as_utc(record.closed_at),
        close_reason=record.close_reason,
    )


def _result_from_record(record: StageResultRecord) -> StageResult:
    return StageResult(
        id=record.id,
        change_id=record.change_id,
        stage=StageName(record.stage),
        outcome=StageOutcome(record.outcome),
        findings=tuple(Finding.model_validate(f) for f in record.findings or []),
        reason=record.reason,
        revision=record.revision,
        recorded_at=as_utc(record.recorded_at),
    )


class SqlStageResultStore:
    """SQLAlchemy-backed store.

    Each operation opens its own session from the factory, so the store is
    safe to share between concurrently running review tasks.

    Attributes:
        session_factory: Factory producing AsyncSession instances.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def add_change(self, change: Change) -> Change:
        async with self.session_factory() as session:
            await insert_change(
                session,
                change_id=change.id,
                description=change.description,
                classification=change.classification.value,
                state=change.state.value,
                opened_at=change.created_at,
                revision=change.revision,
            )
        logger.debug("change_stored", change_id=change.id, backend="sql")
        return change

    async def get_change(self, change_id: str) -> Change | None:
        async with self.session_factory() as session:
            record = await get_change_record(session, change_id)
        return _change_from_record(record) if record is not None else None

    async def save_change(self, change: Change) -> Change:
        async with self.session_factory() as session:
            record = await update_change_record(
                session,
                change.id,
                state=change.state.value,
                revision=change.revision,
                open_blockers=[b.model_dump(mode="json") for b in change.open_blockers],
                closed_at=change.closed_at,
                close_reason=change.close_reason,
            )
        if record is None:
            raise ChangeNotFoundError(change.id)
        return change

    async def list_changes(self, state: ChangeState | None = None) -> list[Change]:
        async with self.session_factory() as session:
            records = await list_change_records(
                session, state=state.value if state is not None else None
            )
        return [_change_from_record(r) for r in records]

    async def record(
        self,
        change_id: str,
        stage: StageName,
        outcome: StageOutcome,
        findings: Iterable[Finding] = (),
        reason: str | None = None,
        revision: int = 0,
    ) -> StageResult:
        result = StageResult(
            change_id=change_id,
            stage=stage,
            outcome=outcome,
            findings=tuple(findings),
            reason=reason,
            revision=revision,
        )
        async with self.session_factory() as session:
            if await get_change_record(session, change_id) is None:
                raise ChangeNotFoundError(change_id)
            await session.commit()
            await insert_stage_result(
                session,
                result_id=result.id,
                change_id=change_id,
                stage=stage.value,
                outcome=outcome.value,
                findings=[f.model_dump(mode="json") for f in result.findings],
                reason=reason,
                revision=revision,
                recorded_at=result.recorded_at,
            )
        logger.debug(
            "stage_result_stored",
            change_id=change_id,
            stage=stage.value,
            outcome=outcome.value,
            backend="sql",
        )
        return result

    async def latest(self, change_id: str, stage: StageName) -> StageResult | None:
        async with self.session_factory() as session:
            record = await get_latest_stage_result(session, change_id, stage.value)
        return _result_from_record(record) if record is not None else None

    async def latest_results(self, change_id: str) -> dict[StageName, StageResult]:
        latest: dict[StageName, StageResult] = {}
        for result in await self.history(change_id):
            latest[result.stage] = result
        return latest

    async def history(
        self, change_id: str, stage: StageName | None = None
    ) -> list[StageResult]:
        async with self.session_factory() as session:
            records = await list_stage_results(
                session, change_id, stage.value if stage is not None else None
            )
        return [_result_from_record(r) for r in records]

    async def resolve_finding(
        self, change_id: str, finding_id: str, note: str | None = None
    ) -> None:
        async with self.session_factory() as session:
            if await get_change_record(session, change_id) is None:
                raise ChangeNotFoundError(change_id)
            await session.commit()
            await insert_finding_resolution(
                session,
                change_id=change_id,
                finding_id=finding_id,
                note=note,
                resolved_at=datetime.now(timezone.utc),
            )

    async def resolved_finding_ids(self, change_id: str) -> set[str]:
        async with self.session_factory() as session:
            return await list_resolved_finding_ids(session, change_id)
