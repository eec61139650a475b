"""Workflow orchestration for changes under review.

The orchestrator drives each change through its lifecycle:
    IMPLEMENTING -> AWAITING_REVIEW -> REVIEWING -> APPROVED | REVISE_NEEDED

Review stages are independent: ``run_reviews`` dispatches them as
concurrent asyncio tasks, each bounded by a timeout, and joins on all of
them before asking the gate for a verdict. A stage that times out or whose
reviewer raises is recorded as blocked. Abandoning a change cancels its
in-flight review tasks; a cancelled task records nothing, and a stage that
finishes after its change was closed, by this process or by another one
sharing the store, is discarded.

Mutations of a single change are serialized with a per-change lock. The
lock is released while review tasks run so that ``abandon`` can interrupt
them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

import structlog

from reviewgate.workflow.errors import (
    ChangeNotFoundError,
    FindingNotFoundError,
    GateClosedError,
    InvalidChangeTransitionError,
    ReviewerNotConfiguredError,
    ReviewInProgressError,
    RevisionLimitExceededError,
)
from reviewgate.workflow.gate import GateEvaluator, GatePolicy, decision_errors
from reviewgate.workflow.models import (
    REVIEW_STAGES,
    Change,
    ChangeClassification,
    ChangeState,
    Finding,
    GateDecision,
    StageName,
    StageOutcome,
    StageResult,
)
from reviewgate.workflow.reviewers import Reviewer, StageReport, build_reviewers
from reviewgate.workflow.state_machine import transition
from reviewgate.workflow.store import StageResultStore

if TYPE_CHECKING:
    from reviewgate.config import ReviewgateConfig

logger = structlog.get_logger(__name__)


class WorkflowOrchestrator:
    """Runs changes through implementation, review, and the commit gate.

    Attributes:
        store: Persistence for changes and stage results.
        evaluator: The gate evaluator.
        reviewers: Reviewer per review stage, used by ``run_reviews``.
        stage_timeout_seconds: Time limit for a single review stage.
        max_revisions: Revise-and-resubmit rounds allowed per change.
    """

    def __init__(
        self,
        store: StageResultStore,
        policy: GatePolicy | None = None,
        reviewers: Mapping[StageName, Reviewer] | None = None,
        stage_timeout_seconds: float = 900.0,
        max_revisions: int = 5,
    ) -> None:
        self.store = store
        self.evaluator = GateEvaluator(store, policy)
        self.reviewers: dict[StageName, Reviewer] = dict(reviewers or {})
        self.stage_timeout_seconds = stage_timeout_seconds
        self.max_revisions = max_revisions

        self._locks: dict[str, asyncio.Lock] = {}
        self._inflight: dict[str, dict[StageName, asyncio.Task[StageResult | None]]] = {}
        self._logger = logger.bind(component="WorkflowOrchestrator")

    @classmethod
    def from_config(
        cls,
        config: ReviewgateConfig,
        store: StageResultStore,
    ) -> WorkflowOrchestrator:
        """Build an orchestrator from the application configuration.

        Args:
            config: Root configuration.
            store: Store to persist changes and results in.

        Returns:
            Configured WorkflowOrchestrator.
        """
        return cls(
            store=store,
            policy=GatePolicy.from_config(config.gate),
            reviewers=build_reviewers(config.review),
            stage_timeout_seconds=config.review.stage_timeout_seconds,
            max_revisions=config.review.max_revisions,
        )

    @property
    def policy(self) -> GatePolicy:
        return self.evaluator.policy

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock(self, change_id: str) -> asyncio.Lock:
        lock = self._locks.get(change_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[change_id] = lock
        return lock

    def _forget(self, change_id: str) -> None:
        """Drop per-change bookkeeping once a change is closed."""
        self._locks.pop(change_id, None)
        self._inflight.pop(change_id, None)

    async def _load(self, change_id: str) -> Change:
        change = await self.store.get_change(change_id)
        if change is None:
            raise ChangeNotFoundError(change_id)
        return change

    def review_stages_for(self, change: Change) -> list[StageName]:
        """Review stages the gate requires for a change, in workflow order."""
        required = self.policy.stages_for(change)
        return [s for s in REVIEW_STAGES if s in required]

    def in_flight(self, change_id: str) -> list[StageName]:
        """Review stages of a change whose tasks have not finished yet."""
        tasks = self._inflight.get(change_id, {})
        return [stage for stage, task in tasks.items() if not task.done()]

    def _start_revision(self, change: Change) -> None:
        if change.revision >= self.max_revisions:
            self._logger.warning(
                "revision_limit_exceeded",
                change_id=change.id,
                revision=change.revision,
                limit=self.max_revisions,
            )
            raise RevisionLimitExceededError(change.id, self.max_revisions)
        transition(change, ChangeState.IMPLEMENTING)
        change.revision += 1

    async def _finalize_review(self, change: Change) -> Change:
        decision = await self.evaluator.evaluate(change)
        if decision.allowed:
            transition(change, ChangeState.APPROVED)
            change.open_blockers = []
        else:
            transition(change, ChangeState.REVISE_NEEDED)
            change.open_blockers = list(decision.blockers)
        await self.store.save_change(change)

        self._logger.info(
            "review_round_completed",
            change_id=change.id,
            revision=change.revision,
            allowed=decision.allowed,
            blocking_reasons=decision.blocking_reasons,
        )
        return change

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_change(
        self,
        description: str,
        classification: ChangeClassification = ChangeClassification.NON_TRIVIAL,
    ) -> Change:
        """Open a new change in IMPLEMENTING state.

        Args:
            description: What the change does.
            classification: Trivial fix or non-trivial.

        Returns:
            The created Change.
        """
        change = Change(description=description, classification=classification)
        await self.store.add_change(change)

        self._logger.info(
            "change_created",
            change_id=change.id,
            classification=classification.value,
            required_stages=[s.value for s in self.policy.stages_for(change)],
        )
        return change

    async def get_change(self, change_id: str) -> Change:
        """Fetch a change.

        Raises:
            ChangeNotFoundError: If the change does not exist.
        """
        return await self._load(change_id)

    async def list_changes(self, state: ChangeState | None = None) -> list[Change]:
        """List changes, oldest first, optionally filtered by state."""
        return await self.store.list_changes(state)

    async def record_implementation(
        self,
        change_id: str,
        outcome: StageOutcome,
        findings: Iterable[Finding] = (),
        reason: str | None = None,
    ) -> Change:
        """Record the outcome of the implementation stage.

        A change in REVISE_NEEDED starts a new revision first. On a pass,
        the change moves to AWAITING_REVIEW, or straight to APPROVED when
        the gate requires no review stages and already allows it. A failing
        implementation leaves the change in IMPLEMENTING.

        Args:
            change_id: The change.
            outcome: Implementation outcome.
            findings: Findings reported by the implementation stage.
            reason: Free-text context.

        Returns:
            The updated Change.

        Raises:
            ChangeNotFoundError: If the change does not exist.
            InvalidChangeTransitionError: If the change is past implementation.
            RevisionLimitExceededError: If a new revision would exceed the limit.
        """
        async with self._lock(change_id):
            change = await self._load(change_id)
            if change.state == ChangeState.REVISE_NEEDED:
                self._start_revision(change)
            if change.state != ChangeState.IMPLEMENTING:
                raise InvalidChangeTransitionError(
                    change.state, ChangeState.AWAITING_REVIEW, change.id
                )

            await self.store.record(
                change.id,
                StageName.IMPLEMENTATION,
                outcome,
                findings,
                reason=reason,
                revision=change.revision,
            )
            self._logger.info(
                "stage_result_recorded",
                change_id=change.id,
                stage=StageName.IMPLEMENTATION.value,
                outcome=outcome.value,
                revision=change.revision,
            )

            if outcome == StageOutcome.PASS:
                if self.review_stages_for(change):
                    transition(change, ChangeState.AWAITING_REVIEW)
                else:
                    decision = await self.evaluator.evaluate(change)
                    if decision.allowed:
                        transition(change, ChangeState.APPROVED)
                        change.open_blockers = []
                    else:
                        change.open_blockers = list(decision.blockers)

            await self.store.save_change(change)
            return change

    async def begin_revision(self, change_id: str) -> Change:
        """Send a change in REVISE_NEEDED back to IMPLEMENTING.

        Raises:
            ChangeNotFoundError: If the change does not exist.
            InvalidChangeTransitionError: If the change is not in REVISE_NEEDED.
            RevisionLimitExceededError: If the revision limit is reached.
        """
        async with self._lock(change_id):
            change = await self._load(change_id)
            if change.state != ChangeState.REVISE_NEEDED:
                raise InvalidChangeTransitionError(
                    change.state, ChangeState.IMPLEMENTING, change.id
                )
            self._start_revision(change)
            await self.store.save_change(change)
            return change

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    async def _run_stage(self, change: Change, reviewer: Reviewer) -> StageResult | None:
        """Run one reviewer and record its result.

        Returns None when the change was closed while the reviewer ran.
        """
        stage = reviewer.stage
        structlog.contextvars.bind_contextvars(change_id=change.id, stage=stage.value)
        try:
            report = await asyncio.wait_for(
                reviewer.review(change),
                timeout=self.stage_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._logger.warning(
                "review_stage_timeout",
                change_id=change.id,
                stage=stage.value,
                timeout_seconds=self.stage_timeout_seconds,
            )
            report = StageReport(
                outcome=StageOutcome.BLOCKED,
                reason=f"no verdict within {self.stage_timeout_seconds:g} seconds",
            )
        except asyncio.CancelledError:
            self._logger.info("review_stage_cancelled", change_id=change.id, stage=stage.value)
            raise
        except Exception as e:
            self._logger.exception(
                "review_stage_error",
                change_id=change.id,
                stage=stage.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            report = StageReport(
                outcome=StageOutcome.BLOCKED,
                reason=f"reviewer error: {type(e).__name__}: {e}",
            )

        # Another process sharing the store may have closed the change.
        async with self._lock(change.id):
            current = await self.store.get_change(change.id)
            if current is None or current.is_closed:
                self._logger.info(
                    "stage_result_discarded",
                    change_id=change.id,
                    stage=stage.value,
                    reason="change closed",
                )
                return None

            result = await self.store.record(
                change.id,
                stage,
                report.outcome,
                report.findings,
                reason=report.reason,
                revision=change.revision,
            )

        self._logger.info(
            "stage_result_recorded",
            change_id=change.id,
            stage=stage.value,
            outcome=report.outcome.value,
            finding_count=len(report.findings),
            revision=change.revision,
        )
        return result

    async def run_reviews(self, change_id: str) -> Change:
        """Run every required review stage concurrently and apply the gate.

        Moves the change from AWAITING_REVIEW to REVIEWING, dispatches one
        task per review stage, waits for all of them, and then transitions
        to APPROVED or REVISE_NEEDED. If the change is abandoned meanwhile,
        the abandoned change is returned untouched.

        Args:
            change_id: The change to review.

        Returns:
            The updated Change.

        Raises:
            ChangeNotFoundError: If the change does not exist.
            InvalidChangeTransitionError: If the change is not awaiting review.
            ReviewerNotConfiguredError: If a required stage has no reviewer.
        """
        async with self._lock(change_id):
            change = await self._load(change_id)
            if change.state != ChangeState.AWAITING_REVIEW:
                raise InvalidChangeTransitionError(
                    change.state, ChangeState.REVIEWING, change.id
                )
            stages = self.review_stages_for(change)
            for stage in stages:
                if stage not in self.reviewers:
                    raise ReviewerNotConfiguredError(stage)

            transition(change, ChangeState.REVIEWING)
            await self.store.save_change(change)

            snapshot = change.model_copy(deep=True)
            tasks = {
                stage: asyncio.create_task(
                    self._run_stage(snapshot, self.reviewers[stage]),
                    name=f"review-{change.id[:8]}-{stage.value}",
                )
                for stage in stages
            }
            self._inflight[change.id] = tasks

        self._logger.info(
            "review_stages_dispatched",
            change_id=change.id,
            stages=[s.value for s in stages],
            revision=change.revision,
        )

        try:
            outcomes = await asyncio.gather(*tasks.values(), return_exceptions=True)
        finally:
            self._inflight.pop(change.id, None)

        async with self._lock(change_id):
            change = await self._load(change_id)
            if not change.is_closed:
                for stage, outcome in zip(tasks, outcomes):
                    if isinstance(outcome, BaseException):
                        self._logger.error(
                            "review_stage_unrecorded",
                            change_id=change.id,
                            stage=stage.value,
                            error=str(outcome),
                            error_type=type(outcome).__name__,
                        )
                return await self._finalize_review(change)

        self._logger.info(
            "review_round_discarded",
            change_id=change.id,
            state=change.state.value,
        )
        self._forget(change_id)
        return change

    async def submit_review(
        self,
        change_id: str,
        stage: StageName,
        outcome: StageOutcome,
        findings: Iterable[Finding] = (),
        reason: str | None = None,
    ) -> Change:
        """Record a review result produced outside the orchestrator.

        The first submission moves the change from AWAITING_REVIEW to
        REVIEWING. Once every required review stage has reported for the
        current revision, the gate is applied.

        Args:
            change_id: The change.
            stage: A review stage.
            outcome: Review outcome.
            findings: Findings reported by the reviewer.
            reason: Free-text context.

        Returns:
            The updated Change.

        Raises:
            ValueError: If ``stage`` is not a review stage.
            ChangeNotFoundError: If the change does not exist.
            InvalidChangeTransitionError: If the change is not under review.
            ReviewInProgressError: If ``run_reviews`` is running for the change.
        """
        if stage not in REVIEW_STAGES:
            raise ValueError(f"{stage.value} is not a review stage")

        async with self._lock(change_id):
            change = await self._load(change_id)
            if self.in_flight(change_id):
                raise ReviewInProgressError(change_id)
            if change.state == ChangeState.AWAITING_REVIEW:
                transition(change, ChangeState.REVIEWING)
                await self.store.save_change(change)
            elif change.state != ChangeState.REVIEWING:
                raise InvalidChangeTransitionError(
                    change.state, ChangeState.REVIEWING, change.id
                )

            await self.store.record(
                change.id, stage, outcome, findings, reason=reason, revision=change.revision
            )
            self._logger.info(
                "stage_result_recorded",
                change_id=change.id,
                stage=stage.value,
                outcome=outcome.value,
                revision=change.revision,
                source="submitted",
            )

            latest = await self.store.latest_results(change.id)
            pending = [
                s
                for s in self.review_stages_for(change)
                if s not in latest or latest[s].revision != change.revision
            ]
            if pending:
                self._logger.info(
                    "review_round_awaiting_results",
                    change_id=change.id,
                    pending=[s.value for s in pending],
                )
                return change

            return await self._finalize_review(change)

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    async def evaluate(self, change_id: str) -> GateDecision:
        """Evaluate the gate for a change as it stands now."""
        change = await self._load(change_id)
        return await self.evaluator.evaluate(change)

    async def resolve_finding(
        self,
        change_id: str,
        finding_id: str,
        note: str | None = None,
    ) -> GateDecision:
        """Mark a reported finding as resolved and re-evaluate the gate.

        Raises:
            ChangeNotFoundError: If the change does not exist.
            FindingNotFoundError: If no stage of the change reported the finding.
        """
        change = await self._load(change_id)
        reported = {
            f.id for result in await self.store.history(change_id) for f in result.findings
        }
        if finding_id not in reported:
            raise FindingNotFoundError(change_id, finding_id)

        await self.store.resolve_finding(change_id, finding_id, note)
        self._logger.info("finding_resolved", change_id=change_id, finding_id=finding_id)
        return await self.evaluator.evaluate(change)

    async def commit(self, change_id: str) -> Change:
        """Commit an approved change.

        The gate is evaluated again so results recorded after approval are
        taken into account.

        Raises:
            ChangeNotFoundError: If the change does not exist.
            InvalidChangeTransitionError: If the change is not approved.
            GateClosedError: If the gate no longer allows the change.
        """
        async with self._lock(change_id):
            change = await self._load(change_id)
            if change.state != ChangeState.APPROVED:
                raise InvalidChangeTransitionError(
                    change.state, ChangeState.COMMITTED, change.id
                )
            decision = await self.evaluator.evaluate(change)
            if not decision.allowed:
                self._logger.warning(
                    "commit_refused",
                    change_id=change.id,
                    blocking_reasons=decision.blocking_reasons,
                )
                raise GateClosedError(decision, decision_errors(decision))

            transition(change, ChangeState.COMMITTED)
            await self.store.save_change(change)

        self._forget(change_id)
        self._logger.info("change_committed", change_id=change.id, revision=change.revision)
        return change

    async def abandon(self, change_id: str, reason: str | None = None) -> Change:
        """Withdraw a change from any non-terminal state.

        The change is closed first, then any review tasks still running for
        it are cancelled and awaited; none of them records a result
        afterwards.

        Raises:
            ChangeNotFoundError: If the change does not exist.
            InvalidChangeTransitionError: If the change is already closed.
        """
        async with self._lock(change_id):
            change = await self._load(change_id)
            if change.is_closed:
                raise InvalidChangeTransitionError(
                    change.state, ChangeState.ABANDONED, change.id
                )
            transition(change, ChangeState.ABANDONED)
            change.close_reason = reason
            await self.store.save_change(change)

        pending = [t for t in self._inflight.get(change_id, {}).values() if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            self._logger.info(
                "review_stages_cancelled",
                change_id=change_id,
                count=len(pending),
            )
            await asyncio.gather(*pending, return_exceptions=True)

        self._forget(change_id)
        self._logger.info("change_abandoned", change_id=change_id, reason=reason)
        return change
