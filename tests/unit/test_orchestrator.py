"""Unit tests for the workflow orchestrator.

Tests cover:
- Change creation and the implementation stage
- Concurrent review runs and the resulting transitions
- Stage timeouts and reviewer errors recorded as blocked
- The revise-and-resubmit loop and its revision limit
- Externally submitted reviews
- Commit gating and abandonment with cancellation of in-flight reviews
"""

from __future__ import annotations

import asyncio

import pytest
from fakes import ScriptedReviewer, failing_report, passing_reviewers

from reviewgate.config import GateConfig, ReviewConfig, ReviewgateConfig
from reviewgate.workflow import (
    REVIEW_STAGES,
    BlockerKind,
    ChangeClassification,
    ChangeNotFoundError,
    ChangeState,
    CommandReviewer,
    Finding,
    FindingNotFoundError,
    FindingSeverity,
    GateClosedError,
    InMemoryStageResultStore,
    InvalidChangeTransitionError,
    ReviewerNotConfiguredError,
    ReviewInProgressError,
    RevisionLimitExceededError,
    StageFailed,
    StageName,
    StageOutcome,
    WorkflowOrchestrator,
)


def critical(title: str = "Hard-coded credentials") -> Finding:
    return Finding(severity=FindingSeverity.CRITICAL, title=title)


async def ready_for_review(orchestrator: WorkflowOrchestrator, description: str = "Add OAuth"):
    change = await orchestrator.create_change(description)
    return await orchestrator.record_implementation(change.id, StageOutcome.PASS)


class TestFromConfig:
    """Test building the orchestrator from configuration."""

    def test_from_config(self):
        """Policy, reviewers, timeout and revision limit come from config."""
        config = ReviewgateConfig(
            gate=GateConfig(required_stages=["implementation", "qa-review"]),
            review=ReviewConfig(
                stage_timeout_seconds=30,
                max_revisions=2,
                commands={"qa-review": "pytest -q"},
            ),
        )

        orchestrator = WorkflowOrchestrator.from_config(config, InMemoryStageResultStore())

        assert orchestrator.policy.required_stages == [
            StageName.IMPLEMENTATION,
            StageName.QA_REVIEW,
        ]
        assert isinstance(orchestrator.reviewers[StageName.QA_REVIEW], CommandReviewer)
        assert orchestrator.stage_timeout_seconds == 30
        assert orchestrator.max_revisions == 2


class TestImplementation:
    """Test change creation and the implementation stage."""

    @pytest.mark.asyncio
    async def test_create_change(self, orchestrator):
        """A new change starts implementing at revision 0 and is stored."""
        change = await orchestrator.create_change("Add OAuth")

        assert change.state == ChangeState.IMPLEMENTING
        assert change.revision == 0
        assert (await orchestrator.get_change(change.id)).description == "Add OAuth"

    @pytest.mark.asyncio
    async def test_get_unknown_change(self, orchestrator):
        """Unknown changes raise ChangeNotFoundError."""
        with pytest.raises(ChangeNotFoundError):
            await orchestrator.get_change("missing")

    @pytest.mark.asyncio
    async def test_passing_implementation_awaits_review(self, orchestrator):
        """A passing implementation moves a non-trivial change to review."""
        change = await ready_for_review(orchestrator)
        assert change.state == ChangeState.AWAITING_REVIEW

    @pytest.mark.asyncio
    async def test_failing_implementation_stays_implementing(self, orchestrator, store):
        """A failing implementation is recorded and the change stays put."""
        change = await orchestrator.create_change("Add OAuth")

        updated = await orchestrator.record_implementation(
            change.id, StageOutcome.FAIL, reason="tests do not compile"
        )

        assert updated.state == ChangeState.IMPLEMENTING
        latest = await store.latest(change.id, StageName.IMPLEMENTATION)
        assert latest.outcome == StageOutcome.FAIL
        assert latest.reason == "tests do not compile"

    @pytest.mark.asyncio
    async def test_trivial_fix_approved_after_implementation(self, orchestrator):
        """A trivial fix is approved as soon as its implementation passes."""
        change = await orchestrator.create_change(
            "Fix typo", ChangeClassification.TRIVIAL_FIX
        )

        updated = await orchestrator.record_implementation(change.id, StageOutcome.PASS)

        assert updated.state == ChangeState.APPROVED
        assert (await orchestrator.evaluate(change.id)).allowed is True

    @pytest.mark.asyncio
    async def test_trivial_fix_with_blocking_finding_stays_implementing(self, orchestrator):
        """A trivial fix with a critical finding keeps its blockers and is not approved."""
        change = await orchestrator.create_change(
            "Fix typo", ChangeClassification.TRIVIAL_FIX
        )

        updated = await orchestrator.record_implementation(
            change.id, StageOutcome.PASS, [critical()]
        )

        assert updated.state == ChangeState.IMPLEMENTING
        assert updated.open_blockers[0].kind == BlockerKind.OPEN_FINDING

    @pytest.mark.asyncio
    async def test_implementation_rejected_after_review_started(self, orchestrator):
        """The implementation stage cannot be recorded while awaiting review."""
        change = await ready_for_review(orchestrator)

        with pytest.raises(InvalidChangeTransitionError):
            await orchestrator.record_implementation(change.id, StageOutcome.PASS)


class TestRunReviews:
    """Test concurrent review runs."""

    @pytest.mark.asyncio
    async def test_all_reviews_pass_approves(self, orchestrator, reviewers, store):
        """Passing reviews approve the change and record one result per stage."""
        change = await ready_for_review(orchestrator)

        updated = await orchestrator.run_reviews(change.id)

        assert updated.state == ChangeState.APPROVED
        assert updated.open_blockers == []
        assert all(r.calls == 1 for r in reviewers.values())
        latest = await store.latest_results(change.id)
        assert set(latest) == set(StageName)
        assert orchestrator.in_flight(change.id) == []

    @pytest.mark.asyncio
    async def test_reviews_run_concurrently(self, store):
        """Stages run in parallel rather than one after another."""
        reviewers = {
            stage: ScriptedReviewer(stage, delay=0.2) for stage in REVIEW_STAGES
        }
        orchestrator = WorkflowOrchestrator(store, reviewers=reviewers)
        change = await ready_for_review(orchestrator)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await orchestrator.run_reviews(change.id)
        elapsed = loop.time() - started

        assert elapsed < 0.5

    @pytest.mark.asyncio
    async def test_security_failure_needs_revision(self, store):
        """A critical security failure sends the change back with security as the blocker."""
        reviewers = passing_reviewers()
        reviewers[StageName.SECURITY_REVIEW] = ScriptedReviewer(
            StageName.SECURITY_REVIEW, failing_report(critical())
        )
        orchestrator = WorkflowOrchestrator(store, reviewers=reviewers)
        change = await ready_for_review(orchestrator)

        updated = await orchestrator.run_reviews(change.id)
        decision = await orchestrator.evaluate(change.id)

        assert updated.state == ChangeState.REVISE_NEEDED
        assert [b.stage for b in updated.open_blockers] == [StageName.SECURITY_REVIEW]
        assert decision.allowed is False
        assert decision.blocking_reasons == ["security-review"]

    @pytest.mark.asyncio
    async def test_timeout_recorded_as_blocked(self, store):
        """A reviewer that exceeds the stage timeout is recorded as blocked."""
        reviewers = passing_reviewers()
        reviewers[StageName.QA_REVIEW] = ScriptedReviewer(StageName.QA_REVIEW, delay=5)
        orchestrator = WorkflowOrchestrator(
            store, reviewers=reviewers, stage_timeout_seconds=0.05
        )
        change = await ready_for_review(orchestrator)

        updated = await orchestrator.run_reviews(change.id)

        result = await store.latest(change.id, StageName.QA_REVIEW)
        assert result.outcome == StageOutcome.BLOCKED
        assert "0.05 seconds" in result.reason
        assert reviewers[StageName.QA_REVIEW].cancelled.is_set()
        assert updated.state == ChangeState.REVISE_NEEDED
        assert updated.open_blockers[0].kind == BlockerKind.BLOCKED

    @pytest.mark.asyncio
    async def test_reviewer_error_recorded_as_blocked(self, store):
        """A reviewer that raises is recorded as blocked, not failed."""
        reviewers = passing_reviewers()
        reviewers[StageName.ARCHITECTURE_REVIEW] = ScriptedReviewer(
            StageName.ARCHITECTURE_REVIEW, error=RuntimeError("model unavailable")
        )
        orchestrator = WorkflowOrchestrator(store, reviewers=reviewers)
        change = await ready_for_review(orchestrator)

        updated = await orchestrator.run_reviews(change.id)

        result = await store.latest(change.id, StageName.ARCHITECTURE_REVIEW)
        assert result.outcome == StageOutcome.BLOCKED
        assert "model unavailable" in result.reason
        assert updated.state == ChangeState.REVISE_NEEDED
        # The other stages still recorded their verdicts
        assert (await store.latest(change.id, StageName.QA_REVIEW)).outcome == StageOutcome.PASS

    @pytest.mark.asyncio
    async def test_missing_reviewer_rejected(self, store):
        """run_reviews refuses to start when a required stage has no reviewer."""
        reviewers = passing_reviewers()
        del reviewers[StageName.QA_REVIEW]
        orchestrator = WorkflowOrchestrator(store, reviewers=reviewers)
        change = await ready_for_review(orchestrator)

        with pytest.raises(ReviewerNotConfiguredError):
            await orchestrator.run_reviews(change.id)

        assert (await orchestrator.get_change(change.id)).state == ChangeState.AWAITING_REVIEW

    @pytest.mark.asyncio
    async def test_run_reviews_requires_awaiting_review(self, orchestrator):
        """Reviews cannot run before the implementation passes."""
        change = await orchestrator.create_change("Add OAuth")

        with pytest.raises(InvalidChangeTransitionError):
            await orchestrator.run_reviews(change.id)


class TestRevisionLoop:
    """Test revise-and-resubmit."""

    @pytest.mark.asyncio
    async def test_revise_and_resubmit_until_approved(self, store):
        """A fixed change is approved on its next review round."""
        reviewers = passing_reviewers()
        security = ScriptedReviewer(StageName.SECURITY_REVIEW, failing_report(critical()))
        reviewers[StageName.SECURITY_REVIEW] = security
        orchestrator = WorkflowOrchestrator(store, reviewers=reviewers)
        change = await ready_for_review(orchestrator)
        await orchestrator.run_reviews(change.id)

        revised = await orchestrator.begin_revision(change.id)
        assert revised.state == ChangeState.IMPLEMENTING
        assert revised.revision == 1

        security.report = ScriptedReviewer(StageName.SECURITY_REVIEW).report
        await orchestrator.record_implementation(change.id, StageOutcome.PASS)
        approved = await orchestrator.run_reviews(change.id)

        assert approved.state == ChangeState.APPROVED
        assert approved.revision == 1
        history = await store.history(change.id, StageName.SECURITY_REVIEW)
        assert [r.revision for r in history] == [0, 1]

    @pytest.mark.asyncio
    async def test_implementation_from_revise_needed_starts_revision(self, store):
        """Recording a new implementation directly starts the next revision."""
        reviewers = passing_reviewers()
        reviewers[StageName.QA_REVIEW] = ScriptedReviewer(StageName.QA_REVIEW, failing_report())
        orchestrator = WorkflowOrchestrator(store, reviewers=reviewers)
        change = await ready_for_review(orchestrator)
        await orchestrator.run_reviews(change.id)

        updated = await orchestrator.record_implementation(change.id, StageOutcome.PASS)

        assert updated.revision == 1
        assert updated.state == ChangeState.AWAITING_REVIEW

    @pytest.mark.asyncio
    async def test_revision_limit(self, store):
        """Exceeding the revision limit raises RevisionLimitExceededError."""
        reviewers = passing_reviewers()
        reviewers[StageName.QA_REVIEW] = ScriptedReviewer(StageName.QA_REVIEW, failing_report())
        orchestrator = WorkflowOrchestrator(store, reviewers=reviewers, max_revisions=1)
        change = await ready_for_review(orchestrator)
        await orchestrator.run_reviews(change.id)

        await orchestrator.begin_revision(change.id)
        await orchestrator.record_implementation(change.id, StageOutcome.PASS)
        await orchestrator.run_reviews(change.id)

        with pytest.raises(RevisionLimitExceededError) as exc_info:
            await orchestrator.begin_revision(change.id)

        assert exc_info.value.limit == 1
        assert (await orchestrator.get_change(change.id)).state == ChangeState.REVISE_NEEDED

    @pytest.mark.asyncio
    async def test_begin_revision_requires_revise_needed(self, orchestrator):
        """Only a change sent back by the gate can be revised."""
        change = await orchestrator.create_change("Add OAuth")

        with pytest.raises(InvalidChangeTransitionError):
            await orchestrator.begin_revision(change.id)


class TestSubmitReview:
    """Test externally submitted review verdicts."""

    @pytest.mark.asyncio
    async def test_round_completes_when_all_stages_report(self, orchestrator):
        """The gate is applied once every review stage has reported."""
        change = await ready_for_review(orchestrator)

        first = await orchestrator.submit_review(
            change.id, StageName.ARCHITECTURE_REVIEW, StageOutcome.PASS
        )
        assert first.state == ChangeState.REVIEWING

        await orchestrator.submit_review(change.id, StageName.QA_REVIEW, StageOutcome.PASS)
        last = await orchestrator.submit_review(
            change.id, StageName.SECURITY_REVIEW, StageOutcome.PASS
        )

        assert last.state == ChangeState.APPROVED

    @pytest.mark.asyncio
    async def test_results_from_previous_revision_do_not_count(self, orchestrator):
        """A new round waits for fresh verdicts from every stage."""
        change = await ready_for_review(orchestrator)
        await orchestrator.submit_review(
            change.id, StageName.ARCHITECTURE_REVIEW, StageOutcome.PASS
        )
        await orchestrator.submit_review(change.id, StageName.QA_REVIEW, StageOutcome.PASS)
        await orchestrator.submit_review(
            change.id, StageName.SECURITY_REVIEW, StageOutcome.FAIL, [critical()]
        )
        await orchestrator.record_implementation(change.id, StageOutcome.PASS)

        updated = await orchestrator.submit_review(
            change.id, StageName.SECURITY_REVIEW, StageOutcome.PASS
        )

        assert updated.revision == 1
        assert updated.state == ChangeState.REVIEWING

    @pytest.mark.asyncio
    async def test_gate_stays_closed_until_new_revision_is_reviewed(self, orchestrator):
        """Passing reviews of the previous revision keep the gate closed."""
        change = await ready_for_review(orchestrator)
        await orchestrator.submit_review(
            change.id, StageName.ARCHITECTURE_REVIEW, StageOutcome.PASS
        )
        await orchestrator.submit_review(change.id, StageName.SECURITY_REVIEW, StageOutcome.PASS)
        await orchestrator.submit_review(change.id, StageName.QA_REVIEW, StageOutcome.FAIL)
        await orchestrator.begin_revision(change.id)
        await orchestrator.record_implementation(change.id, StageOutcome.PASS)
        await orchestrator.submit_review(change.id, StageName.QA_REVIEW, StageOutcome.PASS)

        decision = await orchestrator.evaluate(change.id)

        assert decision.allowed is False
        assert decision.blocking_reasons == ["architecture-review", "security-review"]
        assert (await orchestrator.get_change(change.id)).state == ChangeState.REVIEWING

    @pytest.mark.asyncio
    async def test_implementation_is_not_a_review_stage(self, orchestrator):
        """submit_review only accepts review stages."""
        change = await ready_for_review(orchestrator)

        with pytest.raises(ValueError, match="not a review stage"):
            await orchestrator.submit_review(
                change.id, StageName.IMPLEMENTATION, StageOutcome.PASS
            )

    @pytest.mark.asyncio
    async def test_submit_rejected_while_reviews_run(self, store):
        """A verdict cannot be submitted while run_reviews is in progress."""
        reviewers = {stage: ScriptedReviewer(stage, delay=0.2) for stage in REVIEW_STAGES}
        orchestrator = WorkflowOrchestrator(store, reviewers=reviewers)
        change = await ready_for_review(orchestrator)

        run = asyncio.create_task(orchestrator.run_reviews(change.id))
        await reviewers[StageName.QA_REVIEW].started.wait()

        with pytest.raises(ReviewInProgressError):
            await orchestrator.submit_review(change.id, StageName.QA_REVIEW, StageOutcome.FAIL)

        assert (await run).state == ChangeState.APPROVED


class TestResolveFinding:
    """Test resolving findings through the orchestrator."""

    @pytest.mark.asyncio
    async def test_resolving_finding_reopens_gate(self, orchestrator):
        """Resolving the only blocking finding on a passing stage allows the change."""
        change = await ready_for_review(orchestrator)
        finding = Finding(severity=FindingSeverity.HIGH, title="Missing CSRF token")
        await orchestrator.submit_review(
            change.id, StageName.ARCHITECTURE_REVIEW, StageOutcome.PASS
        )
        await orchestrator.submit_review(change.id, StageName.QA_REVIEW, StageOutcome.PASS)
        await orchestrator.submit_review(
            change.id, StageName.SECURITY_REVIEW, StageOutcome.PASS, [finding]
        )
        assert (await orchestrator.evaluate(change.id)).allowed is False

        decision = await orchestrator.resolve_finding(change.id, finding.id, "token added")

        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_unknown_finding_rejected(self, orchestrator):
        """Only findings some stage reported can be resolved."""
        change = await orchestrator.create_change("Add OAuth")

        with pytest.raises(FindingNotFoundError):
            await orchestrator.resolve_finding(change.id, "not-a-finding")


class TestCommit:
    """Test the commit gate."""

    @pytest.mark.asyncio
    async def test_commit_approved_change(self, orchestrator):
        """An approved change with an open gate commits."""
        change = await ready_for_review(orchestrator)
        await orchestrator.run_reviews(change.id)

        committed = await orchestrator.commit(change.id)

        assert committed.state == ChangeState.COMMITTED
        assert committed.closed_at is not None

    @pytest.mark.asyncio
    async def test_commit_requires_approval(self, orchestrator):
        """A change that was never approved cannot be committed."""
        change = await ready_for_review(orchestrator)

        with pytest.raises(InvalidChangeTransitionError):
            await orchestrator.commit(change.id)

    @pytest.mark.asyncio
    async def test_commit_rechecks_gate(self, orchestrator, store):
        """Results recorded after approval can still close the gate."""
        change = await ready_for_review(orchestrator)
        await orchestrator.run_reviews(change.id)
        await store.record(
            change.id, StageName.SECURITY_REVIEW, StageOutcome.FAIL, [critical()], revision=0
        )

        with pytest.raises(GateClosedError) as exc_info:
            await orchestrator.commit(change.id)

        error = exc_info.value
        assert error.decision.blocking_reasons == ["security-review"]
        assert isinstance(error.errors[0], StageFailed)
        assert (await orchestrator.get_change(change.id)).state == ChangeState.APPROVED


class TestAbandon:
    """Test abandoning changes."""

    @pytest.mark.asyncio
    async def test_abandon_open_change(self, orchestrator):
        """An open change can be abandoned with a reason."""
        change = await orchestrator.create_change("Add OAuth")

        abandoned = await orchestrator.abandon(change.id, "superseded")

        assert abandoned.state == ChangeState.ABANDONED
        assert abandoned.close_reason == "superseded"
        assert abandoned.closed_at is not None

    @pytest.mark.asyncio
    async def test_abandon_closed_change_rejected(self, orchestrator):
        """A change that is already closed cannot be abandoned."""
        change = await orchestrator.create_change("Add OAuth")
        await orchestrator.abandon(change.id)

        with pytest.raises(InvalidChangeTransitionError):
            await orchestrator.abandon(change.id)

    @pytest.mark.asyncio
    async def test_abandon_cancels_in_flight_review(self, store):
        """Abandoning during reviews cancels the slow stage and records nothing for it."""
        reviewers = passing_reviewers()
        security = ScriptedReviewer(StageName.SECURITY_REVIEW, delay=10)
        reviewers[StageName.SECURITY_REVIEW] = security
        orchestrator = WorkflowOrchestrator(store, reviewers=reviewers)
        change = await ready_for_review(orchestrator)

        run = asyncio.create_task(orchestrator.run_reviews(change.id))
        await security.started.wait()

        abandoned = await orchestrator.abandon(change.id, "requirements changed")
        result = await asyncio.wait_for(run, timeout=2)

        assert security.cancelled.is_set()
        assert abandoned.state == ChangeState.ABANDONED
        assert result.state == ChangeState.ABANDONED
        assert await store.history(change.id, StageName.SECURITY_REVIEW) == []
        assert orchestrator.in_flight(change.id) == []
        assert (await orchestrator.get_change(change.id)).state == ChangeState.ABANDONED

    @pytest.mark.asyncio
    async def test_abandon_from_another_orchestrator_discards_late_result(self, store):
        """A change closed through a second orchestrator on the same store records nothing more."""
        reviewers = passing_reviewers()
        security = ScriptedReviewer(StageName.SECURITY_REVIEW, delay=0.2)
        reviewers[StageName.SECURITY_REVIEW] = security
        server = WorkflowOrchestrator(store, reviewers=reviewers)
        cli = WorkflowOrchestrator(store)
        change = await ready_for_review(server)

        run = asyncio.create_task(server.run_reviews(change.id))
        await security.started.wait()
        await cli.abandon(change.id, "requirements changed")
        result = await asyncio.wait_for(run, timeout=2)

        assert not security.cancelled.is_set()
        assert result.state == ChangeState.ABANDONED
        assert await store.history(change.id, StageName.SECURITY_REVIEW) == []
        assert (await server.get_change(change.id)).state == ChangeState.ABANDONED


class TestBookkeeping:
    """Test per-change state held by the orchestrator."""

    @pytest.mark.asyncio
    async def test_committed_change_is_forgotten(self, orchestrator):
        """Locks for committed changes are released."""
        change = await ready_for_review(orchestrator)
        await orchestrator.run_reviews(change.id)
        await orchestrator.commit(change.id)

        assert change.id not in orchestrator._locks
        assert change.id not in orchestrator._inflight

    @pytest.mark.asyncio
    async def test_abandoned_change_is_forgotten(self, store):
        """Locks for abandoned changes are released, also after a discarded round."""
        reviewers = passing_reviewers()
        security = ScriptedReviewer(StageName.SECURITY_REVIEW, delay=10)
        reviewers[StageName.SECURITY_REVIEW] = security
        orchestrator = WorkflowOrchestrator(store, reviewers=reviewers)
        idle = await orchestrator.create_change("Rename module")
        change = await ready_for_review(orchestrator)

        run = asyncio.create_task(orchestrator.run_reviews(change.id))
        await security.started.wait()
        await orchestrator.abandon(change.id)
        await orchestrator.abandon(idle.id)
        await asyncio.wait_for(run, timeout=2)

        assert orchestrator._locks == {}
        assert orchestrator._inflight == {}
