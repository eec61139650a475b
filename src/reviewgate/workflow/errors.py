"""Exception hierarchy for the review-gate workflow.

Stage errors (StageNotRun, StageFailed, StageBlocked) describe why a stage
keeps the gate closed. They are recoverable: rerunning the stage after
remediation clears them. GateClosedError bundles them when a commit is
refused.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reviewgate.workflow.models import (
        ChangeState,
        Finding,
        GateDecision,
        StageName,
    )


class ReviewGateError(Exception):
    """Base class for all Reviewgate errors."""


class ChangeNotFoundError(ReviewGateError):
    """Raised when a change ID does not exist in the store.

    Attributes:
        change_id: The ID that was looked up.
    """

    def __init__(self, change_id: str) -> None:
        self.change_id = change_id
        super().__init__(f"Change {change_id} not found")


class InvalidChangeTransitionError(ReviewGateError):
    """Raised when an invalid change state transition is attempted.

    Attributes:
        current: The current change state.
        target: The attempted target state.
        change_id: The ID of the change that failed to transition.
    """

    def __init__(
        self,
        current: ChangeState,
        target: ChangeState,
        change_id: str | None = None,
    ) -> None:
        self.current = current
        self.target = target
        self.change_id = change_id
        msg = f"Invalid change transition from {current.value} to {target.value}"
        if change_id:
            msg += f" for change {change_id}"
        super().__init__(msg)


class StageError(ReviewGateError):
    """Base class for conditions that keep a stage from counting as passed.

    Attributes:
        stage: The stage in question.
    """

    def __init__(self, stage: StageName, message: str) -> None:
        self.stage = stage
        super().__init__(message)


class StageNotRun(StageError):
    """The stage has no recorded result."""

    def __init__(self, stage: StageName) -> None:
        super().__init__(stage, f"Stage {stage.value} has not run")


class StageFailed(StageError):
    """The stage failed, or reported findings that remain open.

    Attributes:
        findings: The findings that explain the failure.
    """

    def __init__(self, stage: StageName, findings: list[Finding] | None = None) -> None:
        self.findings = list(findings or [])
        msg = f"Stage {stage.value} failed"
        if self.findings:
            msg += f" with {len(self.findings)} finding(s)"
        super().__init__(stage, msg)


class StageBlocked(StageError):
    """The stage could not reach a verdict.

    Attributes:
        reason: Why the stage is blocked (timeout, reviewer error, ...).
    """

    def __init__(self, stage: StageName, reason: str | None = None) -> None:
        self.reason = reason
        msg = f"Stage {stage.value} is blocked"
        if reason:
            msg += f": {reason}"
        super().__init__(stage, msg)


class GateClosedError(ReviewGateError):
    """Raised when a change is committed while the gate is closed.

    Attributes:
        decision: The gate decision that refused the commit.
        errors: One StageError per blocker, in decision order.
    """

    def __init__(self, decision: GateDecision, errors: list[StageError]) -> None:
        self.decision = decision
        self.errors = errors
        stages = ", ".join(decision.blocking_reasons)
        super().__init__(f"Gate closed for change {decision.change_id}: {stages}")


class RevisionLimitExceededError(ReviewGateError):
    """Raised when a change exceeds its allowed revise-and-resubmit rounds.

    Attributes:
        change_id: The change that hit the limit.
        limit: The configured maximum number of revisions.
    """

    def __init__(self, change_id: str, limit: int) -> None:
        self.change_id = change_id
        self.limit = limit
        super().__init__(
            f"Change {change_id} exceeded the limit of {limit} revision(s); "
            f"abandon it or split the work"
        )


class ReviewerNotConfiguredError(ReviewGateError):
    """Raised when a review stage has no reviewer to run it."""

    def __init__(self, stage: StageName) -> None:
        self.stage = stage
        super().__init__(f"No reviewer configured for stage {stage.value}")


class ReviewInProgressError(ReviewGateError):
    """Raised when a change is modified while its reviews are running."""

    def __init__(self, change_id: str) -> None:
        self.change_id = change_id
        super().__init__(f"Reviews are already running for change {change_id}")


class FindingNotFoundError(ReviewGateError):
    """Raised when resolving a finding no stage of the change reported."""

    def __init__(self, change_id: str, finding_id: str) -> None:
        self.change_id = change_id
        self.finding_id = finding_id
        super().__init__(f"Finding {finding_id} not reported for change {change_id}")
