"""Data model for the review-gate workflow.

Defines the enums and Pydantic models shared by the store, the gate
evaluator and the orchestrator:

- Change: a unit of work moving through the workflow.
- StageResult: an immutable outcome recorded for one stage of a change.
- Finding: an issue (with severity) reported by a stage.
- GateDecision: the derived, never-stored verdict of the gate.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ChangeClassification(str, Enum):
    """How much process a change needs.

    Values:
        TRIVIAL_FIX: Single-line fix, docs-only change or config tweak.
        NON_TRIVIAL: Anything else; runs the full review workflow.
    """

    TRIVIAL_FIX = "trivial_fix"
    NON_TRIVIAL = "non_trivial"


class StageName(str, Enum):
    """The stages a change passes through."""

    IMPLEMENTATION = "implementation"
    ARCHITECTURE_REVIEW = "architecture-review"
    SECURITY_REVIEW = "security-review"
    QA_REVIEW = "qa-review"


class StageGroup(str, Enum):
    """Execution group of a stage.

    Stages in the IMPLEMENTATION group run alone and first; stages in the
    REVIEW group are independent and run concurrently.
    """

    IMPLEMENTATION = "implementation"
    REVIEW = "review"


class StageOutcome(str, Enum):
    """Outcome of a single stage evaluation."""

    PASS = "pass"
    FAIL = "fail"
    BLOCKED = "blocked"


class FindingSeverity(str, Enum):
    """Severity levels for findings.

    Levels:
        CRITICAL: Must be fixed before proceeding.
        HIGH: Must be fixed before the change is committed.
        MEDIUM: Should be addressed in a follow-up.
        LOW: Minor improvement opportunity.
        INFO: Informational note, no action required.
    """

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class ChangeState(str, Enum):
    """Lifecycle states of a change.

    States:
        IMPLEMENTING: Work in progress; waiting for a passing implementation.
        AWAITING_REVIEW: Implementation passed; reviews not yet dispatched.
        REVIEWING: Review stages are running.
        APPROVED: Gate allows the change; it may be committed.
        REVISE_NEEDED: Gate blocked the change; findings must be addressed.
        COMMITTED: Change was committed (terminal).
        ABANDONED: Change was withdrawn (terminal).
    """

    IMPLEMENTING = "implementing"
    AWAITING_REVIEW = "awaiting_review"
    REVIEWING = "reviewing"
    APPROVED = "approved"
    REVISE_NEEDED = "revise_needed"
    COMMITTED = "committed"
    ABANDONED = "abandoned"


TERMINAL_STATES: frozenset[ChangeState] = frozenset(
    {ChangeState.COMMITTED, ChangeState.ABANDONED}
)


class BlockerKind(str, Enum):
    """Why a stage blocks the gate."""

    NOT_RUN = "not_run"
    FAILED = "failed"
    BLOCKED = "blocked"
    OPEN_FINDING = "open_finding"


# ---------------------------------------------------------------------------
# Stage definitions
# ---------------------------------------------------------------------------


class StageDefinition(BaseModel):
    """Static description of a stage.

    Attributes:
        name: Stage name.
        required: Whether the stage is required by default.
        group: Execution group (implementation first, reviews concurrently).
    """

    model_config = ConfigDict(frozen=True)

    name: StageName
    required: bool = True
    group: StageGroup


DEFAULT_STAGES: tuple[StageDefinition, ...] = (
    StageDefinition(name=StageName.IMPLEMENTATION, group=StageGroup.IMPLEMENTATION),
    StageDefinition(name=StageName.ARCHITECTURE_REVIEW, group=StageGroup.REVIEW),
    StageDefinition(name=StageName.SECURITY_REVIEW, group=StageGroup.REVIEW),
    StageDefinition(name=StageName.QA_REVIEW, group=StageGroup.REVIEW),
)

REVIEW_STAGES: tuple[StageName, ...] = tuple(
    s.name for s in DEFAULT_STAGES if s.group == StageGroup.REVIEW
)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class Finding(BaseModel):
    """A single issue reported by a stage.

    Attributes:
        id: UUID identifier for this finding.
        severity: Severity level of the finding.
        title: Short summary of the finding.
        description: Detailed explanation of the issue.
        file_path: File path where the issue was found, if applicable.
        line_number: Line number in the file, if applicable.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    severity: FindingSeverity
    title: str = Field(..., min_length=1)
    description: str = ""
    file_path: str | None = None
    line_number: int | None = Field(default=None, ge=1)


class StageResult(BaseModel):
    """An immutable outcome recorded for one stage of a change.

    A result is never edited; a newer result for the same stage supersedes
    it for gate purposes.

    Attributes:
        id: UUID identifier for this result.
        change_id: The change the result belongs to.
        stage: The stage that produced the result.
        outcome: Pass, fail or blocked.
        findings: Findings reported alongside the outcome.
        reason: Free-text context; why a stage is blocked, or a summary.
        revision: Change revision the result was recorded against.
        recorded_at: When the result was recorded.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    change_id: str
    stage: StageName
    outcome: StageOutcome
    findings: tuple[Finding, ...] = ()
    reason: str | None = None
    revision: int = Field(default=0, ge=0)
    recorded_at: datetime = Field(default_factory=_utcnow)


class Blocker(BaseModel):
    """One reason the gate is closed.

    Attributes:
        stage: The stage the blocker is attributed to.
        kind: Why the stage blocks.
        detail: Human-readable explanation.
        findings: The findings responsible, for failed or open-finding blockers.
    """

    stage: StageName
    kind: BlockerKind
    detail: str
    findings: list[Finding] = Field(default_factory=list)


class Change(BaseModel):
    """A change under review.

    Attributes:
        id: UUID identifier for this change.
        description: What the change does.
        classification: Trivial fix or non-trivial.
        state: Current lifecycle state.
        revision: Implement-then-review round, starting at 0.
        open_blockers: Blockers attached when the gate sent the change back.
        created_at: When work on the change began.
        updated_at: Last state change.
        closed_at: When the change was committed or abandoned.
        close_reason: Why the change was abandoned, if it was.
    """

    id: str = Field(default_factory=_new_id)
    description: str = Field(..., min_length=1)
    classification: ChangeClassification = ChangeClassification.NON_TRIVIAL
    state: ChangeState = ChangeState.IMPLEMENTING
    revision: int = Field(default=0, ge=0)
    open_blockers: list[Blocker] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    closed_at: datetime | None = None
    close_reason: str | None = None

    @property
    def is_closed(self) -> bool:
        return self.state in TERMINAL_STATES


class GateDecision(BaseModel):
    """Derived verdict of the gate for one change at one point in time.

    Attributes:
        change_id: The evaluated change.
        allowed: True when the change may proceed to commit.
        required_stages: Stages the gate required for this change.
        blockers: Every reason the gate is closed (empty when allowed).
        evaluated_at: When the decision was computed.
    """

    change_id: str
    allowed: bool
    required_stages: list[StageName]
    blockers: list[Blocker] = Field(default_factory=list)
    evaluated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _allowed_iff_unblocked(self) -> GateDecision:
        if self.allowed and self.blockers:
            raise ValueError("an allowed decision cannot carry blockers")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def blocking_reasons(self) -> list[str]:
        """Stage names responsible for blocking, in first-seen order."""
        reasons: list[str] = []
        for blocker in self.blockers:
            if blocker.stage.value not in reasons:
                reasons.append(blocker.stage.value)
        return reasons
