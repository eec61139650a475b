"""Review-gate workflow subsystem for Reviewgate.

This package implements the stage result store, the gate evaluator, the
change lifecycle state machine, reviewers, and the workflow orchestrator
that runs review stages concurrently and applies the commit gate.
"""

from reviewgate.workflow.errors import (
    ChangeNotFoundError,
    FindingNotFoundError,
    GateClosedError,
    InvalidChangeTransitionError,
    ReviewerNotConfiguredError,
    ReviewGateError,
    ReviewInProgressError,
    RevisionLimitExceededError,
    StageBlocked,
    StageError,
    StageFailed,
    StageNotRun,
)
from reviewgate.workflow.gate import (
    GateEvaluator,
    GatePolicy,
    classify_change,
    decide,
    decision_errors,
)
from reviewgate.workflow.models import (
    DEFAULT_STAGES,
    REVIEW_STAGES,
    Blocker,
    BlockerKind,
    Change,
    ChangeClassification,
    ChangeState,
    Finding,
    FindingSeverity,
    GateDecision,
    StageDefinition,
    StageGroup,
    StageName,
    StageOutcome,
    StageResult,
)
from reviewgate.workflow.orchestrator import WorkflowOrchestrator
from reviewgate.workflow.report import render_gate_report
from reviewgate.workflow.reviewers import (
    CommandReviewer,
    Reviewer,
    StageReport,
    build_reviewers,
)
from reviewgate.workflow.state_machine import (
    VALID_CHANGE_TRANSITIONS,
    transition,
    validate_change_transition,
)
from reviewgate.workflow.store import (
    InMemoryStageResultStore,
    SqlStageResultStore,
    StageResultStore,
)

__all__ = [
    # Errors
    "ChangeNotFoundError",
    "FindingNotFoundError",
    "GateClosedError",
    "InvalidChangeTransitionError",
    "ReviewerNotConfiguredError",
    "ReviewGateError",
    "ReviewInProgressError",
    "RevisionLimitExceededError",
    "StageBlocked",
    "StageError",
    "StageFailed",
    "StageNotRun",
    # Gate
    "GateEvaluator",
    "GatePolicy",
    "classify_change",
    "decide",
    "decision_errors",
    # Models
    "DEFAULT_STAGES",
    "REVIEW_STAGES",
    "Blocker",
    "BlockerKind",
    "Change",
    "ChangeClassification",
    "ChangeState",
    "Finding",
    "FindingSeverity",
    "GateDecision",
    "StageDefinition",
    "StageGroup",
    "StageName",
    "StageOutcome",
    "StageResult",
    # Orchestrator
    "WorkflowOrchestrator",
    # Report
    "render_gate_report",
    # Reviewers
    "CommandReviewer",
    "Reviewer",
    "StageReport",
    "build_reviewers",
    # State machine
    "VALID_CHANGE_TRANSITIONS",
    "transition",
    "validate_change_transition",
    # Store
    "InMemoryStageResultStore",
    "SqlStageResultStore",
    "StageResultStore",
]
