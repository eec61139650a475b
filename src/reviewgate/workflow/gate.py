"""Gate evaluation: decides whether a change may proceed to commit.

The gate is all-or-nothing. A change is allowed only when every required
stage's latest result is a pass and no finding with a blocking severity
remains unresolved in the latest result of any stage.

Which stages are required comes from an explicit ``GatePolicy`` rather than
process-wide constants: the policy's default stage list, narrowed by the
exemption rule for the change's classification (trivial fixes only need a
passing implementation by default).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field

from reviewgate.workflow.errors import (
    StageBlocked,
    StageError,
    StageFailed,
    StageNotRun,
)
from reviewgate.workflow.models import (
    Blocker,
    BlockerKind,
    Change,
    ChangeClassification,
    FindingSeverity,
    GateDecision,
    StageName,
    StageOutcome,
    StageResult,
)
from reviewgate.workflow.store import StageResultStore

if TYPE_CHECKING:
    from reviewgate.config import GateConfig

logger = structlog.get_logger(__name__)


class GatePolicy(BaseModel):
    """Which stages a change must pass and which findings block it.

    Attributes:
        required_stages: Stages required for a change with no exemption.
        exemption_rule: Classification -> reduced set of required stages.
        blocking_severities: Severities that block while unresolved.
    """

    required_stages: list[StageName] = Field(default_factory=lambda: list(StageName))
    exemption_rule: dict[ChangeClassification, list[StageName]] = Field(
        default_factory=lambda: {ChangeClassification.TRIVIAL_FIX: [StageName.IMPLEMENTATION]}
    )
    blocking_severities: set[FindingSeverity] = Field(
        default_factory=lambda: {FindingSeverity.CRITICAL, FindingSeverity.HIGH}
    )

    @classmethod
    def from_config(cls, config: GateConfig) -> GatePolicy:
        """Build a policy from the ``[gate]`` configuration section."""
        return cls(
            required_stages=list(config.required_stages),
            exemption_rule={
                classification: list(config.exempt_stages)
                for classification in config.exempt_classifications
            },
            blocking_severities=set(config.blocking_severities),
        )

    def stages_for(self, change: Change) -> list[StageName]:
        """Return the stages required for a change, in workflow order."""
        exempt = self.exemption_rule.get(change.classification)
        if exempt is not None:
            return [s for s in StageName if s in exempt]
        return [s for s in StageName if s in self.required_stages]


def decide(
    change: Change,
    latest_results: Mapping[StageName, StageResult],
    required_stages: Sequence[StageName],
    blocking_severities: Iterable[FindingSeverity],
    resolved_finding_ids: Iterable[str] = (),
) -> GateDecision:
    """Compute the gate decision from a snapshot of stage results.

    Every blocker is attributed to a stage. A required stage contributes at
    most one outcome blocker (not run, failed or blocked); a latest result
    recorded against an earlier revision of the change counts as not run.
    Any stage, required or not, contributes an open-finding blocker when its
    latest result carries unresolved blocking findings and its outcome did
    not already explain them.

    Args:
        change: The change being evaluated.
        latest_results: Latest StageResult per stage.
        required_stages: Stages that must have a passing latest result.
        blocking_severities: Severities that block while unresolved.
        resolved_finding_ids: Findings explicitly marked as resolved.

    Returns:
        The GateDecision.
    """
    severities = set(blocking_severities)
    resolved = set(resolved_finding_ids)
    blockers: list[Blocker] = []

    for stage in StageName:
        result = latest_results.get(stage)
        open_findings = []
        if result is not None:
            open_findings = [
                f for f in result.findings if f.severity in severities and f.id not in resolved
            ]

        if stage in required_stages:
            if result is None:
                blockers.append(
                    Blocker(stage=stage, kind=BlockerKind.NOT_RUN, detail="stage has not run")
                )
                continue
            if result.revision < change.revision:
                blockers.append(
                    Blocker(
                        stage=stage,
                        kind=BlockerKind.NOT_RUN,
                        detail=(
                            f"latest result is from revision {result.revision}, "
                            f"change is at revision {change.revision}"
                        ),
                        findings=open_findings,
                    )
                )
                continue
            if result.outcome == StageOutcome.FAIL:
                blockers.append(
                    Blocker(
                        stage=stage,
                        kind=BlockerKind.FAILED,
                        detail=result.reason or "stage failed",
                        findings=list(result.findings),
                    )
                )
                continue
            if result.outcome == StageOutcome.BLOCKED:
                blockers.append(
                    Blocker(
                        stage=stage,
                        kind=BlockerKind.BLOCKED,
                        detail=result.reason or "stage is blocked",
                        findings=open_findings,
                    )
                )
                continue

        if open_findings:
            blockers.append(
                Blocker(
                    stage=stage,
                    kind=BlockerKind.OPEN_FINDING,
                    detail=f"{len(open_findings)} unresolved blocking finding(s)",
                    findings=open_findings,
                )
            )

    return GateDecision(
        change_id=change.id,
        allowed=not blockers,
        required_stages=list(required_stages),
        blockers=blockers,
    )


def decision_errors(decision: GateDecision) -> list[StageError]:
    """Translate the blockers of a decision into stage errors."""
    errors: list[StageError] = []
    for blocker in decision.blockers:
        if blocker.kind == BlockerKind.NOT_RUN:
            errors.append(StageNotRun(blocker.stage))
        elif blocker.kind == BlockerKind.BLOCKED:
            errors.append(StageBlocked(blocker.stage, blocker.detail))
        else:
            errors.append(StageFailed(blocker.stage, blocker.findings))
    return errors


class GateEvaluator:
    """Evaluates the gate for changes against a result store.

    Attributes:
        store: Where stage results and resolutions are read from.
        policy: The gate policy in force.
    """

    def __init__(self, store: StageResultStore, policy: GatePolicy | None = None) -> None:
        self.store = store
        self.policy = policy or GatePolicy()
        self._logger = logger.bind(component="GateEvaluator")

    async def evaluate(
        self,
        change: Change,
        required_stages: Sequence[StageName] | None = None,
    ) -> GateDecision:
        """Decide whether a change may proceed.

        Args:
            change: The change to evaluate.
            required_stages: Explicit stage list overriding the policy.

        Returns:
            The GateDecision computed from the store's current contents.
        """
        stages = (
            list(required_stages)
            if required_stages is not None
            else self.policy.stages_for(change)
        )
        latest = await self.store.latest_results(change.id)
        resolved = await self.store.resolved_finding_ids(change.id)

        decision = decide(
            change,
            latest,
            stages,
            self.policy.blocking_severities,
            resolved,
        )

        self._logger.info(
            "gate_evaluated",
            change_id=change.id,
            classification=change.classification.value,
            allowed=decision.allowed,
            required_stages=[s.value for s in stages],
            blocking_reasons=decision.blocking_reasons,
        )
        return decision


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

DOC_SUFFIXES = frozenset({".md", ".rst", ".txt", ".adoc"})
CONFIG_SUFFIXES = frozenset({".toml", ".yaml", ".yml", ".ini", ".cfg", ".json", ".env"})
DOC_DIRECTORIES = frozenset({"docs", "doc"})


def _is_doc(path: PurePosixPath) -> bool:
    return path.suffix.lower() in DOC_SUFFIXES or any(
        part in DOC_DIRECTORIES for part in path.parts[:-1]
    )


def _is_config(path: PurePosixPath) -> bool:
    return path.suffix.lower() in CONFIG_SUFFIXES


def classify_change(paths: Iterable[str], lines_changed: int) -> ChangeClassification:
    """Classify a change from the files it touches and the size of its diff.

    Trivial fixes are single-line changes, docs-only changes, and changes
    that only touch configuration files. Anything else is non-trivial,
    including a change with no files at all and a change to source files
    whose line count is unknown (0).

    Args:
        paths: Paths touched by the change.
        lines_changed: Added plus removed lines.

    Returns:
        The classification.
    """
    files = [PurePosixPath(p) for p in paths]
    if not files:
        return ChangeClassification.NON_TRIVIAL
    if lines_changed == 1:
        return ChangeClassification.TRIVIAL_FIX
    if all(_is_doc(p) for p in files):
        return ChangeClassification.TRIVIAL_FIX
    if all(_is_config(p) for p in files):
        return ChangeClassification.TRIVIAL_FIX
    return ChangeClassification.NON_TRIVIAL
