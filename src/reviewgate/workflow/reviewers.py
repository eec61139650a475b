"""Reviewers: the executors behind each review stage.

A reviewer takes a change and produces a ``StageReport``. The orchestrator
runs the reviewers of the review group concurrently, bounds each one with a
timeout, and records one StageResult per report.

``CommandReviewer`` runs a shell command (a linter, a security scanner, a
test suite) as the stage check: exit code 0 passes the stage, anything else
fails it with a single finding carrying the tail of the command output.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import structlog
from pydantic import BaseModel, Field

from reviewgate.workflow.models import (
    Change,
    Finding,
    FindingSeverity,
    StageName,
    StageOutcome,
)

if TYPE_CHECKING:
    from reviewgate.config import ReviewConfig

logger = structlog.get_logger(__name__)

# Characters of combined command output kept on a failure finding
OUTPUT_TAIL_CHARS = 2000


class StageReport(BaseModel):
    """What a reviewer returns for one stage evaluation.

    Attributes:
        outcome: Pass, fail or blocked.
        findings: Issues found during the review.
        reason: Summary of the review, or why it is blocked.
    """

    outcome: StageOutcome
    findings: list[Finding] = Field(default_factory=list)
    reason: str | None = None


@runtime_checkable
class Reviewer(Protocol):
    """A stage executor.

    Attributes:
        stage: The stage this reviewer evaluates.
    """

    stage: StageName

    async def review(self, change: Change) -> StageReport: ...


class CommandReviewer:
    """Runs a shell command as a stage check.

    The child process is killed if the review is cancelled, either because
    the change was abandoned or because the stage timed out.

    Attributes:
        stage: The stage this reviewer evaluates.
        command: Shell command line to execute.
        cwd: Working directory for the command (None for the current one).
        failure_severity: Severity of the finding reported on failure.
    """

    def __init__(
        self,
        stage: StageName,
        command: str,
        cwd: Path | None = None,
        failure_severity: FindingSeverity = FindingSeverity.HIGH,
    ) -> None:
        self.stage = stage
        self.command = command
        self.cwd = cwd
        self.failure_severity = failure_severity
        self._logger = logger.bind(component="CommandReviewer", stage=stage.value)

    async def review(self, change: Change) -> StageReport:
        env = {
            **os.environ,
            "REVIEWGATE_CHANGE_ID": change.id,
            "REVIEWGATE_STAGE": self.stage.value,
            "REVIEWGATE_REVISION": str(change.revision),
        }

        self._logger.debug(
            "review_command_starting",
            change_id=change.id,
            command=self.command,
        )

        proc = await asyncio.create_subprocess_shell(
            self.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=str(self.cwd) if self.cwd is not None else None,
            env=env,
        )
        try:
            stdout_bytes, _ = await proc.communicate()
        except asyncio.CancelledError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            self._logger.warning(
                "review_command_killed",
                change_id=change.id,
                command=self.command,
            )
            raise

        output = stdout_bytes.decode("utf-8", errors="replace")

        if proc.returncode == 0:
            self._logger.info(
                "review_command_passed",
                change_id=change.id,
                command=self.command,
            )
            return StageReport(outcome=StageOutcome.PASS, reason=f"`{self.command}` passed")

        self._logger.info(
            "review_command_failed",
            change_id=change.id,
            command=self.command,
            returncode=proc.returncode,
        )
        finding = Finding(
            severity=self.failure_severity,
            title=f"`{self.command}` exited with status {proc.returncode}",
            description=output[-OUTPUT_TAIL_CHARS:].strip(),
        )
        return StageReport(
            outcome=StageOutcome.FAIL,
            findings=[finding],
            reason=f"`{self.command}` exited with status {proc.returncode}",
        )


def build_reviewers(config: ReviewConfig) -> dict[StageName, Reviewer]:
    """Create a command reviewer for every stage listed in ``[review.commands]``.

    Args:
        config: The review configuration section.

    Returns:
        Mapping of stage to reviewer.
    """
    reviewers: dict[StageName, Reviewer] = {}
    for stage, command in config.commands.items():
        reviewers[stage] = CommandReviewer(
            stage=stage,
            command=command,
            cwd=config.working_directory,
            failure_severity=config.command_failure_severity,
        )
    logger.debug("reviewers_built", stages=sorted(s.value for s in reviewers))
    return reviewers
