"""Markdown rendering of a change's review state.

The report lists the change, the latest result of every stage, the findings
still open, and the gate decision. It is meant for humans (terminal output,
pull request comments), not for machine parsing.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from reviewgate.workflow.models import (
    Change,
    Finding,
    FindingSeverity,
    GateDecision,
    StageName,
    StageResult,
)

_SEVERITY_ORDER = {severity: rank for rank, severity in enumerate(FindingSeverity)}


def _cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def _finding_line(stage: StageName, finding: Finding, resolved: bool) -> str:
    location = ""
    if finding.file_path:
        location = f" ({_cell(finding.file_path)}"
        if finding.line_number:
            location += f":{finding.line_number}"
        location += ")"
    status = " [resolved]" if resolved else ""
    return (
        f"| {finding.severity.value.upper()} | {stage.value} | "
        f"{_cell(finding.title)}{location}{status} | `{finding.id[:8]}` |"
    )


def render_gate_report(
    change: Change,
    decision: GateDecision,
    latest_results: Mapping[StageName, StageResult],
    resolved_finding_ids: Iterable[str] = (),
) -> str:
    """Render a Markdown report for a change.

    Args:
        change: The change.
        decision: A gate decision computed for the change.
        latest_results: Latest result per stage.
        resolved_finding_ids: Findings marked as resolved.

    Returns:
        The report as a Markdown string.
    """
    resolved = set(resolved_finding_ids)
    verdict = "ALLOWED" if decision.allowed else "BLOCKED"

    lines = [
        f"# Review gate: {change.description}",
        "",
        f"- **Change:** `{change.id}`",
        f"- **Classification:** {change.classification.value}",
        f"- **State:** {change.state.value}",
        f"- **Revision:** {change.revision}",
        f"- **Gate:** {verdict}",
        "",
        "## Stages",
        "",
        "| Stage | Required | Outcome | Revision | Notes |",
        "|---|---|---|---|---|",
    ]

    for stage in StageName:
        result = latest_results.get(stage)
        required = "yes" if stage in decision.required_stages else "no"
        if result is None:
            lines.append(f"| {stage.value} | {required} | not run | - | |")
        else:
            notes = _cell(result.reason or "")
            lines.append(
                f"| {stage.value} | {required} | {result.outcome.value} | "
                f"{result.revision} | {notes} |"
            )

    findings = [
        (stage, finding)
        for stage, result in latest_results.items()
        for finding in result.findings
    ]
    if findings:
        findings.sort(key=lambda pair: (_SEVERITY_ORDER[pair[1].severity], pair[0].value))
        lines += [
            "",
            "## Findings",
            "",
            "| Severity | Stage | Finding | ID |",
            "|---|---|---|---|",
        ]
        lines += [_finding_line(stage, f, f.id in resolved) for stage, f in findings]

    if decision.blockers:
        lines += ["", "## Blocking", ""]
        for blocker in decision.blockers:
            lines.append(f"- **{blocker.stage.value}** ({blocker.kind.value}): {blocker.detail}")

    return "\n".join(lines) + "\n"
