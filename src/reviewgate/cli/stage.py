"""Stage result CLI commands.

This module provides CLI commands for recording stage outcomes, browsing
the append-only result history, and resolving reported findings.

Findings are given on the command line as ``SEVERITY:TITLE`` (for example
``--finding "high:SQL built from user input"``) or loaded from a JSON file
holding a list of finding objects.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Optional

import typer
from pydantic import TypeAdapter, ValidationError
from rich.console import Console
from rich.table import Table

from reviewgate.cli.change import OUTCOME_COLORS, styled_state
from reviewgate.workflow import (
    Finding,
    FindingSeverity,
    StageName,
    StageOutcome,
)

app = typer.Typer(help="Stage result commands")
console = Console()

_findings_adapter = TypeAdapter(list[Finding])


def parse_findings(specs: list[str] | None, findings_file: Path | None) -> list[Finding]:
    """Build findings from ``SEVERITY:TITLE`` strings and an optional JSON file.

    Raises:
        typer.BadParameter: If a finding cannot be parsed.
    """
    findings: list[Finding] = []
    if findings_file is not None:
        try:
            findings.extend(_findings_adapter.validate_json(findings_file.read_bytes()))
        except ValidationError as e:
            raise typer.BadParameter(f"Invalid findings file {findings_file}: {e}") from e

    for spec in specs or []:
        severity, sep, title = spec.partition(":")
        if not sep or not title.strip():
            raise typer.BadParameter(f"Expected SEVERITY:TITLE, got {spec!r}")
        try:
            findings.append(
                Finding(severity=FindingSeverity(severity.strip().lower()), title=title.strip())
            )
        except ValueError as e:
            raise typer.BadParameter(f"Invalid finding {spec!r}: {e}") from e
    return findings


FindingOption = Annotated[
    Optional[list[str]],
    typer.Option("--finding", "-F", help="Finding as SEVERITY:TITLE (repeatable)"),
]
FindingsFileOption = Annotated[
    Optional[Path],
    typer.Option(
        "--findings-file",
        help="JSON file with a list of findings",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
]
ReasonOption = Annotated[
    Optional[str],
    typer.Option("--reason", "-r", help="Free-text context for the result"),
]


@app.command()
def record(
    change_id: Annotated[str, typer.Argument(help="Change ID")],
    stage: Annotated[StageName, typer.Argument(help="Stage name")],
    outcome: Annotated[StageOutcome, typer.Argument(help="pass, fail or blocked")],
    finding: FindingOption = None,
    findings_file: FindingsFileOption = None,
    reason: ReasonOption = None,
) -> None:
    """Record the outcome of a stage for a change.

    The implementation stage advances the change to review; review stages
    are submitted as external review results.

    Args:
        change_id: ID of the change
        stage: Stage the result belongs to
        outcome: Stage outcome
        finding: Findings as SEVERITY:TITLE
        findings_file: JSON file with additional findings
        reason: Free-text context
    """
    from reviewgate.main import get_app_context

    ctx = get_app_context()
    findings = parse_findings(finding, findings_file)

    async def _record(orchestrator):
        if stage == StageName.IMPLEMENTATION:
            return await orchestrator.record_implementation(change_id, outcome, findings, reason)
        return await orchestrator.submit_review(change_id, stage, outcome, findings, reason)

    try:
        change = ctx.run(_record)
    except Exception as e:
        console.print(f"[red]Error recording result:[/red] {e}")
        raise typer.Exit(code=1)

    color = OUTCOME_COLORS.get(outcome.value, "white")
    console.print(
        f"Recorded [{color}]{outcome.value}[/{color}] for {stage.value} "
        f"({len(findings)} finding(s)); change is now {styled_state(change.state)}"
    )


@app.command()
def history(
    change_id: Annotated[str, typer.Argument(help="Change ID")],
    stage: Annotated[
        Optional[StageName],
        typer.Option("--stage", "-s", help="Only show results for this stage"),
    ] = None,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """Show every recorded result of a change, oldest first.

    Args:
        change_id: ID of the change
        stage: Optional stage filter
        format: Output format (table or json)
    """
    from reviewgate.main import get_app_context

    ctx = get_app_context()

    async def _history(orchestrator):
        await orchestrator.get_change(change_id)
        return await orchestrator.store.history(change_id, stage)

    try:
        results = ctx.run(_history)
    except Exception as e:
        console.print(f"[red]Error loading history:[/red] {e}")
        raise typer.Exit(code=1)

    if format == "json":
        console.print_json(json.dumps([r.model_dump(mode="json") for r in results]))
        return

    if not results:
        console.print("[yellow]No stage results recorded[/yellow]")
        return

    table = Table(title="Stage results")
    table.add_column("Recorded", style="dim")
    table.add_column("Stage", style="bold")
    table.add_column("Outcome")
    table.add_column("Revision", justify="right", style="dim")
    table.add_column("Findings")
    table.add_column("Reason", style="dim")

    for r in results:
        color = OUTCOME_COLORS.get(r.outcome.value, "white")
        findings = "\n".join(
            f"{f.id[:8]} {f.severity.value.upper()}: {f.title}" for f in r.findings
        )
        table.add_row(
            r.recorded_at.strftime("%Y-%m-%d %H:%M:%S"),
            r.stage.value,
            f"[{color}]{r.outcome.value}[/{color}]",
            str(r.revision),
            findings or "-",
            r.reason or "",
        )

    console.print(table)


@app.command()
def resolve(
    change_id: Annotated[str, typer.Argument(help="Change ID")],
    finding_id: Annotated[str, typer.Argument(help="Finding ID or unique prefix")],
    note: Annotated[
        Optional[str],
        typer.Option("--note", "-n", help="How the finding was addressed"),
    ] = None,
) -> None:
    """Mark a reported finding as resolved and show the resulting gate.

    Args:
        change_id: ID of the change
        finding_id: Full finding ID, or a prefix matching exactly one finding
        note: Optional resolution note
    """
    from reviewgate.main import get_app_context

    ctx = get_app_context()

    async def _resolve(orchestrator):
        reported = {
            f.id for r in await orchestrator.store.history(change_id) for f in r.findings
        }
        matches = [fid for fid in reported if fid.startswith(finding_id)]
        target = matches[0] if len(matches) == 1 else finding_id
        return await orchestrator.resolve_finding(change_id, target, note)

    try:
        decision = ctx.run(_resolve)
    except Exception as e:
        console.print(f"[red]Error resolving finding:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[green]Finding {finding_id} resolved[/green]")
    if decision.allowed:
        console.print("[bold green]Gate: ALLOWED[/bold green]")
    else:
        console.print(
            f"[bold red]Gate: BLOCKED[/bold red] ({', '.join(decision.blocking_reasons)})"
        )
