"""Review CLI commands.

``review run`` executes the configured reviewers for every required review
stage concurrently and applies the gate when they finish. ``review submit``
records a verdict produced by a reviewer outside Reviewgate.
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from reviewgate.cli.change import OUTCOME_COLORS, styled_state
from reviewgate.cli.stage import (
    FindingOption,
    FindingsFileOption,
    ReasonOption,
    parse_findings,
)
from reviewgate.workflow import REVIEW_STAGES, StageName, StageOutcome

app = typer.Typer(help="Review commands")
console = Console()


@app.command()
def run(
    change_id: Annotated[str, typer.Argument(help="Change ID")],
) -> None:
    """Run all required review stages for a change awaiting review.

    Args:
        change_id: ID of the change
    """
    from reviewgate.main import get_app_context

    ctx = get_app_context()

    async def _run(orchestrator):
        change = await orchestrator.run_reviews(change_id)
        latest = await orchestrator.store.latest_results(change_id)
        return change, latest

    console.print(f"[dim]Running reviews for change {change_id[:8]}...[/dim]")
    try:
        change, latest = ctx.run(_run)
    except Exception as e:
        console.print(f"[red]Error running reviews:[/red] {e}")
        raise typer.Exit(code=1)

    table = Table(title="Review results")
    table.add_column("Stage", style="bold")
    table.add_column("Outcome")
    table.add_column("Findings", justify="right")
    table.add_column("Reason", style="dim")

    for stage in REVIEW_STAGES:
        result = latest.get(stage)
        if result is None or result.revision != change.revision:
            continue
        color = OUTCOME_COLORS.get(result.outcome.value, "white")
        table.add_row(
            stage.value,
            f"[{color}]{result.outcome.value}[/{color}]",
            str(len(result.findings)),
            result.reason or "",
        )

    console.print(table)
    console.print(f"Change is now {styled_state(change.state)}")


@app.command()
def submit(
    change_id: Annotated[str, typer.Argument(help="Change ID")],
    stage: Annotated[StageName, typer.Argument(help="Review stage name")],
    outcome: Annotated[StageOutcome, typer.Argument(help="pass, fail or blocked")],
    finding: FindingOption = None,
    findings_file: FindingsFileOption = None,
    reason: ReasonOption = None,
) -> None:
    """Submit an externally produced review verdict.

    Args:
        change_id: ID of the change
        stage: Review stage
        outcome: Review outcome
        finding: Findings as SEVERITY:TITLE
        findings_file: JSON file with additional findings
        reason: Free-text context
    """
    from reviewgate.main import get_app_context

    if stage not in REVIEW_STAGES:
        console.print(f"[red]{stage.value} is not a review stage[/red]")
        raise typer.Exit(code=1)

    ctx = get_app_context()
    findings = parse_findings(finding, findings_file)

    try:
        change = ctx.run(
            lambda o: o.submit_review(change_id, stage, outcome, findings, reason)
        )
    except Exception as e:
        console.print(f"[red]Error submitting review:[/red] {e}")
        raise typer.Exit(code=1)

    color = OUTCOME_COLORS.get(outcome.value, "white")
    console.print(
        f"Submitted [{color}]{outcome.value}[/{color}] for {stage.value}; "
        f"change is now {styled_state(change.state)}"
    )
