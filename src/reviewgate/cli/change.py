"""Change management CLI commands.

This module provides CLI commands for opening, listing, inspecting,
revising, committing and abandoning changes.
"""

from __future__ import annotations

import json
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from reviewgate.workflow import (
    ChangeClassification,
    ChangeState,
    GateClosedError,
    StageName,
    classify_change,
)

app = typer.Typer(help="Change management commands")
console = Console()

STATE_COLORS = {
    "implementing": "blue",
    "awaiting_review": "yellow",
    "reviewing": "cyan",
    "approved": "green",
    "revise_needed": "red",
    "committed": "bold green",
    "abandoned": "dim",
}

OUTCOME_COLORS = {
    "pass": "green",
    "fail": "red",
    "blocked": "yellow",
}


def styled_state(state: ChangeState) -> str:
    color = STATE_COLORS.get(state.value, "white")
    return f"[{color}]{state.value}[/{color}]"


@app.command()
def create(
    description: Annotated[str, typer.Argument(help="What the change does")],
    classification: Annotated[
        Optional[ChangeClassification],
        typer.Option(
            "--classification",
            "-k",
            help="trivial_fix or non_trivial (derived from --path/--lines if omitted)",
        ),
    ] = None,
    paths: Annotated[
        Optional[list[str]],
        typer.Option("--path", "-P", help="Path touched by the change (repeatable)"),
    ] = None,
    lines_changed: Annotated[
        int,
        typer.Option("--lines", "-l", help="Number of lines changed", min=0),
    ] = 0,
) -> None:
    """Open a new change in the implementing state.

    Args:
        description: Short description of the change
        classification: Explicit classification
        paths: Touched paths used to classify the change
        lines_changed: Size of the diff used to classify the change
    """
    from reviewgate.main import get_app_context

    ctx = get_app_context()
    kind = classification or classify_change(paths or [], lines_changed)

    try:
        change = ctx.run(lambda o: o.create_change(description, kind))
    except Exception as e:
        console.print(f"[red]Error creating change:[/red] {e}")
        raise typer.Exit(code=1)

    required = ctx.orchestrator.policy.stages_for(change)
    panel = Panel(
        f"[green]Change created successfully![/green]\n\n"
        f"[bold]ID:[/bold] {change.id}\n"
        f"[bold]Description:[/bold] {change.description}\n"
        f"[bold]Classification:[/bold] {change.classification.value}\n"
        f"[bold]State:[/bold] {change.state.value}\n"
        f"[bold]Required stages:[/bold] {', '.join(s.value for s in required)}",
        title="Change Created",
        border_style="green",
    )
    console.print(panel)


@app.command("list")
def list_changes(
    state: Annotated[
        Optional[ChangeState],
        typer.Option("--state", "-s", help="Filter by state"),
    ] = None,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """List changes, oldest first.

    Args:
        state: Optional state filter
        format: Output format (table or json)
    """
    from reviewgate.main import get_app_context

    ctx = get_app_context()

    try:
        changes = ctx.run(lambda o: o.list_changes(state))
    except Exception as e:
        console.print(f"[red]Error listing changes:[/red] {e}")
        raise typer.Exit(code=1)

    if format == "json":
        output = [c.model_dump(mode="json") for c in changes]
        console.print_json(json.dumps(output))
        return

    if not changes:
        console.print("[yellow]No changes found[/yellow]")
        return

    table = Table(title="Changes")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Description", style="bold")
    table.add_column("Classification", style="dim")
    table.add_column("State")
    table.add_column("Revision", justify="right", style="dim")
    table.add_column("Opened", style="dim")

    for c in changes:
        table.add_row(
            c.id[:8] + "...",
            c.description,
            c.classification.value,
            styled_state(c.state),
            str(c.revision),
            c.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def show(
    change_id: Annotated[str, typer.Argument(help="Change ID")],
) -> None:
    """Show a change with the latest result of every stage.

    Args:
        change_id: ID of the change
    """
    from reviewgate.main import get_app_context

    ctx = get_app_context()

    async def _show(orchestrator):
        change = await orchestrator.get_change(change_id)
        latest = await orchestrator.store.latest_results(change_id)
        return change, latest

    try:
        change, latest = ctx.run(_show)
    except Exception as e:
        console.print(f"[red]Error loading change:[/red] {e}")
        raise typer.Exit(code=1)

    details = (
        f"[bold]ID:[/bold] {change.id}\n"
        f"[bold]Description:[/bold] {change.description}\n"
        f"[bold]Classification:[/bold] {change.classification.value}\n"
        f"[bold]State:[/bold] {styled_state(change.state)}\n"
        f"[bold]Revision:[/bold] {change.revision}"
    )
    if change.close_reason:
        details += f"\n[bold]Close reason:[/bold] {change.close_reason}"
    console.print(Panel(details, title="Change", border_style="cyan"))

    required = ctx.orchestrator.policy.stages_for(change)
    table = Table(title="Stages")
    table.add_column("Stage", style="bold")
    table.add_column("Required", justify="center")
    table.add_column("Outcome")
    table.add_column("Revision", justify="right", style="dim")
    table.add_column("Findings", justify="right")

    for stage in StageName:
        result = latest.get(stage)
        if result is None:
            outcome = "[dim]not run[/dim]"
            revision = "-"
            findings = "-"
        else:
            color = OUTCOME_COLORS.get(result.outcome.value, "white")
            outcome = f"[{color}]{result.outcome.value}[/{color}]"
            revision = str(result.revision)
            findings = str(len(result.findings))
        table.add_row(
            stage.value,
            "yes" if stage in required else "no",
            outcome,
            revision,
            findings,
        )
    console.print(table)

    if change.open_blockers:
        console.print("[bold red]Open blockers:[/bold red]")
        for blocker in change.open_blockers:
            console.print(f"  - {blocker.stage.value} ({blocker.kind.value}): {blocker.detail}")


@app.command()
def revise(
    change_id: Annotated[str, typer.Argument(help="Change ID")],
) -> None:
    """Send a change that needs revision back to implementation.

    Args:
        change_id: ID of the change
    """
    from reviewgate.main import get_app_context

    ctx = get_app_context()

    try:
        change = ctx.run(lambda o: o.begin_revision(change_id))
    except Exception as e:
        console.print(f"[red]Error starting revision:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(
        f"[green]Change {change.id[:8]} is back in implementation "
        f"(revision {change.revision})[/green]"
    )


@app.command()
def commit(
    change_id: Annotated[str, typer.Argument(help="Change ID")],
) -> None:
    """Commit an approved change, re-checking the gate first.

    Args:
        change_id: ID of the change
    """
    from reviewgate.main import get_app_context

    ctx = get_app_context()

    try:
        change = ctx.run(lambda o: o.commit(change_id))
    except GateClosedError as e:
        console.print(f"[red]Commit refused:[/red] {e}")
        for error in e.errors:
            console.print(f"  - {error}")
        raise typer.Exit(code=1)
    except Exception as e:
        console.print(f"[red]Error committing change:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[bold green]Change {change.id[:8]} committed[/bold green]")


@app.command()
def abandon(
    change_id: Annotated[str, typer.Argument(help="Change ID")],
    reason: Annotated[
        Optional[str],
        typer.Option("--reason", "-r", help="Why the change is abandoned"),
    ] = None,
) -> None:
    """Abandon a change from any open state.

    Args:
        change_id: ID of the change
        reason: Optional reason recorded on the change
    """
    from reviewgate.main import get_app_context

    ctx = get_app_context()

    try:
        change = ctx.run(lambda o: o.abandon(change_id, reason))
    except Exception as e:
        console.print(f"[red]Error abandoning change:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[yellow]Change {change.id[:8]} abandoned[/yellow]")
