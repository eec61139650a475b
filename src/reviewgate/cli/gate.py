"""Commit gate CLI commands.

``gate evaluate`` exits with status 1 when the gate is closed so it can be
used as a pre-commit or CI check.
"""

from __future__ import annotations

import json
from typing import Annotated

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from reviewgate.workflow import render_gate_report

app = typer.Typer(help="Commit gate commands")
console = Console()


@app.command()
def evaluate(
    change_id: Annotated[str, typer.Argument(help="Change ID")],
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """Evaluate the commit gate for a change.

    Args:
        change_id: ID of the change
        format: Output format (table or json)
    """
    from reviewgate.main import get_app_context

    ctx = get_app_context()

    try:
        decision = ctx.run(lambda o: o.evaluate(change_id))
    except Exception as e:
        console.print(f"[red]Error evaluating gate:[/red] {e}")
        raise typer.Exit(code=1)

    if format == "json":
        console.print_json(json.dumps(decision.model_dump(mode="json")))
    elif decision.allowed:
        console.print("[bold green]Gate: ALLOWED[/bold green]")
        console.print(
            f"[dim]Required stages:[/dim] {', '.join(s.value for s in decision.required_stages)}"
        )
    else:
        console.print(
            f"[bold red]Gate: BLOCKED[/bold red] ({', '.join(decision.blocking_reasons)})"
        )
        table = Table(title="Blockers")
        table.add_column("Stage", style="bold")
        table.add_column("Kind", style="magenta")
        table.add_column("Detail")
        for blocker in decision.blockers:
            table.add_row(blocker.stage.value, blocker.kind.value, blocker.detail)
        console.print(table)

    if not decision.allowed:
        raise typer.Exit(code=1)


@app.command()
def report(
    change_id: Annotated[str, typer.Argument(help="Change ID")],
    raw: Annotated[
        bool,
        typer.Option("--raw", help="Print the Markdown source instead of rendering it"),
    ] = False,
) -> None:
    """Render a Markdown report of a change's stages, findings and gate.

    Args:
        change_id: ID of the change
        raw: Print the Markdown source
    """
    from reviewgate.main import get_app_context

    ctx = get_app_context()

    async def _report(orchestrator):
        change = await orchestrator.get_change(change_id)
        decision = await orchestrator.evaluator.evaluate(change)
        return render_gate_report(
            change,
            decision,
            await orchestrator.store.latest_results(change_id),
            await orchestrator.store.resolved_finding_ids(change_id),
        )

    try:
        text = ctx.run(_report)
    except Exception as e:
        console.print(f"[red]Error rendering report:[/red] {e}")
        raise typer.Exit(code=1)

    if raw:
        typer.echo(text, nl=False)
    else:
        console.print(Markdown(text))
