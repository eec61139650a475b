"""Main CLI entry point for Reviewgate.

This module provides the main Typer application with sub-commands for
change management, stage results, review runs and the commit gate.

Usage:
    reviewgate change create "Add rate limiting" --path src/api.py --lines 120
    reviewgate stage record <change-id> implementation pass
    reviewgate review run <change-id>
    reviewgate gate evaluate <change-id>
    reviewgate change commit <change-id>
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Optional, TypeVar

import typer
from rich.console import Console

from reviewgate.cli import change as change_cli
from reviewgate.cli import gate as gate_cli
from reviewgate.cli import review as review_cli
from reviewgate.cli import stage as stage_cli
from reviewgate.config import ReviewgateConfig, load_config
from reviewgate.database.connection import get_engine, get_session_factory, init_schema
from reviewgate.logging import setup_logging
from reviewgate.workflow import SqlStageResultStore, WorkflowOrchestrator

T = TypeVar("T")

app = typer.Typer(
    name="reviewgate",
    help="Reviewgate: review-gated change workflow",
    no_args_is_help=True,
)

app.add_typer(change_cli.app, name="change", help="Manage changes")
app.add_typer(stage_cli.app, name="stage", help="Record and inspect stage results")
app.add_typer(review_cli.app, name="review", help="Run or submit reviews")
app.add_typer(gate_cli.app, name="gate", help="Evaluate the commit gate")

console = Console()


class AppContext:
    """Application context shared across CLI commands.

    Attributes:
        config: Loaded Reviewgate configuration
        engine: Async SQLAlchemy engine
        session_factory: Factory for creating database sessions
        store: SQL-backed stage result store
        orchestrator: Workflow orchestrator over the store
    """

    def __init__(self, config: ReviewgateConfig):
        self.config = config
        self.engine = get_engine(config.database)
        self.session_factory = get_session_factory(self.engine)
        self.store = SqlStageResultStore(self.session_factory)
        self.orchestrator = WorkflowOrchestrator.from_config(config, self.store)

    def run(self, operation: Callable[[WorkflowOrchestrator], Awaitable[T]]) -> T:
        """Run an orchestrator operation to completion.

        The schema is created on first use and the engine's connections are
        released afterwards, so each command gets a fresh event loop.

        Args:
            operation: Coroutine function taking the orchestrator

        Returns:
            Whatever the operation returns
        """

        async def _run() -> T:
            await init_schema(self.engine)
            try:
                return await operation(self.orchestrator)
            finally:
                await self.engine.dispose()

        return asyncio.run(_run())


# Global context holder
_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the shared application context.

    Returns:
        AppContext instance with config, store and orchestrator

    Raises:
        RuntimeError: If context has not been initialized
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call initialize_context first.")
    return _app_context


def initialize_context(config: ReviewgateConfig) -> AppContext:
    """Initialize the global application context.

    Args:
        config: Reviewgate configuration

    Returns:
        Initialized AppContext instance
    """
    global _app_context
    _app_context = AppContext(config)
    return _app_context


@app.command()
def serve(
    host: Annotated[
        Optional[str],
        typer.Option("--host", "-h", help="Host to bind to (default: web.host)"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port to bind to (default: web.port)"),
    ] = None,
) -> None:
    """Start the Reviewgate HTTP API server.

    Args:
        host: Host address to bind to
        port: Port number to bind to
    """
    import uvicorn

    from reviewgate.web.app import create_app

    config = get_app_context().config
    bind_host = host or config.web.host
    bind_port = port or config.web.port

    console.print("[bold cyan]Starting Reviewgate API server[/bold cyan]")
    console.print(f"[dim]Host:[/dim] {bind_host}")
    console.print(f"[dim]Port:[/dim] {bind_port}")
    console.print()

    uvicorn.run(
        create_app(config),
        host=bind_host,
        port=bind_port,
        log_level="info",
    )


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure global options and initialize application context.

    Args:
        config_path: Optional path to TOML configuration file
        verbose: Enable debug-level logging
    """
    try:
        config = load_config(config_path)
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1)

    logging_config = config.logging
    if verbose:
        logging_config = logging_config.model_copy(update={"level": "DEBUG"})
    setup_logging(logging_config, stream=sys.stderr)

    try:
        initialize_context(config)
    except Exception as e:
        console.print(f"[red]Error initializing application:[/red] {e}")
        raise typer.Exit(code=1)

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
