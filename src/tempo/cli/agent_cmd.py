# Copyright (c) Syntropy Systems
"""CLI command for running a tempo agent."""

from pathlib import Path
from typing import Optional

import typer
import uvicorn
from rich.console import Console

from tempo.agent.app import create_app
from tempo.config import find_tempo_dir, get_runs_dir, load_settings
from tempo.errors import TempoError

console = Console()


def agent(
    port: int = typer.Option(8090, "--port", "-p", help="Port to listen on"),
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    runs_dir: Optional[Path] = typer.Option(
        None,
        "--runs-dir",
        "-d",
        envvar="TEMPO_AGENT_RUNS_DIR",
        help="Directory for execution output (default: .tempo/runs/agent)",
    ),
    worker_id: Optional[str] = typer.Option(
        None, "--worker-id", help="Worker id reported in results (default: hostname)"
    ),
) -> None:
    """
    Start a tempo agent that executes scenarios for a remote coordinator.

    The agent runs one scenario at a time with the command and distributions
    configured in the local tempo project.

    Examples:

        # Serve on the default port
        tempo agent

        # Bind to all interfaces (for remote access)
        tempo agent --host 0.0.0.0 --port 8090
    """
    tempo_dir = find_tempo_dir()
    try:
        settings = load_settings(tempo_dir)
        if runs_dir is None:
            if tempo_dir is None:
                console.print("[red]Error:[/red] No .tempo directory found; pass --runs-dir.")
                raise typer.Exit(1)
            runs_dir = get_runs_dir(tempo_dir) / "agent"
        app = create_app(settings, runs_dir, worker_id=worker_id)
    except TempoError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print("[bold]tempo agent[/bold]")
    console.print(f"  Host: {host}")
    console.print(f"  Port: {port}")
    console.print(f"  Runs: {runs_dir}")
    console.print()

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
    )
