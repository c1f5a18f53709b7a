# Copyright (c) Syntropy Systems
"""tempo rebaseline command."""

import typer
from rich.console import Console

from tempo.cli.common import load_project
from tempo.config import get_definitions_path
from tempo.errors import TempoError
from tempo.rebaseline import rebaseline as rebaseline_definitions

console = Console()


def rebaseline(
    version: str = typer.Argument(..., help="Baseline version every scenario should use"),
) -> None:
    """Point every scenario definition at a new baseline version."""
    tempo_dir, _settings = load_project(console)
    definitions_path = get_definitions_path(tempo_dir)

    try:
        changed = rebaseline_definitions(definitions_path, version)
    except TempoError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    if changed:
        console.print(f"[green]Rebaselined {changed} scenario(s) onto {version}[/green]")
    else:
        console.print(f"[dim]All scenarios already use {version}[/dim]")
