# Copyright (c) Syntropy Systems
"""tempo samples subcommand group."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from tempo import samples
from tempo.errors import TempoError

console = Console()

samples_app = typer.Typer(
    name="samples",
    help="Generate and check the sample projects scenarios build.",
    no_args_is_help=True,
)


def _shape_names(names: list[str] | None) -> list[str]:
    return names or [shape.name for shape in samples.DEFAULT_SHAPES]


@samples_app.command()
def generate(
    names: Optional[list[str]] = typer.Argument(None, help="Samples to generate (default: all)"),
    root: Path = typer.Option(Path("samples"), "--root", "-r", help="Directory for samples"),
    max_projects: Optional[int] = typer.Option(
        None, "--max-projects", help="Cap the number of projects per sample"
    ),
) -> None:
    """Generate sample projects."""
    try:
        for name in _shape_names(names):
            sample_dir = samples.generate(samples.get_shape(name), root, max_projects=max_projects)
            console.print(f"[green]Generated[/green] {sample_dir}")
    except TempoError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


@samples_app.command()
def clean(
    names: Optional[list[str]] = typer.Argument(None, help="Samples to delete (default: all)"),
    root: Path = typer.Option(Path("samples"), "--root", "-r", help="Directory for samples"),
) -> None:
    """Delete generated sample projects."""
    removed = samples.clean(root, _shape_names(names))
    if not removed:
        console.print("[dim]Nothing to clean[/dim]")
    for path in removed:
        console.print(f"[yellow]Removed[/yellow] {path}")


@samples_app.command(name="check-duplicates")
def check_duplicates(
    root: Path = typer.Option(Path("samples"), "--root", "-r", help="Directory for samples"),
) -> None:
    """Report build files with identical content.

    Duplicates are reported, not treated as an error.
    """
    duplicates = samples.find_identical_build_files(root)
    if not duplicates:
        console.print("[green]No identical build files[/green]")
        return
    for digest, paths in sorted(duplicates.items()):
        console.print(f"[yellow]Duplicate build files for hash {digest}:[/yellow]")
        for path in paths:
            console.print(f"  {path}")
