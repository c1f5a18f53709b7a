# Copyright (c) Syntropy Systems
"""tempo units command."""

import typer
from rich.console import Console
from rich.table import Table

from tempo.cli.common import load_project
from tempo.errors import TempoError
from tempo.workunits import performance_work_units

console = Console()


def units() -> None:
    """List the work units registered with the build engine."""
    _tempo_dir, settings = load_project(console)

    try:
        work_units = performance_work_units(settings)
    except TempoError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    table = Table(show_header=True, header_style="bold")
    table.add_column("Name")
    table.add_column("Kind", style="dim")
    table.add_column("Depends on")
    table.add_column("Finalized by")
    table.add_column("Channel")

    for unit in work_units:
        table.add_row(
            unit.name,
            unit.kind.value,
            ", ".join(unit.depends_on) or "-",
            ", ".join(unit.finalized_by) or "-",
            unit.properties.get("tempo.channel", "-"),
        )

    console.print(table)
