# Copyright (c) Syntropy Systems
"""tempo catalog and scenarios commands."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from tempo.catalog import ScenarioCatalog
from tempo.cli.common import load_project
from tempo.config import get_catalog_path
from tempo.errors import TempoError
from tempo.session import load_scenarios
from tempo.workunits import get_preset

console = Console()


def catalog(
    preset: Optional[str] = typer.Option(
        None,
        "--preset", "-p",
        help="Only scenarios selected by this preset (e.g. performanceTest)",
    ),
    baselines: Optional[str] = typer.Option(
        None,
        "--baselines", "-b",
        help="Comma-separated baselines (overrides config)",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Catalog file to write (default: .tempo/scenario-list.csv)",
    ),
) -> None:
    """Write the scenario catalog file."""
    tempo_dir, settings = load_project(console)

    try:
        selected = get_preset(preset) if preset else None
        if selected is not None:
            settings = selected.apply(settings)
        settings = settings.with_overrides(baselines=baselines)
        scenario_list = load_scenarios(settings, tempo_dir, selected)
        path = output or get_catalog_path(tempo_dir)
        ScenarioCatalog(scenario_list).write(path)
    except TempoError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(f"[green]Wrote {len(scenario_list)} scenario(s) to[/green] {path}")


def scenarios(
    include: Optional[list[str]] = typer.Option(
        None,
        "--include", "-i",
        help="Only scenarios in this category (repeatable)",
    ),
    exclude: Optional[list[str]] = typer.Option(
        None,
        "--exclude", "-x",
        help="Skip scenarios in this category (repeatable)",
    ),
    catalog_file: Optional[Path] = typer.Option(
        None,
        "--catalog", "-c",
        help="Read a catalog file instead of scenarios.yaml",
    ),
) -> None:
    """List scenarios and the baselines they compare against."""
    tempo_dir, settings = load_project(console)

    try:
        if catalog_file is not None:
            full = ScenarioCatalog.read(catalog_file)
        else:
            full = ScenarioCatalog(load_scenarios(settings, tempo_dir))
        scenario_list = full.list_scenarios(include or (), exclude or ())
    except (TempoError, OSError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    if not scenario_list:
        console.print("[dim]No scenarios found[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("Test class", style="dim")
    table.add_column("Baselines")
    table.add_column("Channel")
    table.add_column("Categories")

    for scenario in scenario_list:
        table.add_row(
            scenario.id,
            scenario.test_class_name,
            ", ".join(scenario.baseline_versions),
            scenario.channel,
            ", ".join(scenario.categories) or "-",
        )

    console.print(table)
    console.print(f"[dim]{len(scenario_list)} scenario(s)[/dim]")
