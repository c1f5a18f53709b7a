# Copyright (c) Syntropy Systems
"""Helpers shared by tempo commands."""
from __future__ import annotations

from typing import TYPE_CHECKING

import typer
from rich.table import Table

from tempo.config import load_settings, require_tempo_dir
from tempo.errors import TempoError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from rich.console import Console

    from tempo.config import TempoSettings
    from tempo.models.results import ComparisonReport


def load_project(console: Console) -> tuple[Path, TempoSettings]:
    """Find the tempo project and load its settings, or exit."""
    try:
        tempo_dir = require_tempo_dir()
        settings = load_settings(tempo_dir)
    except TempoError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    return tempo_dir, settings


def format_delta(value: float | None) -> str:
    """Format a median delta in percent."""
    if value is None:
        return "-"
    return f"{value:+.1f}%"


def _status(report: ComparisonReport) -> str:
    if report.execution_failed:
        return f"[red]{report.outcome.value}[/red]"
    if report.regression_flag:
        return "[red]regressed[/red]"
    if report.outcome.value == "cancelled":
        return "[yellow]cancelled[/yellow]"
    if report.baseline_missing:
        return "[yellow]baseline missing[/yellow]"
    return "[green]ok[/green]"


def print_reports(console: Console, reports: Sequence[ComparisonReport]) -> None:
    """Print comparison reports as a table."""
    if not reports:
        console.print("[dim]No scenarios reported[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Scenario")
    table.add_column("Status")
    table.add_column("Current", justify="right")
    table.add_column("Baselines")
    table.add_column("Confidence", justify="right")

    for report in reports:
        current = "-"
        if report.current_stats is not None:
            current = f"{report.current_stats.median:.1f} ms"
        baselines = ", ".join(
            f"{c.baseline_version} {'n/a' if c.missing else format_delta(c.delta_pct)}"
            for c in report.baseline_stats
        )
        confidence = "-" if report.confidence is None else f"{report.confidence:.1%}"
        table.add_row(
            report.scenario_id,
            _status(report),
            current,
            baselines or (report.failure_reason or "-"),
            confidence,
        )

    console.print(table)
