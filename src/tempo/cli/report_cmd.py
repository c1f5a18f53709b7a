# Copyright (c) Syntropy Systems
"""tempo report command."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from tempo.cli.common import load_project, print_reports
from tempo.config import get_reports_dir, get_runs_dir, get_test_results_dir
from tempo.db import utcnow
from tempo.errors import TempoError
from tempo.session import RESULTS_FILE, load_results, render_reports

console = Console()


def report(
    preset: str = typer.Option(
        "performanceTest",
        "--preset", "-p",
        help="Preset whose stored results to render",
    ),
    results: Optional[Path] = typer.Option(
        None,
        "--results", "-r",
        help="Results file (default: .tempo/reports/<preset>/results.json)",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Report directory (default: next to the results file)",
    ),
    generated_at: Optional[str] = typer.Option(
        None,
        "--generated-at",
        help="Timestamp printed in the report (default: now)",
    ),
) -> None:
    """Re-render reports from a stored results file.

    Output is identical for identical results and --generated-at.
    """
    tempo_dir, _settings = load_project(console)
    results_path = results or get_reports_dir(tempo_dir) / preset / RESULTS_FILE
    report_dir = output or results_path.parent

    try:
        document = load_results(results_path)
        reports, bundle = render_reports(
            document,
            report_dir,
            get_test_results_dir(tempo_dir) / preset,
            generated_at=generated_at or utcnow(),
            runs_dir=get_runs_dir(tempo_dir) / preset,
            title=f"{preset} ({document.channel})",
        )
    except TempoError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    print_reports(console, reports)
    console.print()
    console.print(f"[dim]html:[/dim] {bundle.html_report}")
    console.print(f"[dim]csv:[/dim] {bundle.csv_report}")
    console.print(f"[dim]archive:[/dim] {bundle.result_archive}")
