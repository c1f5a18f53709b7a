# Copyright (c) Syntropy Systems
"""tempo init command."""

from pathlib import Path

import typer
import yaml
from rich.console import Console

from tempo.config import get_definitions_path

console = Console()

EXAMPLE_DEFINITIONS = {
    "scenarios": [
        {
            "test_class": "perf.JavaConfigurationPerformanceTest",
            "categories": ["PerformanceRegression"],
        },
        {
            "test_class": "perf.JavaIncrementalExperimentPerformanceTest",
            "categories": ["PerformanceExperiment"],
        },
    ],
}


def init(
    path: Path = typer.Argument(
        Path(),
        help="Directory to initialize (default: current directory)",
    ),
) -> None:
    """Initialize a new tempo project.

    Creates a .tempo directory with configuration, and a scenarios.yaml
    next to it if there is none yet.
    """
    target = path.resolve()
    tempo_dir = target / ".tempo"

    if tempo_dir.exists():
        console.print(f"[yellow]Already initialized:[/yellow] {tempo_dir}")
        return

    # Create directory structure
    tempo_dir.mkdir(parents=True)
    runs_dir = tempo_dir / "runs"
    runs_dir.mkdir()

    # Create default config
    config = {
        "channel": "commits",
        "baselines": ["last"],
        "checks": "all",
        "threshold": 0.05,
        "min_confidence": 0.95,
        "workers": 1,
        "memory_limit_mb": 3072,
        "execution_timeout": 1800,
        "kill_grace_period": 10,
        "command": [],
        "distributions_dir": "distributions",
    }

    config_path = tempo_dir / "config.yaml"
    with config_path.open("w") as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)

    definitions_path = get_definitions_path(tempo_dir)
    if not definitions_path.exists():
        with definitions_path.open("w") as f:
            yaml.safe_dump(EXAMPLE_DEFINITIONS, f, sort_keys=False)

    console.print(f"[green]Initialized tempo project:[/green] {tempo_dir}")
    console.print(f"  [dim]config:[/dim] {config_path}")
    console.print(f"  [dim]scenarios:[/dim] {definitions_path}")
    console.print(f"  [dim]runs:[/dim] {runs_dir}")
