# Copyright (c) Syntropy Systems
"""tempo run and distributed commands."""
from __future__ import annotations

import signal
from typing import TYPE_CHECKING, Optional

import typer
from rich.console import Console

from tempo.agent.client import AgentClient, RemoteWorker
from tempo.cli.common import load_project, print_reports
from tempo.errors import TempoError
from tempo.models.results import ScenarioOutcome
from tempo.session import PerformanceSession
from tempo.workunits import get_preset

if TYPE_CHECKING:
    from tempo.config import TempoSettings
    from tempo.coordinator import Worker
    from tempo.models.results import RunResult
    from tempo.session import SessionResult

console = Console()

_OUTCOME_STYLE = {
    ScenarioOutcome.COMPLETED: "green",
    ScenarioOutcome.FAILED: "red",
    ScenarioOutcome.TIMED_OUT: "red",
    ScenarioOutcome.RUNNER_FAILED: "red",
    ScenarioOutcome.CANCELLED: "yellow",
}


def _print_result(result: RunResult) -> None:
    style = _OUTCOME_STYLE[result.outcome]
    detail = f"{len(result.samples)} samples" if result.samples else result.error_message or ""
    console.print(
        f"  [{style}]{result.outcome.value:<13}[/{style}] "
        f"{result.scenario_id} @ {result.baseline_version} [dim]{detail}[/dim]"
    )


def _overrides(
    settings: TempoSettings,
    baselines: str | None,
    checks: str | None,
    build_id: str | None,
    branch: str | None,
) -> TempoSettings:
    return settings.with_overrides(
        baselines=baselines,
        checks=checks,
        build_id=build_id,
        branch_name=branch,
    )


def _execute(
    session: PerformanceSession,
    workers: list[Worker],
    resolve_locally: bool,
) -> SessionResult:
    """Run a session, cancelling cleanly on Ctrl-C."""

    def _signal_handler(signum: int, frame: object) -> None:
        console.print("\n[yellow]Cancelling, finishing in-flight scenarios...[/yellow]")
        session.cancel()

    previous = signal.signal(signal.SIGINT, _signal_handler)
    try:
        return session.run(workers, resolve_locally=resolve_locally, on_result=_print_result)
    finally:
        _ = signal.signal(signal.SIGINT, previous)


def _finish(result: SessionResult) -> None:
    console.print()
    print_reports(console, result.coordinator.reports)
    console.print()
    console.print(f"[dim]html:[/dim] {result.bundle.html_report}")
    console.print(f"[dim]csv:[/dim] {result.bundle.csv_report}")
    console.print(f"[dim]archive:[/dim] {result.bundle.result_archive}")
    console.print(f"[dim]results:[/dim] {result.results_path}")
    if result.stored:
        console.print(f"[dim]stored {result.stored} execution(s) in the result database[/dim]")

    if result.failed:
        for reason in result.failure_reasons:
            console.print(f"[red]Failed:[/red] {reason}")
        raise typer.Exit(result.exit_code)

    console.print("[green]Performance checks passed[/green]")


def run(
    preset: str = typer.Option(
        "performanceTest",
        "--preset", "-p",
        help="Local preset (performanceTest, performanceExperiment, ...)",
    ),
    baselines: Optional[str] = typer.Option(
        None, "--baselines", "-b", help="Comma-separated baselines (overrides config)"
    ),
    checks: Optional[str] = typer.Option(
        None, "--checks", help="'all' fails on regressions, 'none' only reports"
    ),
    build_id: Optional[str] = typer.Option(None, "--build-id", help="CI build id"),
    branch: Optional[str] = typer.Option(None, "--branch", help="Branch under test"),
) -> None:
    """Run a local performance test preset with a single worker.

    Examples:
        tempo run
        tempo run --preset performanceExperiment --baselines 2.0,last

    """
    tempo_dir, settings = load_project(console)

    try:
        selected = get_preset(preset, distributed=False)
        settings = _overrides(settings, baselines, checks, build_id, branch)
        session = PerformanceSession(settings, tempo_dir, selected)
        console.print(
            f"[bold]{selected.name}[/bold] on channel {session.settings.channel}, "
            f"baselines {', '.join(session.settings.baselines)}"
        )
        result = _execute(session, session.local_workers(1), resolve_locally=True)
    except TempoError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    _finish(result)


def distributed(
    preset: str = typer.Option(
        "distributedPerformanceTest",
        "--preset", "-p",
        help="Distributed preset (distributedPerformanceTest, ...)",
    ),
    workers: Optional[int] = typer.Option(
        None, "--workers", "-w", help="Local worker threads (overrides config)"
    ),
    agents: Optional[list[str]] = typer.Option(
        None,
        "--agent", "-a",
        help="Remote agent URL, one worker each (repeatable)",
    ),
    baselines: Optional[str] = typer.Option(
        None, "--baselines", "-b", help="Comma-separated baselines (overrides config)"
    ),
    checks: Optional[str] = typer.Option(
        None, "--checks", help="'all' fails on regressions, 'none' only reports"
    ),
    build_id: Optional[str] = typer.Option(None, "--build-id", help="CI build id"),
    branch: Optional[str] = typer.Option(None, "--branch", help="Branch under test"),
    agent_timeout: float = typer.Option(
        3600.0, "--agent-timeout", help="Seconds to wait for one remote execution"
    ),
) -> None:
    """Run a distributed preset across worker threads or remote agents.

    Examples:
        tempo distributed --workers 4
        tempo distributed --preset distributedFullPerformanceTest
        tempo distributed --agent http://perf-1:8090 --agent http://perf-2:8090

    """
    tempo_dir, settings = load_project(console)

    clients: list[AgentClient] = []
    try:
        selected = get_preset(preset, distributed=True)
        settings = _overrides(settings, baselines, checks, build_id, branch)
        settings = settings.with_overrides(workers=workers)
        session = PerformanceSession(settings, tempo_dir, selected)

        pool: list[Worker]
        if agents:
            clients = [AgentClient(url, timeout=agent_timeout) for url in agents]
            pool = [
                RemoteWorker(f"agent-{index}", client)
                for index, client in enumerate(clients)
            ]
        else:
            pool = session.local_workers()

        console.print(
            f"[bold]{selected.name}[/bold] on channel {session.settings.channel}, "
            f"{len(pool)} worker(s), baselines {', '.join(session.settings.baselines)}"
        )
        # Remote agents resolve distributions on their own machines
        result = _execute(session, pool, resolve_locally=not agents)
    except TempoError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    finally:
        for client in clients:
            client.close()

    _finish(result)
