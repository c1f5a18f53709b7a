# Copyright (c) Syntropy Systems
"""A performance test run from catalog to reports."""
from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from tempo.aggregate import ResultAggregator
from tempo.catalog import ScenarioCatalog, ScenarioDefinitions
from tempo.config import (
    get_catalog_path,
    get_definitions_path,
    get_reports_dir,
    get_runs_dir,
    get_test_results_dir,
)
from tempo.coordinator import DistributedCoordinator, LocalWorker
from tempo.db import database_path, get_connection, init_db, record_results, utcnow
from tempo.errors import ConfigError, TempoError
from tempo.junit import write_result_file
from tempo.models.results import ResultsDocument
from tempo.report import ArtifactBundle, ReportBuilder, ScenarioArtifacts
from tempo.runner import DistributionResolver, ScenarioRunner

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from tempo.config import TempoSettings
    from tempo.coordinator import CoordinatorResult, Worker
    from tempo.models.results import ComparisonReport, RunResult
    from tempo.models.scenario import Scenario
    from tempo.report import ReportBundle
    from tempo.workunits import PerformancePreset

logger = logging.getLogger(__name__)

RESULTS_FILE = "results.json"


def load_scenarios(
    settings: TempoSettings,
    tempo_dir: Path,
    preset: PerformancePreset | None = None,
) -> list[Scenario]:
    """Build the catalog from scenarios.yaml and apply the preset's filters."""
    definitions_path = get_definitions_path(tempo_dir)
    if not definitions_path.exists():
        msg = f"Scenario definitions not found: {definitions_path}"
        raise ConfigError(msg)
    definitions = ScenarioDefinitions.from_yaml(definitions_path)
    catalog = ScenarioCatalog.build(
        definitions.test_classes, settings.baselines, settings.channel
    )
    if preset is None:
        return catalog.list_scenarios()
    return catalog.list_scenarios(preset.include_categories, preset.exclude_categories)


def save_results(path: Path, document: ResultsDocument) -> None:
    """Write a results document as JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    _ = path.write_text(document.model_dump_json(indent=2))


def load_results(path: Path) -> ResultsDocument:
    """Read a results document written by save_results()."""
    if not path.exists():
        msg = f"Results file not found: {path}"
        raise ConfigError(msg)
    return ResultsDocument.model_validate_json(path.read_text())


def write_result_files(
    results_dir: Path,
    scenarios: Sequence[Scenario],
    results: Sequence[RunResult],
    runs_dir: Path | None = None,
) -> ArtifactBundle:
    """Write one result file per scenario and collect the debug artifacts."""
    by_scenario: dict[str, list[RunResult]] = defaultdict(list)
    for result in results:
        by_scenario[result.scenario_id].append(result)

    bundle = ArtifactBundle(source_dir=results_dir)
    for scenario in scenarios:
        scenario_results = by_scenario.get(scenario.id, [])
        if not scenario_results:
            continue
        result_file = write_result_file(results_dir, scenario, scenario_results)
        # Debug artifacts only matter for executions that broke
        debug_paths = sorted(
            {
                Path(path)
                for result in scenario_results
                if result.outcome.is_execution_failure
                for path in result.artifact_paths
            }
        )
        bundle.scenarios[scenario.id] = ScenarioArtifacts(
            result_file=result_file,
            debug_paths=debug_paths,
            root=runs_dir / scenario.id if runs_dir is not None else None,
        )
    return bundle


def render_reports(
    document: ResultsDocument,
    report_dir: Path,
    results_dir: Path,
    generated_at: str,
    runs_dir: Path | None = None,
    title: str | None = None,
) -> tuple[list[ComparisonReport], ReportBundle]:
    """Aggregate a results document and write every report."""
    aggregator = ResultAggregator(
        threshold=document.threshold, min_confidence=document.min_confidence
    )
    reports = aggregator.aggregate(document.results, document.scenarios)
    artifacts = write_result_files(results_dir, document.scenarios, document.results, runs_dir)
    bundle = ReportBuilder(report_dir).build(
        reports,
        artifacts,
        generated_at=generated_at,
        title=title or f"Performance comparison ({document.channel})",
    )
    return reports, bundle


def store_results(settings: TempoSettings, results: Sequence[RunResult]) -> int:
    """Persist results in the result store, when one is configured."""
    if not settings.db_url:
        return 0
    db_path = database_path(settings.db_url)
    init_db(db_path)
    conn = get_connection(db_path)
    try:
        return record_results(
            conn,
            results,
            channel=settings.channel,
            build_id=settings.build_id,
            branch_name=settings.branch_name,
        )
    finally:
        conn.close()


@dataclass
class SessionResult:
    """A finished run: the coordinator verdict and where reports went."""

    coordinator: CoordinatorResult
    bundle: ReportBundle
    results_path: Path
    stored: int = 0
    store_error: str | None = None

    @property
    def failed(self) -> bool:
        """Whether the run should exit non-zero."""
        return self.coordinator.failed or self.store_error is not None

    @property
    def exit_code(self) -> int:
        """Process exit code for the run."""
        return 1 if self.failed else 0

    @property
    def failure_reasons(self) -> list[str]:
        """Why the run failed, coordinator reasons first."""
        reasons = list(self.coordinator.failure_reasons)
        if self.store_error is not None:
            reasons.append(f"Could not store results: {self.store_error}")
        return reasons


class PerformanceSession:
    """Runs one preset in a tempo project and writes its reports."""

    def __init__(
        self,
        settings: TempoSettings,
        tempo_dir: Path,
        preset: PerformancePreset,
    ) -> None:
        self.settings = preset.apply(settings)
        if self.settings.db_url:
            # Reject unsupported result stores before anything runs
            _ = database_path(self.settings.db_url)
        self.tempo_dir = tempo_dir
        self.preset = preset
        self._coordinator: DistributedCoordinator | None = None

    @property
    def runs_dir(self) -> Path:
        """Per-execution output of this preset."""
        return get_runs_dir(self.tempo_dir) / self.preset.name

    @property
    def results_dir(self) -> Path:
        """Result files of this preset."""
        return get_test_results_dir(self.tempo_dir) / self.preset.name

    @property
    def report_dir(self) -> Path:
        """Reports of this preset."""
        return get_reports_dir(self.tempo_dir) / self.preset.name

    def scenarios(self) -> list[Scenario]:
        """Scenarios selected by the preset, also written to the catalog file."""
        scenarios = load_scenarios(self.settings, self.tempo_dir, self.preset)
        ScenarioCatalog(scenarios).write(get_catalog_path(self.tempo_dir))
        return scenarios

    def resolver(self) -> DistributionResolver:
        """Resolver for the configured distributions."""
        return DistributionResolver(
            self.settings.distributions_dir, self.settings.current_distribution
        )

    def local_workers(self, count: int | None = None) -> list[Worker]:
        """One worker per thread, each with its own runner."""
        count = count or self.settings.workers
        resolver = self.resolver()
        return [
            LocalWorker(
                ScenarioRunner(
                    self.settings,
                    self.runs_dir,
                    resolver=resolver,
                    workdir=self.tempo_dir.parent,
                    worker_id=f"worker-{index}" if count > 1 else "local",
                )
            )
            for index in range(count)
        ]

    def cancel(self) -> None:
        """Cancel the run in progress, if any."""
        if self._coordinator is not None:
            self._coordinator.cancel()

    def run(
        self,
        workers: Sequence[Worker],
        scenarios: Sequence[Scenario] | None = None,
        resolve_locally: bool = True,
        on_result: Callable[[RunResult], None] | None = None,
    ) -> SessionResult:
        """Execute the preset, write results and reports, then store results.

        Reports are written whether or not the run passes.
        """
        if scenarios is None:
            scenarios = self.scenarios()

        self._coordinator = DistributedCoordinator(
            self.settings,
            workers,
            resolver=self.resolver() if resolve_locally else None,
            on_result=on_result,
        )
        outcome = self._coordinator.run(scenarios)

        document = ResultsDocument(
            channel=self.settings.channel,
            checks=self.settings.checks,
            threshold=self.settings.threshold,
            min_confidence=self.settings.min_confidence,
            build_id=self.settings.build_id,
            branch_name=self.settings.branch_name,
            scenarios=list(scenarios),
            results=outcome.results,
        )
        results_path = self.report_dir / RESULTS_FILE
        save_results(results_path, document)

        artifacts = write_result_files(
            self.results_dir, scenarios, outcome.results, self.runs_dir
        )
        bundle = ReportBuilder(self.report_dir).build(
            outcome.reports,
            artifacts,
            generated_at=utcnow(),
            title=f"{self.preset.name} ({self.settings.channel})",
        )

        stored = 0
        store_error: str | None = None
        try:
            stored = store_results(self.settings, outcome.results)
        except (TempoError, sqlite3.Error) as e:
            logger.exception("Failed to store results in %s", self.settings.db_url)
            store_error = str(e)

        return SessionResult(
            coordinator=outcome,
            bundle=bundle,
            results_path=results_path,
            stored=stored,
            store_error=store_error,
        )
