# Copyright (c) Syntropy Systems
"""Report builder - HTML and CSV reports plus the CI result archive."""
from __future__ import annotations

import csv
import logging
import zipfile
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from jinja2 import Environment, FileSystemLoader, select_autoescape

import tempo
from tempo.junit import all_tests_skipped

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tempo.models.results import ComparisonReport

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"
HTML_REPORT = "index.html"
CSV_REPORT = "comparison.csv"
CSV_COLUMNS = (
    "scenarioId",
    "baseline",
    "currentMedian",
    "baselineMedian",
    "deltaPct",
    "regressionFlag",
)
# Zip entries carry a fixed timestamp so archives are byte-for-byte stable
ZIP_TIMESTAMP = (1980, 1, 1, 0, 0, 0)
DEBUG_PREFIX = "debug"


def format_ms(value: float | None) -> str:
    """Format a duration in milliseconds."""
    if value is None:
        return "-"
    return f"{value:.1f} ms"


def format_pct(value: float | None) -> str:
    """Format a signed percentage."""
    if value is None:
        return "-"
    return f"{value:+.2f}%"


def format_confidence(value: float | None) -> str:
    """Format a confidence as a percentage."""
    if value is None:
        return "-"
    return f"{value * 100:.1f}%"


def _number(value: float | None) -> str:
    return "" if value is None else f"{value:.3f}"


def create_environment() -> Environment:
    """Jinja2 environment used for HTML reports."""
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        autoescape=select_autoescape(["html", "j2"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["format_ms"] = format_ms
    env.filters["format_pct"] = format_pct
    env.filters["format_confidence"] = format_confidence
    env.globals["version"] = tempo.__version__
    return env


@dataclass
class ScenarioArtifacts:
    """Files a scenario left behind: its result file and debug artifacts."""

    result_file: Path | None = None
    debug_paths: list[Path] = field(default_factory=list)
    root: Path | None = None


@dataclass
class ArtifactBundle:
    """Artifacts of a whole run, keyed by scenario id.

    ``source_dir`` is the directory result files are archived relative to;
    its name is part of the archive name.
    """

    source_dir: Path
    scenarios: dict[str, ScenarioArtifacts] = field(default_factory=dict)


@dataclass(frozen=True)
class ReportBundle:
    """Paths of the generated reports."""

    html_report: Path
    csv_report: Path
    result_archive: Path


def archive_name(source_dir: Path) -> str:
    """Name of the result archive for a result directory."""
    return f"test-results-{source_dir.name}.zip"


def is_archivable(result_file: Path) -> bool:
    """Whether a result file belongs in the archive.

    Files where every test was skipped, and files that cannot be parsed,
    are left out.
    """
    try:
        return not all_tests_skipped(result_file)
    except (ET.ParseError, OSError) as e:
        logger.warning("Skipping unreadable result file %s: %s", result_file, e)
        return False


class ReportBuilder:
    """Renders comparison reports and packages results for CI."""

    def __init__(self, output_dir: Path, env: Environment | None = None) -> None:
        self.output_dir = output_dir
        self.env = env or create_environment()

    def build(
        self,
        reports: Sequence[ComparisonReport],
        artifacts: ArtifactBundle,
        generated_at: str,
        title: str = "Performance comparison",
    ) -> ReportBundle:
        """Write the HTML report, CSV report and result archive.

        Output depends only on the arguments; ``generated_at`` is the sole
        time-dependent value.
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        ordered = sorted(reports, key=lambda r: r.scenario_id)

        html_path = self.write_html(ordered, generated_at, title)
        csv_path = self.write_csv(ordered)
        archive_path = self.write_archive(artifacts)

        logger.info("Reports written to %s", self.output_dir)
        return ReportBundle(
            html_report=html_path,
            csv_report=csv_path,
            result_archive=archive_path,
        )

    def write_html(
        self,
        reports: Sequence[ComparisonReport],
        generated_at: str,
        title: str,
    ) -> Path:
        """Render the HTML report."""
        template = self.env.get_template("report.html.j2")
        html = template.render(
            title=title,
            generated_at=generated_at,
            reports=reports,
            regressed=sum(1 for r in reports if r.regression_flag),
            failed=sum(1 for r in reports if r.execution_failed),
            missing=sum(1 for r in reports if r.baseline_missing),
        )
        path = self.output_dir / HTML_REPORT
        path.write_text(html, encoding="utf-8")
        return path

    def write_csv(self, reports: Sequence[ComparisonReport]) -> Path:
        """Write one CSV row per scenario and baseline."""
        path = self.output_dir / CSV_REPORT
        with path.open("w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f, lineterminator="\n")
            writer.writerow(CSV_COLUMNS)
            for report in reports:
                current_median = report.current_stats.median if report.current_stats else None
                if not report.baseline_stats:
                    writer.writerow(
                        [report.scenario_id, "", _number(current_median), "", "", "false"]
                    )
                    continue
                for comparison in report.baseline_stats:
                    baseline_median = comparison.stats.median if comparison.stats else None
                    writer.writerow(
                        [
                            report.scenario_id,
                            comparison.baseline_version,
                            _number(current_median),
                            _number(baseline_median),
                            _number(comparison.delta_pct),
                            "true" if report.regression_flag and comparison.regressed else "false",
                        ]
                    )
        return path

    def write_archive(self, artifacts: ArtifactBundle) -> Path:
        """Zip the archivable result files and their scenarios' debug artifacts."""
        entries: dict[str, Path] = {}
        for scenario_id in sorted(artifacts.scenarios):
            scenario = artifacts.scenarios[scenario_id]
            if scenario.result_file is None or not is_archivable(scenario.result_file):
                logger.debug("Excluding %s from the result archive", scenario_id)
                continue
            entries[_relative_name(scenario.result_file, artifacts.source_dir)] = (
                scenario.result_file
            )
            for debug_path in scenario.debug_paths:
                if not debug_path.is_file():
                    continue
                relative = _relative_name(debug_path, scenario.root or debug_path.parent)
                entries[f"{DEBUG_PREFIX}/{scenario_id}/{relative}"] = debug_path

        path = self.output_dir / archive_name(artifacts.source_dir)
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for name in sorted(entries):
                info = zipfile.ZipInfo(name, date_time=ZIP_TIMESTAMP)
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = 0o644 << 16
                archive.writestr(info, entries[name].read_bytes())
        return path


def _relative_name(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.name
