# Copyright (c) Syntropy Systems
"""JUnit-style XML result files, one per scenario."""
from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING

from tempo.models.results import ScenarioOutcome

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from tempo.models.results import RunResult
    from tempo.models.scenario import Scenario

RESULT_FILE_GLOB = "TEST-*.xml"


def result_file_name(scenario: Scenario) -> str:
    """File name of a scenario's result file."""
    return f"TEST-{scenario.test_class_name}.xml"


def write_result_file(
    directory: Path,
    scenario: Scenario,
    results: Sequence[RunResult],
) -> Path:
    """Write one testsuite per scenario, one testcase per executed version.

    Cancelled executions are recorded as skipped, so a scenario that never
    ran has ``tests == skipped``.
    """
    skipped = sum(1 for r in results if r.outcome == ScenarioOutcome.CANCELLED)
    failures = sum(1 for r in results if r.outcome == ScenarioOutcome.FAILED)
    errors = sum(
        1
        for r in results
        if r.outcome in (ScenarioOutcome.TIMED_OUT, ScenarioOutcome.RUNNER_FAILED)
    )
    total_seconds = sum(sum(r.samples) for r in results) / 1000

    suite = ET.Element(
        "testsuite",
        {
            "name": scenario.test_class_name,
            "tests": str(len(results)),
            "skipped": str(skipped),
            "failures": str(failures),
            "errors": str(errors),
            "time": f"{total_seconds:.3f}",
        },
    )
    properties = ET.SubElement(suite, "properties")
    ET.SubElement(properties, "property", {"name": "scenario.id", "value": scenario.id})
    ET.SubElement(properties, "property", {"name": "channel", "value": scenario.channel})

    for result in results:
        case = ET.SubElement(
            suite,
            "testcase",
            {
                "classname": scenario.test_class_name,
                "name": result.baseline_version,
                "time": f"{sum(result.samples) / 1000:.3f}",
            },
        )
        message = result.error_message or result.outcome.value
        if result.outcome == ScenarioOutcome.CANCELLED:
            ET.SubElement(case, "skipped", {"message": message})
        elif result.outcome == ScenarioOutcome.FAILED:
            ET.SubElement(case, "failure", {"message": message})
        elif result.outcome != ScenarioOutcome.COMPLETED:
            ET.SubElement(case, "error", {"message": message, "type": result.outcome.value})
        if result.samples:
            samples_text = " ".join(f"{s:g}" for s in result.samples)
            ET.SubElement(case, "system-out").text = f"samples_ms: {samples_text}"

    directory.mkdir(parents=True, exist_ok=True)
    path = directory / result_file_name(scenario)
    tree = ET.ElementTree(suite)
    ET.indent(tree)
    tree.write(path, encoding="utf-8", xml_declaration=True)
    return path


def all_tests_skipped(path: Path) -> bool:
    """Whether every test in a result file was skipped.

    Compares the root element's ``tests`` and ``skipped`` attributes.
    Raises ET.ParseError for malformed files.
    """
    root = ET.parse(path).getroot()
    return root.get("tests", "") == root.get("skipped", "")
