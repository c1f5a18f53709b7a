# Copyright (c) Syntropy Systems
"""Scenario catalog: discovery, filtering and the flat catalog file."""
from __future__ import annotations

import csv
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypedDict, cast

import yaml

from tempo.errors import ConfigError
from tempo.models.scenario import Scenario

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

# Category marking exploratory tests kept out of the default runs
EXPERIMENT_CATEGORY = "PerformanceExperiment"

CATALOG_COLUMNS = ("id", "testClass", "baselines", "channel")
# Trailing column; files without it are still read
CATEGORIES_COLUMN = "categories"
LIST_SEPARATOR = ";"


class ScenarioDefinitionSpec(TypedDict, total=False):
    """Entry of the scenario definitions file."""

    test_class: str
    categories: list[str]
    baselines: list[str]


@dataclass
class TestClassDefinition:
    """A discovered performance test class."""

    __test__ = False  # not a pytest class

    test_class: str
    categories: tuple[str, ...] = ()
    baselines: tuple[str, ...] | None = None


@dataclass
class ScenarioDefinitions:
    """Contents of scenarios.yaml."""

    test_classes: list[TestClassDefinition] = field(default_factory=list)

    @classmethod
    def from_yaml(cls, path: Path) -> ScenarioDefinitions:
        """Load scenario definitions from a YAML file.

        Example::

            scenarios:
              - test_class: perf.JavaConfigurationPerformanceTest
                categories: [PerformanceRegression]
              - test_class: perf.NativeExperimentPerformanceTest
                categories: [PerformanceExperiment]
                baselines: ["4.2"]
        """
        with path.open() as f:
            data = cast("dict[str, object] | None", yaml.safe_load(f))

        if not data or "scenarios" not in data:
            msg = f"{path} must have a 'scenarios' list"
            raise ConfigError(msg)

        entries = cast("list[ScenarioDefinitionSpec]", data["scenarios"] or [])
        test_classes: list[TestClassDefinition] = []
        for entry in entries:
            if "test_class" not in entry:
                msg = f"Scenario entry {entry!r} has no 'test_class'"
                raise ConfigError(msg)
            baselines = entry.get("baselines")
            test_classes.append(
                TestClassDefinition(
                    test_class=entry["test_class"],
                    categories=tuple(entry.get("categories") or ()),
                    baselines=tuple(str(b) for b in baselines) if baselines else None,
                )
            )
        return cls(test_classes=test_classes)


def scenario_id_for(test_class: str) -> str:
    """Derive a stable scenario id from a test class name.

    ``perf.java.JavaConfigurationPerformanceTest`` becomes
    ``java-configuration-performance-test``.
    """
    simple_name = test_class.rsplit(".", 1)[-1]
    words = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "-", simple_name)
    return re.sub(r"[^a-z0-9]+", "-", words.lower()).strip("-")


class ScenarioCatalog:
    """The full set of scenarios for one channel."""

    _scenarios: list[Scenario]

    def __init__(self, scenarios: Iterable[Scenario]) -> None:
        by_id: dict[str, Scenario] = {}
        for scenario in scenarios:
            if scenario.id in by_id:
                msg = f"Duplicate scenario id '{scenario.id}'"
                raise ConfigError(msg)
            by_id[scenario.id] = scenario
        self._scenarios = [by_id[key] for key in sorted(by_id)]

    @classmethod
    def build(
        cls,
        test_classes: Iterable[TestClassDefinition],
        baselines: Sequence[str],
        channel: str,
    ) -> ScenarioCatalog:
        """Bind every discovered test class to the requested baselines."""
        scenarios: list[Scenario] = []
        for definition in test_classes:
            versions = definition.baselines or tuple(baselines)
            if not versions:
                msg = f"No baselines for {definition.test_class}"
                raise ConfigError(msg)
            scenarios.append(
                Scenario(
                    id=scenario_id_for(definition.test_class),
                    test_class_name=definition.test_class,
                    baseline_versions=tuple(versions),
                    channel=channel,
                    categories=definition.categories,
                )
            )
        return cls(scenarios)

    def __len__(self) -> int:
        return len(self._scenarios)

    def get(self, scenario_id: str) -> Scenario | None:
        """Look up a scenario by id."""
        for scenario in self._scenarios:
            if scenario.id == scenario_id:
                return scenario
        return None

    def list_scenarios(
        self,
        include_categories: Iterable[str] = (),
        exclude_categories: Iterable[str] = (),
    ) -> list[Scenario]:
        """Return scenarios ordered by id, filtered by category.

        With include categories, only scenarios in at least one of them are
        returned. Exclusion wins over inclusion.
        """
        include = set(include_categories)
        exclude = set(exclude_categories)

        selected: list[Scenario] = []
        for scenario in self._scenarios:
            categories = set(scenario.categories)
            if include and not categories & include:
                continue
            if categories & exclude:
                continue
            selected.append(scenario)
        return selected

    def write(self, path: Path) -> None:
        """Write the catalog as a flat CSV file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        write_catalog(path, self._scenarios)

    @classmethod
    def read(cls, path: Path) -> ScenarioCatalog:
        """Read a catalog written by write()."""
        return cls(read_catalog(path))


def write_catalog(path: Path, scenarios: Iterable[Scenario]) -> None:
    """Write scenarios, one per line, as ``id,testClass,baselines,channel,categories``."""
    with path.open("w", newline="") as f:
        writer = csv.writer(f, lineterminator="\n")
        writer.writerow((*CATALOG_COLUMNS, CATEGORIES_COLUMN))
        for scenario in scenarios:
            writer.writerow(
                [
                    scenario.id,
                    scenario.test_class_name,
                    LIST_SEPARATOR.join(scenario.baseline_versions),
                    scenario.channel,
                    LIST_SEPARATOR.join(scenario.categories),
                ]
            )


def _split(value: str) -> tuple[str, ...]:
    return tuple(item for item in value.split(LIST_SEPARATOR) if item)


def read_catalog(path: Path) -> list[Scenario]:
    """Read scenarios from a catalog file, preserving line order."""
    scenarios: list[Scenario] = []
    with path.open(newline="") as f:
        reader = csv.reader(f)
        header = next(reader, None)
        if header is None:
            return scenarios
        if tuple(header[: len(CATALOG_COLUMNS)]) != CATALOG_COLUMNS:
            msg = f"{path} is not a scenario catalog (header: {header})"
            raise ConfigError(msg)
        has_categories = len(header) > len(CATALOG_COLUMNS)
        for line_number, row in enumerate(reader, start=2):
            if not row:
                continue
            if len(row) != len(header):
                msg = f"{path}:{line_number}: expected {len(header)} columns, got {len(row)}"
                raise ConfigError(msg)
            scenario_id, test_class, baselines, channel = row[: len(CATALOG_COLUMNS)]
            scenarios.append(
                Scenario(
                    id=scenario_id,
                    test_class_name=test_class,
                    baseline_versions=_split(baselines),
                    channel=channel,
                    categories=_split(row[-1]) if has_categories else (),
                )
            )
    return scenarios
