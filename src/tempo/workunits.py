# Copyright (c) Syntropy Systems
"""Work units the performance plugin hands to the host build engine.

The build engine itself is external. tempo only describes what to register
(as plain data) and asks the engine to resolve classpaths by name.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from tempo.catalog import EXPERIMENT_CATEGORY
from tempo.config import CHECKS_NONE, HISTORICAL_BASELINES
from tempo.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from tempo.config import TempoSettings

logger = logging.getLogger(__name__)

ADHOC_CHANNEL = "adhoc"
ADHOC_DB_URL = "sqlite:///~/.tempo/adhoc-results.db"
TEST_CLASSPATH = "performanceTestRuntimeClasspath"
TEST_JVM_ARGS = ("-Xmx3g", "-XX:+HeapDumpOnOutOfMemoryError")
PREPARE_SAMPLES = "prepareSamples"

# System properties passed to every performance test process
PROPERTY_DB_URL = "tempo.db.url"
PROPERTY_DB_USERNAME = "tempo.db.username"
PROPERTY_DB_PASSWORD = "tempo.db.password"  # noqa: S105
PROPERTY_CHANNEL = "tempo.channel"
PROPERTY_BASELINES = "tempo.baselines"


class UnitKind(str, Enum):
    """What a work unit does."""

    PREPARE_SAMPLES = "prepare_samples"
    CLEAN_SAMPLES = "clean_samples"
    CHECK_BUILD_FILES = "check_build_files"
    REBASELINE = "rebaseline"
    LOCAL_TEST = "local_test"
    DISTRIBUTED_TEST = "distributed_test"
    RESULTS_ZIP = "results_zip"


@dataclass(frozen=True)
class PerformancePreset:
    """A named performance test configuration.

    Unset fields fall back to the project settings.
    """

    name: str
    distributed: bool = False
    channel: str | None = None
    include_categories: tuple[str, ...] = ()
    exclude_categories: tuple[str, ...] = ()
    baselines: tuple[str, ...] | None = None
    checks: str | None = None
    db_url: str | None = None
    cacheable: bool = True

    def apply(self, settings: TempoSettings) -> TempoSettings:
        """Settings for a run of this preset.

        Distributed channels are suffixed with the branch name, when one is
        set, so branch results never mix with the main history.
        """
        channel = self.channel or settings.channel
        if self.distributed and settings.branch_name:
            channel = f"{channel}-{settings.branch_name}"
        return settings.with_overrides(
            channel=channel,
            baselines=self.baselines,
            checks=self.checks,
            db_url=self.db_url,
        )


PRESETS: tuple[PerformancePreset, ...] = (
    PerformancePreset("performanceTest", exclude_categories=(EXPERIMENT_CATEGORY,)),
    PerformancePreset("performanceExperiment", include_categories=(EXPERIMENT_CATEGORY,)),
    PerformancePreset("fullPerformanceTest"),
    PerformancePreset(
        "performanceAdhocTest",
        channel=ADHOC_CHANNEL,
        db_url=ADHOC_DB_URL,
        cacheable=False,
    ),
    PerformancePreset(
        "distributedPerformanceTest",
        distributed=True,
        channel="commits",
        exclude_categories=(EXPERIMENT_CATEGORY,),
    ),
    PerformancePreset(
        "distributedPerformanceExperiment",
        distributed=True,
        channel="experiments",
        include_categories=(EXPERIMENT_CATEGORY,),
    ),
    PerformancePreset(
        "distributedFullPerformanceTest",
        distributed=True,
        channel="historical",
        baselines=HISTORICAL_BASELINES,
        checks=CHECKS_NONE,
    ),
)


def get_preset(name: str, distributed: bool | None = None) -> PerformancePreset:
    """Look up a preset by name, optionally requiring local or distributed."""
    for preset in PRESETS:
        if preset.name == name:
            if distributed is not None and preset.distributed != distributed:
                kind = "distributed" if distributed else "local"
                msg = f"{name} is not a {kind} preset"
                raise ConfigError(msg)
            return preset
    known = ", ".join(p.name for p in PRESETS)
    msg = f"Unknown preset: {name} (known: {known})"
    raise ConfigError(msg)


@dataclass(frozen=True)
class WorkUnit:
    """One unit of work registered with the build engine."""

    name: str
    kind: UnitKind
    description: str = ""
    group: str | None = None
    depends_on: tuple[str, ...] = ()
    finalized_by: tuple[str, ...] = ()
    properties: Mapping[str, str] = field(default_factory=dict)
    jvm_args: tuple[str, ...] = ()
    max_parallel_forks: int | None = None
    classpath: str | None = None
    cacheable: bool = True
    preset: PerformancePreset | None = None


class BuildEngine(Protocol):
    """The host build engine."""

    def register(self, unit: WorkUnit) -> None:
        """Register a unit of work."""
        ...

    def resolve_classpath(self, name: str) -> list[Path]:
        """Resolve a named classpath to its entries."""
        ...


def performance_test_properties(settings: TempoSettings) -> dict[str, str]:
    """System properties passed to performance test processes."""
    properties = {
        PROPERTY_DB_URL: settings.db_url,
        PROPERTY_DB_USERNAME: settings.db_username,
        PROPERTY_DB_PASSWORD: settings.db_password,
        PROPERTY_CHANNEL: settings.channel,
        PROPERTY_BASELINES: ",".join(settings.baselines),
    }
    return {key: value for key, value in properties.items() if value}


def _test_unit(preset: PerformancePreset, settings: TempoSettings) -> WorkUnit:
    run_settings = preset.apply(settings)
    kind = UnitKind.DISTRIBUTED_TEST if preset.distributed else UnitKind.LOCAL_TEST
    return WorkUnit(
        name=preset.name,
        kind=kind,
        description=f"Runs {preset.name} on channel {run_settings.channel}",
        group="verification",
        depends_on=(PREPARE_SAMPLES,),
        finalized_by=() if preset.distributed else (f"{preset.name}ResultsZip",),
        properties=performance_test_properties(run_settings),
        jvm_args=TEST_JVM_ARGS,
        max_parallel_forks=1,
        classpath=TEST_CLASSPATH,
        cacheable=preset.cacheable,
        preset=preset,
    )


def performance_work_units(settings: TempoSettings) -> list[WorkUnit]:
    """Every unit of work the performance plugin registers."""
    units = [
        WorkUnit(
            name=PREPARE_SAMPLES,
            kind=UnitKind.PREPARE_SAMPLES,
            description="Generates all sample projects for automated performance tests",
            group="Project Setup",
        ),
        WorkUnit(
            name="cleanSamples",
            kind=UnitKind.CLEAN_SAMPLES,
            description="Deletes all generated sample projects",
            group="Project Setup",
        ),
        WorkUnit(
            name="checkNoIdenticalBuildFiles",
            kind=UnitKind.CHECK_BUILD_FILES,
            description="Reports generated build files with identical content",
        ),
        WorkUnit(
            name="rebaselinePerformanceTests",
            kind=UnitKind.REBASELINE,
            description="Points every scenario definition at a new baseline",
        ),
    ]

    for preset in PRESETS:
        units.append(_test_unit(preset, settings))
        if not preset.distributed:
            units.append(
                WorkUnit(
                    name=f"{preset.name}ResultsZip",
                    kind=UnitKind.RESULTS_ZIP,
                    description=f"Archives the results of {preset.name}",
                    preset=preset,
                )
            )
    return units


def register_work_units(
    engine: BuildEngine,
    units: Sequence[WorkUnit],
) -> dict[str, list[Path]]:
    """Register units with the engine and resolve their classpaths.

    Returns the resolved classpath of every unit that names one.
    """
    names = {unit.name for unit in units}
    for unit in units:
        for dependency in (*unit.depends_on, *unit.finalized_by):
            if dependency not in names:
                msg = f"{unit.name} refers to unknown work unit {dependency}"
                raise ConfigError(msg)

    classpaths: dict[str, list[Path]] = {}
    for unit in units:
        engine.register(unit)
        if unit.classpath is not None:
            classpaths[unit.name] = engine.resolve_classpath(unit.classpath)
    logger.debug("Registered %d work units", len(units))
    return classpaths
