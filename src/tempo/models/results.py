# Copyright (c) Syntropy Systems
"""Pydantic models for execution results and comparisons."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import Field, field_validator

from .base import FrozenModel, TempoBaseModel
from .scenario import Scenario

# Version label under which the build under test is executed
CURRENT_VERSION = "current"


class ScenarioOutcome(str, Enum):
    """How an execution (or a whole scenario) ended."""

    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    RUNNER_FAILED = "runner_failed"
    CANCELLED = "cancelled"

    @property
    def is_execution_failure(self) -> bool:
        """Whether the outcome means the measurement itself broke."""
        return self in (
            ScenarioOutcome.FAILED,
            ScenarioOutcome.TIMED_OUT,
            ScenarioOutcome.RUNNER_FAILED,
        )


class RunResult(TempoBaseModel):
    """Result of executing one scenario against one version."""

    scenario_id: str
    baseline_version: str
    samples: list[float] = Field(default_factory=list)
    exit_code: Optional[int] = None
    artifact_paths: list[str] = Field(default_factory=list)
    outcome: ScenarioOutcome = ScenarioOutcome.COMPLETED
    error_message: Optional[str] = None
    worker_id: Optional[str] = None

    @field_validator("artifact_paths", mode="before")
    @classmethod
    def _normalize_paths(cls, value: object) -> list[str]:
        # Stored as a sorted set so serialized results are stable
        if value is None:
            return []
        return sorted({str(path) for path in value})  # type: ignore[union-attr]

    @property
    def is_current(self) -> bool:
        """Whether this execution measured the build under test."""
        return self.baseline_version == CURRENT_VERSION


class SampleStats(FrozenModel):
    """Summary statistics over one sample series (milliseconds)."""

    count: int
    median: float
    mean: float
    ci_low: float
    ci_high: float


class BaselineComparison(FrozenModel):
    """Current build compared against one baseline version."""

    baseline_version: str
    stats: Optional[SampleStats] = None
    delta_pct: Optional[float] = None
    confidence: Optional[float] = None
    regressed: bool = False
    missing: bool = False


class ComparisonReport(FrozenModel):
    """Aggregated verdict for one scenario."""

    scenario_id: str
    current_stats: Optional[SampleStats] = None
    baseline_stats: tuple[BaselineComparison, ...] = ()
    regression_flag: bool = False
    confidence: Optional[float] = None
    baseline_missing: bool = False
    execution_failed: bool = False
    outcome: ScenarioOutcome = ScenarioOutcome.COMPLETED
    failure_reason: Optional[str] = None


class ResultsDocument(TempoBaseModel):
    """Everything needed to re-render reports for a finished run."""

    channel: str
    checks: str
    threshold: float
    min_confidence: float
    build_id: Optional[str] = None
    branch_name: Optional[str] = None
    scenarios: list[Scenario] = Field(default_factory=list)
    results: list[RunResult] = Field(default_factory=list)
