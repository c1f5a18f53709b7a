# Copyright (c) Syntropy Systems
"""Result aggregation: sample statistics and regression detection.

Regressions are detected with a one-sided Mann-Whitney U test (current
slower than baseline); ``confidence`` is ``1 - p``. Median confidence
intervals come from binomial order statistics.
"""
from __future__ import annotations

import logging
import math
import statistics
from collections import defaultdict
from typing import TYPE_CHECKING

from scipy import stats

from tempo.models.results import (
    CURRENT_VERSION,
    BaselineComparison,
    ComparisonReport,
    RunResult,
    SampleStats,
    ScenarioOutcome,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from tempo.config import TempoSettings
    from tempo.models.scenario import Scenario

logger = logging.getLogger(__name__)

CI_LEVEL = 0.95

# Worst outcome wins when a scenario's executions disagree
_OUTCOME_PRECEDENCE = (
    ScenarioOutcome.RUNNER_FAILED,
    ScenarioOutcome.TIMED_OUT,
    ScenarioOutcome.FAILED,
    ScenarioOutcome.CANCELLED,
    ScenarioOutcome.COMPLETED,
)


def median_confidence_interval(
    samples: Sequence[float], level: float = CI_LEVEL
) -> tuple[float, float]:
    """Distribution-free confidence interval of the median.

    The bounds are the order statistics at the binomial(n, 0.5) quantiles
    of ``(1 - level) / 2`` and ``(1 + level) / 2``.
    """
    ordered = sorted(samples)
    n = len(ordered)
    if n == 0:
        msg = "no samples"
        raise ValueError(msg)
    lower = max(1, int(stats.binom.ppf((1 - level) / 2, n, 0.5)))
    upper = min(n, int(stats.binom.ppf((1 + level) / 2, n, 0.5)) + 1)
    return ordered[lower - 1], ordered[upper - 1]


def summarize(samples: Sequence[float]) -> SampleStats:
    """Summary statistics of a non-empty sample series."""
    ci_low, ci_high = median_confidence_interval(samples)
    return SampleStats(
        count=len(samples),
        median=statistics.median(samples),
        mean=statistics.fmean(samples),
        ci_low=ci_low,
        ci_high=ci_high,
    )


def slower_confidence(current: Sequence[float], baseline: Sequence[float]) -> float:
    """Confidence that ``current`` is stochastically larger than ``baseline``."""
    if not current or not baseline:
        return 0.0
    if len({*current, *baseline}) == 1:
        # Every sample is identical
        return 0.0

    result = stats.mannwhitneyu(current, baseline, alternative="greater")
    pvalue = float(result.pvalue)
    if math.isnan(pvalue):
        return 0.0
    return 1.0 - pvalue


def _scenario_outcome(results: Sequence[RunResult]) -> ScenarioOutcome:
    outcomes = {r.outcome for r in results}
    if any(r.exit_code not in (0, None) for r in results):
        outcomes.add(ScenarioOutcome.FAILED)
    for outcome in _OUTCOME_PRECEDENCE:
        if outcome in outcomes:
            return outcome
    return ScenarioOutcome.COMPLETED


def _failure_reason(results: Sequence[RunResult], outcome: ScenarioOutcome) -> str:
    for result in results:
        if result.outcome == outcome and result.error_message:
            return f"{result.baseline_version}: {result.error_message}"
    for result in results:
        if result.exit_code not in (0, None):
            return f"{result.baseline_version}: exited with code {result.exit_code}"
    return outcome.value.replace("_", " ")


class ResultAggregator:
    """Turns raw run results into per-scenario comparison reports."""

    def __init__(self, threshold: float = 0.05, min_confidence: float = 0.95) -> None:
        self.threshold = threshold
        self.min_confidence = min_confidence

    @classmethod
    def from_settings(cls, settings: TempoSettings) -> ResultAggregator:
        """Build an aggregator using the configured thresholds."""
        return cls(threshold=settings.threshold, min_confidence=settings.min_confidence)

    def aggregate(
        self,
        results: Iterable[RunResult],
        scenarios: Iterable[Scenario] = (),
    ) -> list[ComparisonReport]:
        """Compare the current build against every baseline, per scenario.

        Scenarios passed explicitly define which baselines are expected, so a
        baseline that never ran is reported as missing. Reports are ordered by
        scenario id.
        """
        by_scenario: dict[str, list[RunResult]] = defaultdict(list)
        for result in results:
            by_scenario[result.scenario_id].append(result)

        expected: dict[str, tuple[str, ...]] = {
            scenario.id: scenario.baseline_versions for scenario in scenarios
        }
        for scenario_id in expected:
            by_scenario.setdefault(scenario_id, [])

        return [
            self._compare(scenario_id, by_scenario[scenario_id], expected.get(scenario_id))
            for scenario_id in sorted(by_scenario)
        ]

    def _compare(
        self,
        scenario_id: str,
        results: list[RunResult],
        expected_baselines: tuple[str, ...] | None,
    ) -> ComparisonReport:
        outcome = _scenario_outcome(results)
        if outcome != ScenarioOutcome.COMPLETED:
            return ComparisonReport(
                scenario_id=scenario_id,
                execution_failed=outcome.is_execution_failure,
                outcome=outcome,
                failure_reason=_failure_reason(results, outcome),
            )

        current = [r for r in results if r.baseline_version == CURRENT_VERSION]
        current_samples = [s for r in current for s in r.samples]
        if not current_samples:
            return ComparisonReport(
                scenario_id=scenario_id,
                execution_failed=True,
                outcome=ScenarioOutcome.FAILED,
                failure_reason="no samples recorded for the current build",
            )
        current_stats = summarize(current_samples)

        samples_by_version: dict[str, list[float]] = {}
        for result in results:
            if result.baseline_version != CURRENT_VERSION:
                samples_by_version.setdefault(result.baseline_version, []).extend(
                    result.samples
                )

        versions = list(expected_baselines or samples_by_version)
        comparisons = [
            self._compare_baseline(
                version, current_samples, current_stats, samples_by_version.get(version, [])
            )
            for version in versions
        ]

        baseline_missing = not comparisons or any(c.missing for c in comparisons)
        regressed = [c for c in comparisons if c.regressed]
        measured = [c.confidence for c in comparisons if c.confidence is not None]
        if regressed:
            confidence = max(c.confidence or 0.0 for c in regressed)
        else:
            confidence = max(measured) if measured else None

        if baseline_missing:
            logger.warning("%s: baseline data missing, regression check inconclusive", scenario_id)

        return ComparisonReport(
            scenario_id=scenario_id,
            current_stats=current_stats,
            baseline_stats=tuple(comparisons),
            # Missing data is inconclusive, never a pass or a regression
            regression_flag=bool(regressed) and not baseline_missing,
            confidence=confidence,
            baseline_missing=baseline_missing,
        )

    def _compare_baseline(
        self,
        version: str,
        current_samples: list[float],
        current_stats: SampleStats,
        baseline_samples: list[float],
    ) -> BaselineComparison:
        if not baseline_samples:
            return BaselineComparison(baseline_version=version, missing=True)

        stats = summarize(baseline_samples)
        delta_pct = None
        if stats.median > 0:
            delta_pct = (current_stats.median - stats.median) / stats.median * 100
        confidence = slower_confidence(current_samples, baseline_samples)
        slower = current_stats.median > stats.median * (1 + self.threshold)

        return BaselineComparison(
            baseline_version=version,
            stats=stats,
            delta_pct=delta_pct,
            confidence=confidence,
            regressed=slower and confidence >= self.min_confidence,
        )
