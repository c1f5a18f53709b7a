# Copyright (c) Syntropy Systems
"""Tests for the distributed coordinator."""

import threading
from collections import Counter
from typing import Callable, Optional

import pytest

from tempo.config import CHECKS_NONE, TempoSettings
from tempo.coordinator import (
    CoordinatorState,
    DistributedCoordinator,
    partition,
)
from tempo.errors import (
    BaselineUnavailable,
    CatalogEmpty,
    ExecutionTimeout,
    RunnerFailure,
    ScenarioExecutionFailure,
)
from tempo.models.results import CURRENT_VERSION, RunResult, ScenarioOutcome
from tempo.models.scenario import Scenario

SLOW = [98.0, 99.0, 100.0, 101.0, 102.0]
FAST = [88.0, 89.0, 90.0, 91.0, 92.0]


def make_scenarios(count: int, baselines: tuple[str, ...] = ("last",)) -> list[Scenario]:
    """Build ``count`` scenarios."""
    return [
        Scenario(
            id=f"scenario-{index}",
            test_class_name=f"perf.Scenario{index}Test",
            baseline_versions=baselines,
            channel="commits",
        )
        for index in range(count)
    ]


class FakeWorker:
    """Worker returning canned samples, with an optional hook per execution."""

    def __init__(
        self,
        worker_id: str,
        hook: Optional[Callable[[Scenario, str], None]] = None,
        samples: Optional[dict[str, list[float]]] = None,
    ) -> None:
        self.worker_id = worker_id
        self.hook = hook
        self.samples = samples or {}
        self.executed: list[tuple[str, str]] = []

    def execute(self, scenario: Scenario, version: str) -> RunResult:
        self.executed.append((scenario.id, version))
        if self.hook is not None:
            self.hook(scenario, version)
        return RunResult(
            scenario_id=scenario.id,
            baseline_version=version,
            samples=self.samples.get(version, [100.0, 100.5, 99.5]),
            exit_code=0,
        )


class FakeResolver:
    """Resolver where only some versions are installed."""

    def __init__(self, available: set[str]) -> None:
        self.available = available

    def is_available(self, version: str) -> bool:
        return version in self.available


class TestPartition:
    """Tests for scenario partitioning."""

    def test_every_scenario_assigned_once(self) -> None:
        """Partitioning covers every scenario exactly once."""
        ids = [f"s{i}" for i in range(10)]

        assignments = partition(ids, ["w0", "w1", "w2"])

        assigned = [sid for a in assignments for sid in a.scenario_ids]
        assert sorted(assigned) == sorted(ids)
        assert [len(a.scenario_ids) for a in assignments] == [4, 3, 3]

    def test_stable(self) -> None:
        """Input order does not change the partition."""
        ids = [f"s{i}" for i in range(10)]

        first = partition(ids, ["w0", "w1"])
        second = partition(list(reversed(ids)), ["w0", "w1"])

        assert [a.scenario_ids for a in first] == [a.scenario_ids for a in second]


class TestCoordinatorRun:
    """Tests for running scenarios through workers."""

    def test_runs_current_then_baselines(self) -> None:
        """Each scenario runs the current build first, then every baseline."""
        worker = FakeWorker("w0")
        coordinator = DistributedCoordinator(TempoSettings(), [worker])

        outcome = coordinator.run(make_scenarios(2, ("2.0", "last")))

        assert coordinator.state == CoordinatorState.DONE
        assert worker.executed[:3] == [
            (worker.executed[0][0], CURRENT_VERSION),
            (worker.executed[0][0], "2.0"),
            (worker.executed[0][0], "last"),
        ]
        assert len(outcome.results) == 6
        assert all(r.worker_id == "w0" for r in outcome.results)
        assert not outcome.failed

    def test_regression_fails_run(self) -> None:
        """A flagged regression fails the run by default."""
        worker = FakeWorker("w0", samples={CURRENT_VERSION: SLOW, "last": FAST})
        coordinator = DistributedCoordinator(TempoSettings(), [worker])

        outcome = coordinator.run(make_scenarios(1))

        assert outcome.regressions
        assert outcome.failed
        assert outcome.exit_code == 1

    def test_historical_sweep_never_fails(self) -> None:
        """With checks disabled, regressions are reported but do not fail."""
        worker = FakeWorker("w0", samples={CURRENT_VERSION: SLOW, "last": FAST})
        settings = TempoSettings(checks=CHECKS_NONE)
        coordinator = DistributedCoordinator(settings, [worker])

        outcome = coordinator.run(make_scenarios(1))

        assert outcome.reports[0].regression_flag
        assert not outcome.failed

    def test_empty_catalog(self) -> None:
        """An empty catalog fails the coordinator."""
        coordinator = DistributedCoordinator(TempoSettings(), [FakeWorker("w0")])

        with pytest.raises(CatalogEmpty):
            _ = coordinator.run([])

        assert coordinator.state == CoordinatorState.FAILED

    def test_unavailable_baseline_dropped(self) -> None:
        """Baselines that are not installed are skipped and reported missing."""
        worker = FakeWorker("w0")
        coordinator = DistributedCoordinator(
            TempoSettings(),
            [worker],
            resolver=FakeResolver({CURRENT_VERSION, "last"}),
        )

        outcome = coordinator.run(make_scenarios(1, ("2.0", "last")))

        assert outcome.unavailable_baselines == ["2.0"]
        assert ("scenario-0", "2.0") not in worker.executed
        assert outcome.reports[0].baseline_missing
        assert not outcome.reports[0].regression_flag

    def test_no_baseline_available(self) -> None:
        """When nothing can be compared the coordinator fails."""
        coordinator = DistributedCoordinator(
            TempoSettings(),
            [FakeWorker("w0")],
            resolver=FakeResolver({CURRENT_VERSION}),
        )

        with pytest.raises(BaselineUnavailable):
            _ = coordinator.run(make_scenarios(2))

        assert coordinator.state == CoordinatorState.FAILED

    def test_timeout_recorded(self) -> None:
        """A timed out execution becomes a timed_out result with artifacts."""

        def hook(scenario: Scenario, version: str) -> None:
            if version == CURRENT_VERSION:
                raise ExecutionTimeout(scenario.id, version, 5.0, ["/tmp/run/output.log"])

        coordinator = DistributedCoordinator(TempoSettings(), [FakeWorker("w0", hook)])

        outcome = coordinator.run(make_scenarios(1))

        timed_out = [r for r in outcome.results if r.outcome == ScenarioOutcome.TIMED_OUT]
        assert len(timed_out) == 1
        assert timed_out[0].artifact_paths == ["/tmp/run/output.log"]
        assert outcome.reports[0].execution_failed
        # An execution failure alone does not fail the run
        assert not outcome.failed

    def test_launch_failure_recorded(self) -> None:
        """A scenario that cannot be launched is recorded and the worker carries on."""

        def hook(scenario: Scenario, version: str) -> None:
            if scenario.id == "scenario-0" and version == CURRENT_VERSION:
                raise ScenarioExecutionFailure(
                    scenario.id, version, reason="could not be launched: exec format error"
                )

        coordinator = DistributedCoordinator(TempoSettings(), [FakeWorker("w0", hook)])

        outcome = coordinator.run(make_scenarios(2))

        failed = [r for r in outcome.results if r.outcome == ScenarioOutcome.FAILED]
        assert len(failed) == 1
        assert failed[0].scenario_id == "scenario-0"
        assert "could not be launched" in (failed[0].error_message or "")
        assert not outcome.dead_workers
        assert {r.scenario_id for r in outcome.results if r.samples} == {"scenario-0", "scenario-1"}
        assert not outcome.failed


class TestCancellation:
    """Tests for cancelling a distributed run."""

    def test_cancel_mid_run(self) -> None:
        """Three workers, three scenarios each; cancel as the first worker finishes its first scenario.

        Every worker finishes its in-flight scenario and cancels the rest.
        """
        scenarios = make_scenarios(9)
        worker_ids = ["w0", "w1", "w2"]
        assignments = partition([s.id for s in scenarios], worker_ids)
        trigger_scenario = assignments[0].scenario_ids[0]
        gate = threading.Event()
        holder: dict[str, DistributedCoordinator] = {}

        def trigger(scenario: Scenario, version: str) -> None:
            if scenario.id == trigger_scenario and version == "last":
                holder["coordinator"].cancel()
                gate.set()

        def wait_for_cancel(scenario: Scenario, version: str) -> None:
            assert gate.wait(timeout=10)

        workers = [
            FakeWorker("w0", trigger),
            FakeWorker("w1", wait_for_cancel),
            FakeWorker("w2", wait_for_cancel),
        ]
        coordinator = DistributedCoordinator(TempoSettings(), workers)
        holder["coordinator"] = coordinator

        outcome = coordinator.run(scenarios)

        by_outcome = Counter(r.outcome for r in outcome.reports)
        assert by_outcome[ScenarioOutcome.COMPLETED] == 3
        assert by_outcome[ScenarioOutcome.CANCELLED] == 6
        assert outcome.cancelled
        assert coordinator.state == CoordinatorState.DONE

        cancelled = [r for r in outcome.results if r.outcome == ScenarioOutcome.CANCELLED]
        assert {r.baseline_version for r in cancelled} == {CURRENT_VERSION, "last"}
        assert all(not r.execution_failed for r in outcome.reports)


class TestRunnerFailure:
    """Tests for workers dying mid-run."""

    def test_dead_worker_marks_remaining(self) -> None:
        """A dying worker marks its unfinished scenarios runner_failed; others continue."""
        scenarios = make_scenarios(6)

        def die(scenario: Scenario, version: str) -> None:
            raise RunnerFailure("agent unreachable")

        workers = [FakeWorker("w0", die), FakeWorker("w1")]
        coordinator = DistributedCoordinator(
            TempoSettings(max_runner_failure_fraction=0.5), workers
        )

        outcome = coordinator.run(scenarios)

        assert outcome.dead_workers == ["w0"]
        failed = [r for r in outcome.reports if r.outcome == ScenarioOutcome.RUNNER_FAILED]
        completed = [r for r in outcome.reports if r.outcome == ScenarioOutcome.COMPLETED]
        assert len(failed) == 3
        assert len(completed) == 3
        assert all(r.execution_failed for r in failed)
        # One of two workers is within the tolerated fraction
        assert not outcome.failed

    def test_too_many_dead_workers_fail_run(self) -> None:
        """Losing more workers than tolerated fails the run."""

        def die(scenario: Scenario, version: str) -> None:
            raise RuntimeError("boom")

        workers = [FakeWorker("w0", die), FakeWorker("w1", die), FakeWorker("w2")]
        coordinator = DistributedCoordinator(
            TempoSettings(max_runner_failure_fraction=0.5), workers
        )

        outcome = coordinator.run(make_scenarios(6))

        assert sorted(outcome.dead_workers) == ["w0", "w1"]
        assert outcome.failed
        assert any("workers failed" in reason for reason in outcome.failure_reasons)
