# Copyright (c) Syntropy Systems
"""Distributed coordination of scenario executions across a worker pool."""
from __future__ import annotations

import hashlib
import logging
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional, Protocol

from tempo.aggregate import ResultAggregator
from tempo.errors import (
    BaselineUnavailable,
    CatalogEmpty,
    ExecutionTimeout,
    RunnerFailure,
    ScenarioExecutionFailure,
)
from tempo.models.results import CURRENT_VERSION, RunResult, ScenarioOutcome
from tempo.models.scenario import WorkerAssignment

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tempo.config import TempoSettings
    from tempo.models.results import ComparisonReport
    from tempo.models.scenario import Scenario
    from tempo.runner import DistributionResolver, ScenarioRunner

logger = logging.getLogger(__name__)


class CoordinatorState(str, Enum):
    """Lifecycle of one distributed run."""

    PENDING = "pending"
    DISPATCHED = "dispatched"
    COLLECTING = "collecting"
    DONE = "done"
    FAILED = "failed"


class Worker(Protocol):
    """Executes scenarios one at a time."""

    worker_id: str

    def execute(self, scenario: Scenario, version: str) -> RunResult:
        """Run one scenario against one version."""
        ...


class LocalWorker:
    """Worker running scenarios in child processes on this machine."""

    def __init__(self, runner: ScenarioRunner) -> None:
        self.runner = runner
        self.worker_id = runner.worker_id

    def execute(self, scenario: Scenario, version: str) -> RunResult:
        """Run one scenario against one version."""
        return self.runner.run(scenario, version)


def scenario_hash(scenario_id: str) -> str:
    """Stable hash used to spread scenarios over workers."""
    return hashlib.sha1(scenario_id.encode("utf-8")).hexdigest()  # noqa: S324


def partition(
    scenario_ids: Sequence[str],
    worker_ids: Sequence[str],
) -> list[WorkerAssignment]:
    """Deal scenarios round-robin, in order of their id hash.

    The split depends only on the scenario ids, not on their input order.
    """
    assignments = [WorkerAssignment(worker_id=worker_id) for worker_id in worker_ids]
    ordered = sorted(scenario_ids, key=lambda sid: (scenario_hash(sid), sid))
    for index, scenario_id in enumerate(ordered):
        assignments[index % len(assignments)].scenario_ids.append(scenario_id)
    return assignments


@dataclass
class _Message:
    """Entry in the result mailbox."""

    worker_id: str
    result: Optional[RunResult] = None
    finished: bool = False
    died: bool = False
    error: Optional[str] = None


@dataclass
class CoordinatorResult:
    """Outcome of a distributed run."""

    state: CoordinatorState
    reports: list[ComparisonReport]
    results: list[RunResult]
    assignments: list[WorkerAssignment]
    dead_workers: list[str] = field(default_factory=list)
    unavailable_baselines: list[str] = field(default_factory=list)
    cancelled: bool = False
    fails_on_regression: bool = True
    max_runner_failure_fraction: float = 0.5

    @property
    def regressions(self) -> list[ComparisonReport]:
        """Reports flagged as regressed."""
        return [r for r in self.reports if r.regression_flag]

    @property
    def runner_failure_fraction(self) -> float:
        """Fraction of workers that died during the run."""
        if not self.assignments:
            return 0.0
        return len(self.dead_workers) / len(self.assignments)

    @property
    def failure_reasons(self) -> list[str]:
        """Why the run counts as failed; empty when it passed."""
        reasons: list[str] = []
        if self.state == CoordinatorState.FAILED:
            reasons.append("coordinator failed")
        if self.fails_on_regression and self.regressions:
            names = ", ".join(r.scenario_id for r in self.regressions)
            reasons.append(f"{len(self.regressions)} scenario(s) regressed: {names}")
        if self.runner_failure_fraction > self.max_runner_failure_fraction:
            reasons.append(
                f"{len(self.dead_workers)} of {len(self.assignments)} workers failed"
            )
        return reasons

    @property
    def failed(self) -> bool:
        """Whether the run should exit non-zero."""
        return bool(self.failure_reasons)

    @property
    def exit_code(self) -> int:
        """Process exit code for the run."""
        return 1 if self.failed else 0


class DistributedCoordinator:
    """Fans scenarios out across workers and collects their results.

    Each worker runs its scenarios sequentially (the current build first,
    then every baseline). Workers share nothing but the result mailbox.
    """

    def __init__(
        self,
        settings: TempoSettings,
        workers: Sequence[Worker],
        aggregator: ResultAggregator | None = None,
        resolver: DistributionResolver | None = None,
        on_result: Callable[[RunResult], None] | None = None,
    ) -> None:
        if not workers:
            msg = "At least one worker is required"
            raise ValueError(msg)
        self.settings = settings
        self.workers = list(workers)
        self.aggregator = aggregator or ResultAggregator.from_settings(settings)
        self.resolver = resolver
        self.on_result = on_result
        self._state = CoordinatorState.PENDING
        self._state_lock = threading.Lock()
        self._cancel = threading.Event()

    @property
    def state(self) -> CoordinatorState:
        """Current lifecycle state."""
        with self._state_lock:
            return self._state

    def _set_state(self, state: CoordinatorState) -> None:
        with self._state_lock:
            logger.debug("Coordinator %s -> %s", self._state.value, state.value)
            self._state = state

    def cancel(self) -> None:
        """Stop after the scenarios currently executing.

        Scenarios not yet started are reported as cancelled.
        """
        if not self._cancel.is_set():
            logger.info("Cancellation requested, finishing in-flight scenarios")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        """Whether cancel() was called."""
        return self._cancel.is_set()

    def plan(self, scenarios: Sequence[Scenario]) -> tuple[dict[str, list[str]], list[str]]:
        """Versions to execute per scenario, and the baselines left out.

        Raises:
            BaselineUnavailable: No scenario has anything to compare against

        """
        unavailable: set[str] = set()
        if self.resolver is not None:
            versions = {CURRENT_VERSION}
            for scenario in scenarios:
                versions.update(scenario.baseline_versions)
            unavailable = {v for v in versions if not self.resolver.is_available(v)}
            if CURRENT_VERSION in unavailable:
                raise BaselineUnavailable(CURRENT_VERSION, "build under test is not installed")

        plan: dict[str, list[str]] = {}
        for scenario in scenarios:
            available = [v for v in scenario.baseline_versions if v not in unavailable]
            plan[scenario.id] = [CURRENT_VERSION, *available]
            for version in scenario.baseline_versions:
                if version in unavailable:
                    logger.warning("Baseline %s unavailable for %s", version, scenario.id)

        if all(len(versions) == 1 for versions in plan.values()):
            missing = ", ".join(sorted(unavailable))
            raise BaselineUnavailable(missing, "no scenario has an installable baseline")

        return plan, sorted(unavailable)

    def run(self, scenarios: Sequence[Scenario]) -> CoordinatorResult:
        """Execute every scenario and aggregate the results.

        Raises:
            CatalogEmpty: There is nothing to run
            BaselineUnavailable: Missing baselines block the entire catalog

        """
        if not scenarios:
            self._set_state(CoordinatorState.FAILED)
            msg = "No scenarios to run"
            raise CatalogEmpty(msg)

        try:
            plan, unavailable = self.plan(scenarios)
        except BaselineUnavailable:
            self._set_state(CoordinatorState.FAILED)
            raise

        by_id = {scenario.id: scenario for scenario in scenarios}
        assignments = partition(list(by_id), [w.worker_id for w in self.workers])
        mailbox: queue.Queue[_Message] = queue.Queue()

        threads: list[threading.Thread] = []
        for worker, assignment in zip(self.workers, assignments):
            logger.info(
                "Worker %s assigned %d scenario(s)",
                worker.worker_id,
                len(assignment.scenario_ids),
            )
            thread = threading.Thread(
                target=self._work,
                args=(worker, assignment, plan, by_id, mailbox),
                name=f"tempo-worker-{worker.worker_id}",
                daemon=True,
            )
            threads.append(thread)
        self._set_state(CoordinatorState.DISPATCHED)
        for thread in threads:
            thread.start()

        self._set_state(CoordinatorState.COLLECTING)
        results, dead_workers = self._collect(mailbox, len(threads))
        for thread in threads:
            thread.join()

        reports = self.aggregator.aggregate(results, scenarios)
        self._set_state(CoordinatorState.DONE)

        return CoordinatorResult(
            state=CoordinatorState.DONE,
            reports=reports,
            results=results,
            assignments=assignments,
            dead_workers=dead_workers,
            unavailable_baselines=unavailable,
            cancelled=self.cancelled,
            fails_on_regression=self.settings.fails_on_regression,
            max_runner_failure_fraction=self.settings.max_runner_failure_fraction,
        )

    def _collect(
        self,
        mailbox: queue.Queue[_Message],
        worker_count: int,
    ) -> tuple[list[RunResult], list[str]]:
        results: list[RunResult] = []
        dead_workers: list[str] = []
        remaining = worker_count

        while remaining:
            message = mailbox.get()
            if message.result is not None:
                results.append(message.result)
                if self.on_result is not None:
                    self.on_result(message.result)
            if message.died:
                logger.error("Worker %s died: %s", message.worker_id, message.error)
                dead_workers.append(message.worker_id)
            if message.finished or message.died:
                remaining -= 1

        return results, dead_workers

    def _work(
        self,
        worker: Worker,
        assignment: WorkerAssignment,
        plan: dict[str, list[str]],
        by_id: dict[str, Scenario],
        mailbox: queue.Queue[_Message],
    ) -> None:
        scenario_ids = assignment.scenario_ids
        for index, scenario_id in enumerate(scenario_ids):
            if self._cancel.is_set():
                self._abandon(
                    worker.worker_id,
                    scenario_ids[index:],
                    plan,
                    ScenarioOutcome.CANCELLED,
                    "Run cancelled",
                    mailbox,
                )
                break

            try:
                self._run_scenario(worker, by_id[scenario_id], plan[scenario_id], mailbox)
            except RunnerFailure as e:
                self._abandon(
                    worker.worker_id,
                    scenario_ids[index + 1:],
                    plan,
                    ScenarioOutcome.RUNNER_FAILED,
                    f"Worker {worker.worker_id} failed",
                    mailbox,
                )
                mailbox.put(_Message(worker.worker_id, died=True, error=str(e)))
                return

        mailbox.put(_Message(worker.worker_id, finished=True))

    def _run_scenario(
        self,
        worker: Worker,
        scenario: Scenario,
        versions: list[str],
        mailbox: queue.Queue[_Message],
    ) -> None:
        worker_id = worker.worker_id
        for position, version in enumerate(versions):
            try:
                result = worker.execute(scenario, version)
            except ExecutionTimeout as e:
                result = RunResult(
                    scenario_id=scenario.id,
                    baseline_version=version,
                    artifact_paths=e.artifact_paths,
                    outcome=ScenarioOutcome.TIMED_OUT,
                    error_message=str(e),
                )
            except ScenarioExecutionFailure as e:
                result = RunResult(
                    scenario_id=scenario.id,
                    baseline_version=version,
                    exit_code=e.exit_code,
                    outcome=ScenarioOutcome.FAILED,
                    error_message=str(e),
                )
            except BaselineUnavailable as e:
                logger.warning("%s: %s", scenario.id, e)
                continue
            except Exception as e:
                logger.exception("Worker %s failed running %s", worker_id, scenario.id)
                self._put_abandoned(
                    worker_id,
                    scenario.id,
                    versions[position:],
                    ScenarioOutcome.RUNNER_FAILED,
                    str(e),
                    mailbox,
                )
                if isinstance(e, RunnerFailure):
                    raise
                raise RunnerFailure(str(e)) from e

            if result.worker_id is None:
                result = result.model_copy(update={"worker_id": worker_id})
            mailbox.put(_Message(worker_id, result=result))

        logger.info("Worker %s finished %s", worker_id, scenario.id)

    def _abandon(
        self,
        worker_id: str,
        scenario_ids: Sequence[str],
        plan: dict[str, list[str]],
        outcome: ScenarioOutcome,
        reason: str,
        mailbox: queue.Queue[_Message],
    ) -> None:
        for scenario_id in scenario_ids:
            self._put_abandoned(
                worker_id, scenario_id, plan[scenario_id], outcome, reason, mailbox
            )

    @staticmethod
    def _put_abandoned(
        worker_id: str,
        scenario_id: str,
        versions: Sequence[str],
        outcome: ScenarioOutcome,
        reason: str,
        mailbox: queue.Queue[_Message],
    ) -> None:
        for version in versions:
            mailbox.put(
                _Message(
                    worker_id,
                    result=RunResult(
                        scenario_id=scenario_id,
                        baseline_version=version,
                        outcome=outcome,
                        error_message=reason,
                        worker_id=worker_id,
                    ),
                )
            )
