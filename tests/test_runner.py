# Copyright (c) Syntropy Systems
"""Tests for scenario execution in child processes."""

import sys
import threading
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from tempo.config import TempoSettings, load_settings
from tempo.errors import (
    BaselineUnavailable,
    ConfigError,
    ExecutionTimeout,
    RunnerBusy,
    ScenarioExecutionFailure,
)
from tempo.models.results import CURRENT_VERSION, ScenarioOutcome
from tempo.models.scenario import Scenario
from tempo.runner import (
    OUTPUT_LOG,
    DistributionResolver,
    ProcessRunner,
    ScenarioRunner,
    read_samples,
)

SCENARIO = Scenario(
    id="java-configuration-performance-test",
    test_class_name="perf.JavaConfigurationPerformanceTest",
    baseline_versions=("last",),
    channel="commits",
)

SetTimings = Callable[[dict[str, object]], None]


def make_runner(project: Path, **overrides: object) -> ScenarioRunner:
    """Runner for the test project."""
    settings = load_settings(project / ".tempo")
    if overrides:
        settings = settings.with_overrides(**overrides)
    return ScenarioRunner(settings, project / ".tempo" / "runs", workdir=project)


class TestProcessRunner:
    """Tests for ProcessRunner."""

    def test_captures_output(self, temp_dir: Path) -> None:
        """Output goes to output.log and the exit code is reported."""
        runner = ProcessRunner(
            [sys.executable, "-c", "print('hello'); raise SystemExit(3)"],
            workdir=temp_dir,
            run_dir=temp_dir / "run",
        )
        runner.start()

        supervision = runner.supervise(timeout=20, poll_interval=0.05)

        assert supervision.exit_code == 3
        assert not supervision.timed_out
        assert "hello" in (temp_dir / "run" / OUTPUT_LOG).read_text()

    def test_missing_executable(self, temp_dir: Path) -> None:
        """A command that does not exist is a configuration error."""
        runner = ProcessRunner(
            [str(temp_dir / "no-such-program")],
            workdir=temp_dir,
            run_dir=temp_dir / "run",
        )

        with pytest.raises(ConfigError, match="no-such-program"):
            runner.start()

        assert runner.pid is None
        assert runner.poll() is None

    def test_supervise_timeout(self, temp_dir: Path) -> None:
        """A process running past its timeout is killed."""
        runner = ProcessRunner(
            [sys.executable, "-c", "import time; time.sleep(30)"],
            workdir=temp_dir,
            run_dir=temp_dir / "run",
        )
        runner.start()

        supervision = runner.supervise(timeout=0.5, poll_interval=0.05, grace_period=1.0)

        assert supervision.timed_out
        assert supervision.exit_code is not None
        assert runner.poll() is not None

    def test_supervise_memory_ceiling(self, temp_dir: Path) -> None:
        """A process tree above the memory ceiling is killed."""
        runner = ProcessRunner(
            [sys.executable, "-c", "import time; time.sleep(30)"],
            workdir=temp_dir,
            run_dir=temp_dir / "run",
        )
        runner.start()

        supervision = runner.supervise(
            timeout=20, memory_limit_mb=1, poll_interval=0.05, grace_period=1.0
        )

        assert supervision.memory_exceeded
        assert not supervision.timed_out
        assert supervision.peak_rss_mb > 1


class TestReadSamples:
    """Tests for reading sample files."""

    def test_skips_malformed_lines(self, temp_dir: Path) -> None:
        """Garbage and partial lines are ignored."""
        path = temp_dir / "samples.jsonl"
        path.write_text(
            '{"duration_ms": 10.5}\n'
            "not json\n"
            '{"other": 1}\n'
            '{"duration_ms": 11}\n'
            '{"duration_'
        )

        assert read_samples(path) == [10.5, 11.0]

    def test_missing_file(self, temp_dir: Path) -> None:
        """No file means no samples."""
        assert read_samples(temp_dir / "missing.jsonl") == []


class TestDistributionResolver:
    """Tests for resolving versions to distributions."""

    def test_resolve(self, temp_dir: Path) -> None:
        """Current and baseline versions map to their directories."""
        (temp_dir / "dists" / "2.0").mkdir(parents=True)
        (temp_dir / "build").mkdir()
        resolver = DistributionResolver(temp_dir / "dists", temp_dir / "build")

        assert resolver.resolve("2.0") == temp_dir / "dists" / "2.0"
        assert resolver.resolve(CURRENT_VERSION) == temp_dir / "build"
        assert not resolver.is_available("1.1")

    def test_missing_version(self, temp_dir: Path) -> None:
        """An uninstalled version is unavailable."""
        resolver = DistributionResolver(temp_dir)

        with pytest.raises(BaselineUnavailable):
            _ = resolver.resolve("9.9")


class TestScenarioRunner:
    """Tests for ScenarioRunner."""

    def test_collects_samples(self, tempo_project: Path, set_timings: SetTimings) -> None:
        """A successful run returns the samples the process wrote."""
        set_timings({f"{SCENARIO.id}/last": [90.0, 91.5, 92.0]})
        runner = make_runner(tempo_project)

        result = runner.run(SCENARIO, "last")

        assert result.outcome == ScenarioOutcome.COMPLETED
        assert result.exit_code == 0
        assert result.samples == [90.0, 91.5, 92.0]
        assert result.baseline_version == "last"
        assert any(p.endswith(OUTPUT_LOG) for p in result.artifact_paths)

    def test_non_zero_exit(self, tempo_project: Path, set_timings: SetTimings) -> None:
        """A failing process yields no samples and is not retried."""
        set_timings({f"{SCENARIO.id}/{CURRENT_VERSION}": {"exit": 2}})
        runner = make_runner(tempo_project)

        result = runner.run(SCENARIO, CURRENT_VERSION)

        assert result.exit_code == 2
        assert result.samples == []
        assert result.outcome == ScenarioOutcome.FAILED

    def test_timeout_carries_artifacts(self, tempo_project: Path, set_timings: SetTimings) -> None:
        """A timeout raises with the log of the killed process."""
        set_timings({f"{SCENARIO.id}/last": {"sleep": 30}})
        runner = make_runner(tempo_project, execution_timeout=1.0)

        with pytest.raises(ExecutionTimeout) as excinfo:
            _ = runner.run(SCENARIO, "last")

        assert any(p.endswith(OUTPUT_LOG) for p in excinfo.value.artifact_paths)

    def test_memory_ceiling(self, tempo_project: Path, set_timings: SetTimings) -> None:
        """Exceeding the memory ceiling is recorded as a failure."""
        set_timings({f"{SCENARIO.id}/last": {"sleep": 30}})
        runner = make_runner(tempo_project, memory_limit_mb=1)

        result = runner.run(SCENARIO, "last")

        assert result.outcome == ScenarioOutcome.FAILED
        assert result.samples == []
        assert result.error_message is not None
        assert "memory" in result.error_message
        assert "peak" in result.error_message

    def test_launch_failure(self, tempo_project: Path) -> None:
        """A command the kernel cannot execute fails only that execution."""
        program = tempo_project / "not-a-program"
        program.write_bytes(b"\x00\x01\x02 not an executable format\n")
        program.chmod(0o755)
        runner = make_runner(tempo_project, command=(str(program),))

        with pytest.raises(ScenarioExecutionFailure, match="could not be launched"):
            _ = runner.run(SCENARIO, "last")

        assert not runner.busy

    def test_missing_command_executable(self, tempo_project: Path) -> None:
        runner = make_runner(tempo_project, command=(str(tempo_project / "missing-tool"),))

        with pytest.raises(ConfigError, match="missing-tool"):
            _ = runner.run(SCENARIO, "last")

    def test_unavailable_baseline(self, tempo_project: Path) -> None:
        """Versions that are not installed raise before anything runs."""
        runner = make_runner(tempo_project)

        with pytest.raises(BaselineUnavailable):
            _ = runner.run(SCENARIO, "1.1")

    def test_single_parallelism(self, tempo_project: Path, set_timings: SetTimings) -> None:
        """A second concurrent run on the same runner is rejected."""
        set_timings({f"{SCENARIO.id}/last": {"sleep": 2}})
        runner = make_runner(tempo_project)
        thread = threading.Thread(target=runner.run, args=(SCENARIO, "last"))
        thread.start()
        try:
            deadline = time.monotonic() + 5
            while not runner.busy and time.monotonic() < deadline:
                time.sleep(0.01)

            with pytest.raises(RunnerBusy):
                _ = runner.run(SCENARIO, CURRENT_VERSION)
        finally:
            thread.join()

    def test_requires_command(self, temp_dir: Path) -> None:
        """A runner without a command is a configuration error."""
        with pytest.raises(ConfigError):
            _ = ScenarioRunner(TempoSettings(), temp_dir)
