# Copyright (c) Syntropy Systems
"""Scenario execution in isolated child processes."""
from __future__ import annotations

import contextlib
import ctypes
import logging
import os
import re
import shutil
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, TYPE_CHECKING

import psutil
from pydantic import ValidationError

from tempo.errors import (
    BaselineUnavailable,
    ConfigError,
    ExecutionTimeout,
    RunnerBusy,
    ScenarioExecutionFailure,
)
from tempo.models.base import TempoBaseModel
from tempo.models.results import CURRENT_VERSION, RunResult, ScenarioOutcome

if TYPE_CHECKING:
    from tempo.config import TempoSettings
    from tempo.models.scenario import Scenario

logger = logging.getLogger(__name__)

OUTPUT_LOG = "output.log"
SAMPLES_FILE = "samples.jsonl"
HEAP_DUMP_PATTERN = "*.hprof"
BYTES_PER_MB = 1024 * 1024


def setup_pdeathsig() -> None:
    """Set PDEATHSIG so child dies when parent dies.

    This prevents orphan processes when the worker crashes.
    Only works on Linux.
    """
    if sys.platform != "linux":
        return
    try:
        libc = ctypes.CDLL("libc.so.6", use_errno=True)
        pr_set_pdeathsig = 1
        libc.prctl(pr_set_pdeathsig, signal.SIGKILL)
    except (AttributeError, OSError):
        # Can't set PDEATHSIG, continue without it
        return


@dataclass
class Supervision:
    """How a supervised process ended."""

    exit_code: int | None
    timed_out: bool = False
    memory_exceeded: bool = False
    peak_rss_mb: float = 0.0


class ProcessRunner:
    """Runs one command with proper process management.

    Features:
    - Uses start_new_session=True for reliable process group
    - Sets PDEATHSIG on Linux to prevent orphans
    - Captures stdout/stderr to output.log
    - Samples the resident memory of the whole process tree
    - Provides graceful and forceful termination
    """

    command_argv: list[str]
    workdir: Path
    run_dir: Path
    output_path: Path
    env: dict[str, str]
    _process: subprocess.Popen[bytes] | None
    _exit_code: int | None
    _output_file: IO[str] | None

    def __init__(
        self,
        command_argv: list[str],
        workdir: Path,
        run_dir: Path,
        env: dict[str, str] | None = None,
    ) -> None:
        """Initialize a process runner.

        Args:
            command_argv: Command as list of argv tokens (no shell)
            workdir: Working directory to run the command in
            run_dir: Directory for output log
            env: Additional environment variables

        """
        self.command_argv = command_argv
        self.workdir = workdir
        self.run_dir = run_dir
        self.output_path = run_dir / OUTPUT_LOG

        # Merge environment
        self.env = os.environ.copy()
        if env:
            self.env.update(env)

        self._process = None
        self._exit_code = None
        self._output_file = None

    def start(self) -> None:
        """Start the process.

        Raises:
            ConfigError: The command is missing or not executable
            OSError: The process could not be launched for another reason

        """
        self.run_dir.mkdir(parents=True, exist_ok=True)

        # Open output log for writing
        self._output_file = self.output_path.open("w")

        try:
            self._process = subprocess.Popen(  # noqa: S603
                self.command_argv,
                stdout=self._output_file,
                stderr=subprocess.STDOUT,
                env=self.env,
                cwd=str(self.workdir),
                start_new_session=True,  # Creates new process group
                preexec_fn=setup_pdeathsig if sys.platform == "linux" else None,  # noqa: PLW1509
            )
        except (FileNotFoundError, PermissionError) as e:
            self._cleanup()
            msg = f"Cannot run scenario command {self.command_argv[0]!r}: {e.strerror}"
            raise ConfigError(msg) from e
        except OSError:
            self._cleanup()
            raise

    def poll(self) -> int | None:
        """Check if process has finished.

        Returns exit code if finished, None if still running.
        """
        if self._process is None:
            return self._exit_code

        code = self._process.poll()
        if code is not None:
            self._exit_code = code
            self._cleanup()

        return code

    def rss_mb(self) -> float:
        """Resident memory of the process and its children, in MiB."""
        if self._process is None:
            return 0.0
        try:
            parent = psutil.Process(self._process.pid)
            tree = [parent, *parent.children(recursive=True)]
        except psutil.Error:
            return 0.0

        total = 0
        for proc in tree:
            with contextlib.suppress(psutil.Error):
                total += proc.memory_info().rss
        return total / BYTES_PER_MB

    def supervise(
        self,
        timeout: float,
        memory_limit_mb: float | None = None,
        poll_interval: float = 0.5,
        grace_period: float = 10.0,
    ) -> Supervision:
        """Wait for the process while enforcing a timeout and a memory ceiling.

        The process group is killed when either limit is hit.
        """
        deadline = time.monotonic() + timeout
        peak = 0.0

        while True:
            code = self.poll()
            if code is not None:
                return Supervision(exit_code=code, peak_rss_mb=peak)

            rss = self.rss_mb()
            peak = max(peak, rss)
            if memory_limit_mb is not None and rss > memory_limit_mb:
                logger.warning(
                    "Process %s exceeded memory ceiling (%.0f MiB > %.0f MiB)",
                    self.pid,
                    rss,
                    memory_limit_mb,
                )
                code = self.kill(grace_period=grace_period)
                return Supervision(exit_code=code, memory_exceeded=True, peak_rss_mb=peak)

            if time.monotonic() >= deadline:
                logger.warning("Process %s timed out after %gs", self.pid, timeout)
                code = self.kill(grace_period=grace_period)
                return Supervision(exit_code=code, timed_out=True, peak_rss_mb=peak)

            time.sleep(poll_interval)

    def kill(self, grace_period: float = 10.0) -> int:
        """Kill the process.

        First sends SIGTERM to the process group, waits for grace_period,
        then sends SIGKILL if still alive.

        Args:
            grace_period: Seconds to wait after SIGTERM before SIGKILL

        Returns:
            Exit code (negative signal number if killed)

        """
        if self._process is None:
            return self._exit_code or 0

        # Already finished?
        if self._process.poll() is not None:
            # returncode is set after poll() returns non-None
            exit_code = self._process.returncode or 0
            self._exit_code = exit_code
            self._cleanup()
            return exit_code

        # Get the process group ID (same as session ID with start_new_session)
        try:
            pgid = os.getpgid(self._process.pid)
        except (OSError, ProcessLookupError):
            # Process already gone
            self._cleanup()
            return self._exit_code or -signal.SIGKILL

        # Send SIGTERM to process group
        with contextlib.suppress(OSError, ProcessLookupError):
            os.killpg(pgid, signal.SIGTERM)

        # Wait for grace period
        deadline = time.time() + grace_period
        while time.time() < deadline:
            if self._process.poll() is not None:
                exit_code = self._process.returncode or 0
                self._exit_code = exit_code
                self._cleanup()
                return exit_code
            time.sleep(0.1)

        # Still alive - SIGKILL
        with contextlib.suppress(OSError, ProcessLookupError):
            os.killpg(pgid, signal.SIGKILL)

        # Wait for process to die
        with contextlib.suppress(subprocess.TimeoutExpired):
            _ = self._process.wait(timeout=5.0)

        exit_code = self._process.returncode or -signal.SIGKILL
        self._exit_code = exit_code
        self._cleanup()
        return exit_code

    def _cleanup(self) -> None:
        """Cleanup resources."""
        if self._output_file:
            with contextlib.suppress(OSError):
                self._output_file.close()
            self._output_file = None

    @property
    def pid(self) -> int | None:
        """Get the process ID."""
        if self._process is None:
            return None
        return self._process.pid


class DistributionResolver:
    """Maps a version label to an unpacked build tool distribution."""

    def __init__(
        self,
        distributions_dir: Path | None,
        current_distribution: Path | None = None,
    ) -> None:
        self.distributions_dir = distributions_dir
        self.current_distribution = current_distribution

    def resolve(self, version: str) -> Path:
        """Return the distribution directory for a version.

        Raises BaselineUnavailable when it is not installed.
        """
        if version == CURRENT_VERSION:
            if self.current_distribution is None:
                raise BaselineUnavailable(version, "no current distribution configured")
            candidate = self.current_distribution
        else:
            if self.distributions_dir is None:
                raise BaselineUnavailable(version, "no distributions directory configured")
            candidate = self.distributions_dir / version

        if not candidate.is_dir():
            raise BaselineUnavailable(version, f"{candidate} does not exist")
        return candidate

    def is_available(self, version: str) -> bool:
        """Whether resolve() would succeed."""
        try:
            _ = self.resolve(version)
        except BaselineUnavailable:
            return False
        return True


class SampleRecord(TempoBaseModel):
    """One line of samples.jsonl."""

    duration_ms: float


def read_samples(samples_path: Path) -> list[float]:
    """Read duration samples from a JSONL file, tolerating partial final lines."""
    samples: list[float] = []

    if not samples_path.exists():
        return samples

    with samples_path.open() as f:
        for raw_line in f:
            line = raw_line.strip()
            if line:
                with contextlib.suppress(ValidationError):
                    samples.append(SampleRecord.model_validate_json(line).duration_ms)

    return samples


def collect_artifacts(run_dir: Path) -> list[str]:
    """Debug artifacts left in a run directory (log and heap dumps)."""
    artifacts = [run_dir / OUTPUT_LOG, *sorted(run_dir.rglob(HEAP_DUMP_PATTERN))]
    return [str(path) for path in artifacts if path.is_file()]


def _safe_name(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", value)


class ScenarioRunner:
    """Executes one scenario against one version at a time.

    A runner never executes two scenarios concurrently; measurements taken
    alongside another scenario are meaningless.
    """

    def __init__(
        self,
        settings: TempoSettings,
        runs_dir: Path,
        resolver: DistributionResolver | None = None,
        workdir: Path | None = None,
        worker_id: str = "local",
    ) -> None:
        if not settings.command:
            msg = "No scenario command configured (set 'command' in .tempo/config.yaml)"
            raise ConfigError(msg)
        self.settings = settings
        self.runs_dir = runs_dir
        self.resolver = resolver or DistributionResolver(
            settings.distributions_dir, settings.current_distribution
        )
        self.workdir = workdir or Path.cwd()
        self.worker_id = worker_id
        self._lock = threading.Lock()

    def run(self, scenario: Scenario, baseline: str) -> RunResult:
        """Execute a scenario against one version and collect its samples.

        A non-zero exit yields a result with no samples; it is not retried.

        Raises:
            BaselineUnavailable: The version is not installed
            ExecutionTimeout: The process exceeded the execution timeout
            RunnerBusy: The runner is already executing a scenario
            ScenarioExecutionFailure: The process could not be launched
            ConfigError: The command is missing or not executable

        """
        if not self._lock.acquire(blocking=False):
            msg = f"Runner {self.worker_id} is already executing a scenario"
            raise RunnerBusy(msg)
        try:
            return self._run(scenario, baseline)
        finally:
            self._lock.release()

    @property
    def busy(self) -> bool:
        """Whether a scenario is executing right now."""
        return self._lock.locked()

    def run_dir_for(self, scenario: Scenario, version: str) -> Path:
        """Directory holding the output of one execution."""
        return self.runs_dir / _safe_name(scenario.id) / _safe_name(version)

    def _run(self, scenario: Scenario, version: str) -> RunResult:
        distribution = self.resolver.resolve(version)

        run_dir = self.run_dir_for(scenario, version)
        if run_dir.exists():
            shutil.rmtree(run_dir)
        run_dir.mkdir(parents=True)
        samples_path = run_dir / SAMPLES_FILE

        fields = {
            "scenario_id": scenario.id,
            "test_class": scenario.test_class_name,
            "version": version,
            "distribution": str(distribution),
            "run_dir": str(run_dir),
            "samples_file": str(samples_path),
            "memory_limit_mb": str(self.settings.memory_limit_mb),
        }
        try:
            argv = [token.format(**fields) for token in self.settings.command]
        except (KeyError, IndexError) as e:
            msg = f"Unknown placeholder in scenario command: {e}"
            raise ConfigError(msg) from e

        logger.info("Running %s against %s", scenario.id, version)
        process = ProcessRunner(
            command_argv=argv,
            workdir=self.workdir,
            run_dir=run_dir,
            env=self._environment(scenario, fields),
        )
        try:
            process.start()
        except OSError as e:
            raise ScenarioExecutionFailure(
                scenario.id, version, reason=f"could not be launched: {e}"
            ) from e
        supervision = process.supervise(
            timeout=self.settings.execution_timeout,
            memory_limit_mb=self.settings.memory_limit_mb,
            poll_interval=self.settings.poll_interval,
            grace_period=self.settings.kill_grace_period,
        )
        logger.info(
            "%s against %s finished with code %s, peak RSS %.0f MiB",
            scenario.id,
            version,
            supervision.exit_code,
            supervision.peak_rss_mb,
        )
        artifacts = collect_artifacts(run_dir)

        if supervision.timed_out:
            raise ExecutionTimeout(
                scenario.id, version, self.settings.execution_timeout, artifacts
            )

        result = RunResult(
            scenario_id=scenario.id,
            baseline_version=version,
            exit_code=supervision.exit_code,
            artifact_paths=artifacts,
            worker_id=self.worker_id,
        )

        if supervision.memory_exceeded:
            return result.model_copy(
                update={
                    "outcome": ScenarioOutcome.FAILED,
                    "error_message": (
                        f"Exceeded memory ceiling of {self.settings.memory_limit_mb} MiB "
                        f"(peak {supervision.peak_rss_mb:.0f} MiB)"
                    ),
                }
            )

        if supervision.exit_code != 0:
            logger.warning(
                "%s against %s exited with code %s",
                scenario.id,
                version,
                supervision.exit_code,
            )
            return result.model_copy(
                update={
                    "outcome": ScenarioOutcome.FAILED,
                    "error_message": f"Process exited with code {supervision.exit_code}",
                }
            )

        samples = read_samples(samples_path)
        logger.debug("%s against %s: %d samples", scenario.id, version, len(samples))
        return result.model_copy(update={"samples": samples})

    def _environment(self, scenario: Scenario, fields: dict[str, str]) -> dict[str, str]:
        env = {
            "TEMPO_SCENARIO_ID": scenario.id,
            "TEMPO_TEST_CLASS": scenario.test_class_name,
            "TEMPO_VERSION": fields["version"],
            "TEMPO_DISTRIBUTION": fields["distribution"],
            "TEMPO_CHANNEL": scenario.channel,
            "TEMPO_RUN_DIR": fields["run_dir"],
            "TEMPO_SAMPLES_FILE": fields["samples_file"],
            "TEMPO_MEMORY_LIMIT_MB": fields["memory_limit_mb"],
        }
        for name in ("db_url", "db_username", "db_password", "build_id", "branch_name"):
            value = getattr(self.settings, name)
            if value:
                env[f"TEMPO_{name.upper()}"] = value
        return env
