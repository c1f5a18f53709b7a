# Copyright (c) Syntropy Systems
"""Exception types raised by tempo."""
from __future__ import annotations

from collections.abc import Sequence


class TempoError(Exception):
    """Base class for all tempo errors."""


class ConfigError(TempoError):
    """Invalid or missing configuration."""


class ScenarioExecutionFailure(TempoError):
    """A scenario process crashed, could not be launched, or exited non-zero."""

    def __init__(
        self,
        scenario_id: str,
        version: str,
        exit_code: int | None = None,
        reason: str | None = None,
    ) -> None:
        self.scenario_id = scenario_id
        self.version = version
        self.exit_code = exit_code
        if reason is None:
            reason = f"exited with code {exit_code}"
        super().__init__(f"Scenario {scenario_id} against {version} {reason}")


class ExecutionTimeout(TempoError):
    """A scenario process exceeded its execution timeout.

    Carries whatever artifacts (heap dumps, logs) the process left behind.
    """

    def __init__(
        self,
        scenario_id: str,
        version: str,
        timeout: float,
        artifact_paths: Sequence[str] = (),
    ) -> None:
        self.scenario_id = scenario_id
        self.version = version
        self.timeout = timeout
        self.artifact_paths = list(artifact_paths)
        super().__init__(
            f"Scenario {scenario_id} against {version} timed out after {timeout:g}s"
        )


class RunnerFailure(TempoError):
    """A whole worker died; its remaining scenarios cannot run."""


class RunnerBusy(TempoError):
    """A runner was asked to execute while already executing a scenario."""


class BaselineUnavailable(TempoError):
    """A baseline distribution cannot be resolved or installed."""

    def __init__(self, version: str, reason: str | None = None) -> None:
        self.version = version
        message = f"Baseline {version} is unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class CatalogEmpty(TempoError):
    """No scenarios to run."""
