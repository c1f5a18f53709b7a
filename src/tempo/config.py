# Copyright (c) Syntropy Systems
"""Configuration management for tempo."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import TYPE_CHECKING, cast

import yaml

from tempo.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Mapping

# Baselines swept by the historical channel
HISTORICAL_BASELINES: tuple[str, ...] = (
    "1.1",
    "1.12",
    "2.0",
    "2.1",
    "2.4",
    "2.9",
    "2.12",
    "2.14.1",
    "last",
)

CHECKS_ALL = "all"
CHECKS_NONE = "none"

ENV_PREFIX = "TEMPO_"


@dataclass(frozen=True)
class TempoSettings:
    """Settings for a tempo run.

    Built once at the edge and handed to every component by value.
    """

    # Trend bucket results are reported under
    channel: str = "commits"

    # Versions of the build tool to compare against
    baselines: tuple[str, ...] = ("last",)

    # "all" fails the run on regressions, "none" only reports them
    checks: str = CHECKS_ALL

    # Relative slowdown of the median that counts as a regression
    threshold: float = 0.05

    # Minimum confidence (1 - p) before a slowdown is flagged
    min_confidence: float = 0.95

    # Fraction of dead workers the run tolerates before failing
    max_runner_failure_fraction: float = 0.5

    # Number of parallel workers for distributed runs
    workers: int = 1

    # Hard memory ceiling per scenario process (MiB)
    memory_limit_mb: int = 3072

    # Per-execution timeout (seconds)
    execution_timeout: float = 1800.0

    # Grace period before SIGKILL after SIGTERM (seconds)
    kill_grace_period: float = 10.0

    # How often the runner samples a running process (seconds)
    poll_interval: float = 0.5

    # argv template for one scenario execution
    command: tuple[str, ...] = ()

    # Directory of unpacked build tool distributions, one per version
    distributions_dir: Path | None = None

    # Distribution of the build under test
    current_distribution: Path | None = None

    # Historical result storage
    db_url: str | None = None
    db_username: str | None = None
    db_password: str | None = None

    # CI coordinates
    build_id: str | None = None
    branch_name: str | None = None
    ci_url: str | None = None
    ci_username: str | None = None
    ci_password: str | None = None

    extra: dict[str, str] = field(default_factory=dict, compare=False)

    @property
    def fails_on_regression(self) -> bool:
        """Whether flagged regressions fail the run."""
        return self.checks != CHECKS_NONE

    def with_overrides(self, **overrides: object) -> TempoSettings:
        """Return a copy with the non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "baselines" in changes:
            changes["baselines"] = parse_baselines(changes["baselines"])
        settings = replace(self, **changes)
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise ConfigError if settings are inconsistent."""
        if not self.channel:
            msg = "A channel is required"
            raise ConfigError(msg)
        if not self.baselines:
            msg = "At least one baseline is required"
            raise ConfigError(msg)
        if self.checks not in (CHECKS_ALL, CHECKS_NONE):
            msg = f"checks must be '{CHECKS_ALL}' or '{CHECKS_NONE}', got '{self.checks}'"
            raise ConfigError(msg)
        if self.threshold < 0:
            msg = "threshold must not be negative"
            raise ConfigError(msg)
        if not 0 <= self.min_confidence <= 1:
            msg = "min_confidence must be between 0 and 1"
            raise ConfigError(msg)
        if self.workers < 1:
            msg = "workers must be at least 1"
            raise ConfigError(msg)


def parse_baselines(value: object) -> tuple[str, ...]:
    """Parse a baseline list.

    Accepts a sequence or a string such as ``2.0,last`` or ``[1.1, 2.0, last]``.
    Duplicates are dropped, order is kept.
    """
    if isinstance(value, str):
        items = [item.strip() for item in re.split(r"[,\s]+", value.strip("[] "))]
    elif isinstance(value, (list, tuple)):
        items = [str(item).strip() for item in cast("list[object]", value)]
    else:
        msg = f"Cannot parse baselines from {value!r}"
        raise ConfigError(msg)

    seen: dict[str, None] = {}
    for item in items:
        if item:
            seen.setdefault(item, None)
    return tuple(seen)


def find_tempo_dir(start_path: Path | None = None) -> Path | None:
    """Find the nearest .tempo directory by walking up from start_path.

    Returns None if no .tempo directory is found.
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()

    while current != current.parent:
        tempo_dir = current / ".tempo"
        if tempo_dir.is_dir():
            return tempo_dir
        current = current.parent

    # Check root
    tempo_dir = current / ".tempo"
    if tempo_dir.is_dir():
        return tempo_dir

    return None


def require_tempo_dir() -> Path:
    """Get tempo directory or raise an error if not found."""
    tempo_dir = find_tempo_dir()
    if tempo_dir is None:
        msg = "No .tempo directory found. Run 'tempo init' first."
        raise ConfigError(msg)
    return tempo_dir


def get_runs_dir(tempo_dir: Path) -> Path:
    """Directory holding per-execution run folders."""
    return tempo_dir / "runs"


def get_reports_dir(tempo_dir: Path) -> Path:
    """Directory holding rendered reports and archives."""
    return tempo_dir / "reports"


def get_test_results_dir(tempo_dir: Path) -> Path:
    """Directory holding per-scenario result files."""
    return tempo_dir / "test-results"


def get_catalog_path(tempo_dir: Path) -> Path:
    """Path of the flat scenario catalog file."""
    return tempo_dir / "scenario-list.csv"


def get_definitions_path(tempo_dir: Path) -> Path:
    """Path of the scenario definitions file."""
    return tempo_dir.parent / "scenarios.yaml"


def _coerce(name: str, raw: object) -> object:
    """Coerce a raw config value to the type of the settings field."""
    if raw is None:
        return None
    if name == "baselines":
        return parse_baselines(raw)
    if name == "command":
        if isinstance(raw, str):
            return tuple(raw.split())
        return tuple(str(token) for token in cast("list[object]", raw))
    if name in ("distributions_dir", "current_distribution"):
        return Path(str(raw)).expanduser()
    if name in ("workers", "memory_limit_mb"):
        return int(cast("int", raw))
    if name in (
        "threshold",
        "min_confidence",
        "max_runner_failure_fraction",
        "execution_timeout",
        "kill_grace_period",
        "poll_interval",
    ):
        return float(cast("float", raw))
    return str(raw)


def load_settings(
    tempo_dir: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> TempoSettings:
    """Load settings from .tempo/config.yaml, then TEMPO_* environment variables.

    Looks for config in:
    1. Provided tempo_dir
    2. Nearest .tempo directory walking up
    3. Defaults
    """
    if environ is None:
        environ = os.environ

    known = {f.name for f in fields(TempoSettings)} - {"extra"}
    values: dict[str, object] = {}
    extra: dict[str, str] = {}

    if tempo_dir is None:
        tempo_dir = find_tempo_dir()

    if tempo_dir is not None:
        config_path = tempo_dir / "config.yaml"
        if config_path.exists():
            with config_path.open() as f:
                data = cast("dict[str, object]", yaml.safe_load(f) or {})
            if not isinstance(data, dict):
                msg = f"{config_path} must contain a mapping"
                raise ConfigError(msg)
            for key, raw in data.items():
                if key in known:
                    values[key] = raw
                else:
                    extra[key] = str(raw)

    for env_key, raw in environ.items():
        if not env_key.startswith(ENV_PREFIX):
            continue
        name = env_key[len(ENV_PREFIX):].lower()
        if name in known:
            values[name] = raw

    try:
        coerced = {name: _coerce(name, raw) for name, raw in values.items()}
    except (TypeError, ValueError) as e:
        msg = f"Invalid configuration value: {e}"
        raise ConfigError(msg) from e

    # Relative distribution paths are relative to the project root
    if tempo_dir is not None:
        for name in ("distributions_dir", "current_distribution"):
            path = coerced.get(name)
            if isinstance(path, Path) and not path.is_absolute():
                coerced[name] = tempo_dir.parent / path

    settings = TempoSettings(
        **{k: v for k, v in coerced.items() if v is not None},
        extra=extra,
    )
    settings.validate()
    return settings
