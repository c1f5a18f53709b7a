# Copyright (c) Syntropy Systems
"""Pytest fixtures for tempo tests."""

import json
import os
import sys
import tempfile
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
import yaml

# Store original cwd at module load time
_original_cwd = Path.cwd()

# Child process standing in for a performance test: looks up its timings in
# timings.json ("<scenario>/<version>" -> list of ms, or {"exit": n} /
# {"sleep": s} / {"allocate_mb": n}) and writes them as samples.
FAKE_SCENARIO = '''
import json
import os
import sys
import time

scenario_id, version, samples_file = sys.argv[1:4]
timings = json.load(open(os.environ["FAKE_TIMINGS"]))
entry = timings.get(f"{scenario_id}/{version}", [100.0, 101.0, 99.0])
print(f"running {scenario_id} against {version}")
if isinstance(entry, dict):
    if "sleep" in entry:
        time.sleep(entry["sleep"])
    if "allocate_mb" in entry:
        ballast = bytearray(entry["allocate_mb"] * 1024 * 1024)
        time.sleep(30)
    sys.exit(entry.get("exit", 0))
with open(samples_file, "a") as f:
    for duration in entry:
        f.write(json.dumps({"duration_ms": duration}) + "\\n")
'''

SCENARIO_DEFINITIONS = {
    "scenarios": [
        {
            "test_class": "perf.JavaConfigurationPerformanceTest",
            "categories": ["PerformanceRegression"],
        },
        {
            "test_class": "perf.NativeExperimentPerformanceTest",
            "categories": ["PerformanceExperiment"],
        },
    ],
}


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_scenario(temp_dir: Path) -> Path:
    """Write the fake scenario script and return its path."""
    script = temp_dir / "fake_scenario.py"
    script.write_text(FAKE_SCENARIO)
    return script


@pytest.fixture
def set_timings(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Callable[[dict[str, object]], None]:
    """Return a function that sets the timings the fake scenario reports."""
    path = temp_dir / "timings.json"
    path.write_text("{}")
    monkeypatch.setenv("FAKE_TIMINGS", str(path))

    def _set(data: dict[str, object]) -> None:
        path.write_text(json.dumps(data))

    return _set


@pytest.fixture
def tempo_project(
    temp_dir: Path, fake_scenario: Path, set_timings: Callable[[dict[str, object]], None]
) -> Generator[Path, None, None]:
    """Create a temporary tempo project running the fake scenario."""
    tempo_dir = temp_dir / ".tempo"
    tempo_dir.mkdir()
    (tempo_dir / "runs").mkdir()

    distributions = temp_dir / "distributions"
    for version in ("current", "2.0", "last"):
        (distributions / version).mkdir(parents=True)

    config = {
        "channel": "commits",
        "baselines": ["last"],
        "command": [
            sys.executable,
            str(fake_scenario),
            "{scenario_id}",
            "{version}",
            "{samples_file}",
        ],
        "distributions_dir": "distributions",
        "current_distribution": "distributions/current",
        "poll_interval": 0.05,
        "kill_grace_period": 1,
    }
    with (tempo_dir / "config.yaml").open("w") as f:
        yaml.safe_dump(config, f)
    with (temp_dir / "scenarios.yaml").open("w") as f:
        yaml.safe_dump(SCENARIO_DEFINITIONS, f, sort_keys=False)

    # Change to temp directory
    os.chdir(temp_dir)

    yield temp_dir

    # Always return to original cwd
    os.chdir(_original_cwd)
