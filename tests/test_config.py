# Copyright (c) Syntropy Systems
"""Tests for settings loading."""

from pathlib import Path

import pytest

from tempo.config import (
    CHECKS_NONE,
    TempoSettings,
    find_tempo_dir,
    load_settings,
    parse_baselines,
)
from tempo.errors import ConfigError


def write_config(tempo_dir: Path, content: str) -> None:
    """Write a config.yaml into a .tempo directory."""
    tempo_dir.mkdir(parents=True, exist_ok=True)
    (tempo_dir / "config.yaml").write_text(content)


class TestParseBaselines:
    """Tests for baseline list parsing."""

    def test_comma_separated(self) -> None:
        assert parse_baselines("2.0,last") == ("2.0", "last")

    def test_bracketed(self) -> None:
        assert parse_baselines("[1.1, 2.0, last]") == ("1.1", "2.0", "last")

    def test_duplicates_dropped(self) -> None:
        """Order is kept and repeats are removed."""
        assert parse_baselines(["last", "2.0", "last"]) == ("last", "2.0")

    def test_rejects_other_types(self) -> None:
        with pytest.raises(ConfigError):
            _ = parse_baselines(3)


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults(self, temp_dir: Path) -> None:
        """Without config, defaults apply."""
        settings = load_settings(temp_dir / ".tempo", environ={})

        assert settings == TempoSettings()
        assert settings.fails_on_regression

    def test_yaml_values(self, temp_dir: Path) -> None:
        """Values from config.yaml are coerced to their field types."""
        write_config(
            temp_dir / ".tempo",
            "channel: historical\n"
            "baselines: 2.0,last\n"
            "checks: none\n"
            "threshold: 0.1\n"
            "workers: '3'\n"
            "command: run-scenario {scenario_id}\n"
            "custom_key: 7\n",
        )

        settings = load_settings(temp_dir / ".tempo", environ={})

        assert settings.channel == "historical"
        assert settings.baselines == ("2.0", "last")
        assert settings.checks == CHECKS_NONE
        assert not settings.fails_on_regression
        assert settings.threshold == 0.1
        assert settings.workers == 3
        assert settings.command == ("run-scenario", "{scenario_id}")
        assert settings.extra == {"custom_key": "7"}

    def test_environment_overrides_yaml(self, temp_dir: Path) -> None:
        """TEMPO_* variables win over config.yaml."""
        write_config(temp_dir / ".tempo", "channel: commits\nworkers: 2\n")

        settings = load_settings(
            temp_dir / ".tempo",
            environ={"TEMPO_CHANNEL": "experiments", "TEMPO_BUILD_ID": "1234", "OTHER": "x"},
        )

        assert settings.channel == "experiments"
        assert settings.workers == 2
        assert settings.build_id == "1234"

    def test_relative_distribution_paths(self, temp_dir: Path) -> None:
        """Relative distribution paths are resolved against the project root."""
        write_config(
            temp_dir / ".tempo",
            "distributions_dir: dists\ncurrent_distribution: /opt/build\n",
        )

        settings = load_settings(temp_dir / ".tempo", environ={})

        assert settings.distributions_dir == temp_dir / "dists"
        assert settings.current_distribution == Path("/opt/build")

    def test_invalid_value(self, temp_dir: Path) -> None:
        """Values that cannot be coerced are configuration errors."""
        write_config(temp_dir / ".tempo", "workers: many\n")

        with pytest.raises(ConfigError, match="Invalid configuration value"):
            _ = load_settings(temp_dir / ".tempo", environ={})

    def test_not_a_mapping(self, temp_dir: Path) -> None:
        write_config(temp_dir / ".tempo", "- a\n- b\n")

        with pytest.raises(ConfigError):
            _ = load_settings(temp_dir / ".tempo", environ={})

    def test_invalid_checks(self, temp_dir: Path) -> None:
        """checks must be all or none."""
        write_config(temp_dir / ".tempo", "checks: some\n")

        with pytest.raises(ConfigError, match="checks"):
            _ = load_settings(temp_dir / ".tempo", environ={})


class TestSettings:
    """Tests for TempoSettings."""

    def test_with_overrides_ignores_none(self) -> None:
        """None overrides leave values unchanged."""
        settings = TempoSettings(channel="commits")

        updated = settings.with_overrides(channel=None, baselines="2.0, last", build_id="7")

        assert updated.channel == "commits"
        assert updated.baselines == ("2.0", "last")
        assert updated.build_id == "7"

    def test_with_overrides_validates(self) -> None:
        with pytest.raises(ConfigError, match="workers"):
            _ = TempoSettings().with_overrides(workers=0)

    def test_empty_baselines_rejected(self) -> None:
        with pytest.raises(ConfigError, match="baseline"):
            _ = TempoSettings().with_overrides(baselines="")


class TestFindTempoDir:
    """Tests for locating the project directory."""

    def test_walks_up(self, temp_dir: Path) -> None:
        """The nearest .tempo directory above start_path is found."""
        (temp_dir / ".tempo").mkdir()
        nested = temp_dir / "a" / "b"
        nested.mkdir(parents=True)

        assert find_tempo_dir(nested) == (temp_dir / ".tempo").resolve()
