# Copyright (c) Syntropy Systems
"""Tests for the result history database."""

import sqlite3
from collections.abc import Generator
from pathlib import Path

import pytest

from tempo.db import (
    database_path,
    get_connection,
    get_executions,
    init_db,
    record_results,
)
from tempo.errors import ConfigError
from tempo.models.results import CURRENT_VERSION, RunResult, ScenarioOutcome


@pytest.fixture
def db_connection(temp_dir: Path) -> Generator[sqlite3.Connection, None, None]:
    """Create an initialized result database."""
    db_path = temp_dir / "results.db"
    init_db(db_path)
    conn = get_connection(db_path)
    yield conn
    conn.close()


class TestDatabasePath:
    """Tests for resolving database URLs."""

    def test_sqlite_url(self) -> None:
        """sqlite:/// URLs map to their path."""
        assert database_path("sqlite:////var/lib/tempo/results.db") == Path(
            "/var/lib/tempo/results.db"
        )

    def test_jdbc_url(self) -> None:
        """JDBC-style SQLite URLs are accepted."""
        assert database_path("jdbc:sqlite:/tmp/results.db") == Path("/tmp/results.db")

    def test_home_expanded(self) -> None:
        """A leading ~ is expanded."""
        assert database_path("sqlite:///~/.tempo/adhoc-results.db") == (
            Path.home() / ".tempo" / "adhoc-results.db"
        )

    def test_plain_path(self) -> None:
        """A bare path is used as-is."""
        assert database_path("results.db") == Path("results.db")

    def test_unsupported_url(self) -> None:
        """Server databases are rejected."""
        with pytest.raises(ConfigError, match="only SQLite"):
            _ = database_path("jdbc:postgresql://db/results")


class TestExecutions:
    """Tests for recording and reading executions."""

    def test_record_and_read(self, db_connection: sqlite3.Connection) -> None:
        """Recorded results come back with samples and artifacts."""
        results = [
            RunResult(
                scenario_id="startup",
                baseline_version=CURRENT_VERSION,
                samples=[100.0, 101.5],
                exit_code=0,
                worker_id="worker-0",
            ),
            RunResult(
                scenario_id="startup",
                baseline_version="last",
                outcome=ScenarioOutcome.TIMED_OUT,
                artifact_paths=["/tmp/run/output.log"],
                error_message="timed out",
            ),
        ]

        stored = record_results(
            db_connection, results, channel="commits", build_id="42", branch_name="main"
        )

        assert stored == 2
        records = get_executions(db_connection)
        assert [r.version for r in records] == ["last", CURRENT_VERSION]
        timed_out, current = records
        assert current.samples == [100.0, 101.5]
        assert current.worker_id == "worker-0"
        assert current.build_id == "42"
        assert current.branch_name == "main"
        assert timed_out.outcome == ScenarioOutcome.TIMED_OUT
        assert timed_out.artifact_paths == ["/tmp/run/output.log"]
        assert timed_out.samples == []

    def test_filters(self, db_connection: sqlite3.Connection) -> None:
        """Executions can be filtered by channel, scenario and version."""
        _ = record_results(
            db_connection,
            [
                RunResult(scenario_id="a", baseline_version="2.0", samples=[1.0]),
                RunResult(scenario_id="b", baseline_version="2.0", samples=[2.0]),
            ],
            channel="historical",
        )
        _ = record_results(
            db_connection,
            [RunResult(scenario_id="a", baseline_version="last", samples=[3.0])],
            channel="commits",
        )

        assert len(get_executions(db_connection, channel="historical")) == 2
        assert len(get_executions(db_connection, scenario_id="a")) == 2
        [record] = get_executions(db_connection, scenario_id="a", version="last")
        assert record.channel == "commits"
        assert len(get_executions(db_connection, limit=1)) == 1

    def test_empty_batch(self, db_connection: sqlite3.Connection) -> None:
        """Recording nothing stores nothing."""
        assert record_results(db_connection, [], channel="commits") == 0
        assert get_executions(db_connection) == []
