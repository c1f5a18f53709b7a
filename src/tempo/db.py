# Copyright (c) Syntropy Systems
"""SQLite result history with WAL mode and atomic writes."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from tempo.errors import ConfigError
from tempo.models.db import ExecutionRecord

if TYPE_CHECKING:
    from collections.abc import Iterable

    from tempo.models.results import RunResult

logger = logging.getLogger(__name__)

SQLITE_PREFIXES = ("sqlite:///", "sqlite://", "sqlite:", "jdbc:sqlite:")

# SQL schema for the tempo result database
SCHEMA = """
CREATE TABLE IF NOT EXISTS executions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    scenario_id TEXT NOT NULL,
    version TEXT NOT NULL,
    channel TEXT NOT NULL,
    build_id TEXT,
    branch_name TEXT,
    worker_id TEXT,
    outcome TEXT NOT NULL,  -- completed, failed, timed_out, runner_failed, cancelled
    exit_code INTEGER,
    samples TEXT,  -- JSON array of milliseconds
    artifact_paths TEXT,  -- JSON array
    error_message TEXT,
    recorded_at TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_executions_channel ON executions(channel);
CREATE INDEX IF NOT EXISTS idx_executions_scenario ON executions(scenario_id, version);
"""


def database_path(db_url: str) -> Path:
    """Resolve a result database URL to a SQLite file path.

    Accepts ``sqlite:///path/to/results.db``, ``jdbc:sqlite:path`` or a
    plain file path.
    """
    for prefix in SQLITE_PREFIXES:
        if db_url.startswith(prefix):
            return Path(db_url[len(prefix):]).expanduser()
    if "://" in db_url or db_url.startswith("jdbc:"):
        msg = f"Unsupported result database URL: {db_url} (only SQLite is supported)"
        raise ConfigError(msg)
    return Path(db_url).expanduser()


def get_connection(db_path: Path) -> sqlite3.Connection:
    """
    Get a database connection with proper settings for concurrent access.

    - isolation_level=None for explicit transaction control
    - WAL mode for concurrent readers/writers
    - busy_timeout to wait for locks instead of failing immediately
    - Row factory for dict-like access
    """
    conn = sqlite3.connect(str(db_path), timeout=5.0, isolation_level=None)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path) -> None:
    """Initialize the database with the schema."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA)
    finally:
        conn.close()


def utcnow() -> str:
    """Get current UTC time as ISO format string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def record_results(
    conn: sqlite3.Connection,
    results: Iterable[RunResult],
    channel: str,
    build_id: Optional[str] = None,
    branch_name: Optional[str] = None,
) -> int:
    """Store results in a single transaction. Returns the number stored."""
    now = utcnow()
    rows = [
        (
            result.scenario_id,
            result.baseline_version,
            channel,
            build_id,
            branch_name,
            result.worker_id,
            result.outcome.value,
            result.exit_code,
            json.dumps(result.samples),
            json.dumps(result.artifact_paths),
            result.error_message,
            now,
        )
        for result in results
    ]

    try:
        conn.execute("BEGIN IMMEDIATE")
        conn.executemany(
            """
            INSERT INTO executions (
                scenario_id, version, channel, build_id, branch_name, worker_id,
                outcome, exit_code, samples, artifact_paths, error_message, recorded_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise

    logger.debug("Stored %d executions for channel %s", len(rows), channel)
    return len(rows)


def get_executions(
    conn: sqlite3.Connection,
    channel: Optional[str] = None,
    scenario_id: Optional[str] = None,
    version: Optional[str] = None,
    limit: int = 100,
) -> list[ExecutionRecord]:
    """Get stored executions, newest first, with optional filtering."""
    query = "SELECT * FROM executions WHERE 1=1"
    params: list[Any] = []

    if channel:
        query += " AND channel = ?"
        params.append(channel)

    if scenario_id:
        query += " AND scenario_id = ?"
        params.append(scenario_id)

    if version:
        query += " AND version = ?"
        params.append(version)

    query += " ORDER BY id DESC LIMIT ?"
    params.append(limit)

    rows = conn.execute(query, params).fetchall()
    return [ExecutionRecord.model_validate(dict(row)) for row in rows]
