# Copyright (c) Syntropy Systems
"""Rebaseline scenario definitions onto a new baseline version."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, cast

import yaml

from tempo.errors import ConfigError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


def rebaseline(definitions_path: Path, version: str) -> int:
    """Pin every scenario definition to ``version``.

    Entries that already list exactly that baseline are left alone. Returns
    the number of entries changed.
    """
    version = version.strip()
    if not version:
        msg = "A baseline version is required"
        raise ConfigError(msg)
    if not definitions_path.exists():
        msg = f"Scenario definitions not found: {definitions_path}"
        raise ConfigError(msg)

    with definitions_path.open() as f:
        data = cast("dict[str, object] | None", yaml.safe_load(f))
    if not isinstance(data, dict) or not isinstance(data.get("scenarios"), list):
        msg = f"{definitions_path} must have a 'scenarios' list"
        raise ConfigError(msg)

    changed = 0
    for entry in cast("list[dict[str, object]]", data["scenarios"]):
        if entry.get("baselines") == [version]:
            continue
        entry["baselines"] = [version]
        changed += 1
        logger.debug("Rebaselined %s onto %s", entry.get("test_class"), version)

    if changed:
        with definitions_path.open("w") as f:
            yaml.safe_dump(data, f, sort_keys=False, default_flow_style=None)
    logger.info("Rebaselined %d scenario definition(s) onto %s", changed, version)
    return changed
