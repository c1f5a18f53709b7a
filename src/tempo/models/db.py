# Copyright (c) Syntropy Systems
"""Pydantic models for database records."""

from __future__ import annotations

from typing import Optional, cast

from pydantic import Field, TypeAdapter, field_validator

from .base import TempoBaseModel
from .results import ScenarioOutcome

_LIST_FLOAT_ADAPTER = TypeAdapter(list[float])
_LIST_STR_ADAPTER = TypeAdapter(list[str])


class ExecutionRecord(TempoBaseModel):
    """Stored execution of one scenario against one version."""

    id: int
    scenario_id: str
    version: str
    channel: str
    build_id: Optional[str] = None
    branch_name: Optional[str] = None
    worker_id: Optional[str] = None
    outcome: ScenarioOutcome
    exit_code: Optional[int] = None
    samples: list[float] = Field(default_factory=list)
    artifact_paths: list[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    recorded_at: Optional[str] = None

    @field_validator("samples", mode="before")
    @classmethod
    def _parse_samples(cls, value: object) -> list[float]:
        if value is None:
            return []
        if isinstance(value, str):
            return _LIST_FLOAT_ADAPTER.validate_json(value)
        return cast("list[float]", value)

    @field_validator("artifact_paths", mode="before")
    @classmethod
    def _parse_artifacts(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return _LIST_STR_ADAPTER.validate_json(value)
        return cast("list[str]", value)
