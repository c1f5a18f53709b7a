# Copyright (c) Syntropy Systems
"""Pydantic models for scenarios and worker assignments."""

from __future__ import annotations

from pydantic import Field, field_validator

from .base import FrozenModel, TempoBaseModel


class Scenario(FrozenModel):
    """One performance test class bound to the baselines it is compared against."""

    id: str
    test_class_name: str
    baseline_versions: tuple[str, ...]
    channel: str
    categories: tuple[str, ...] = ()

    @field_validator("id", "test_class_name", "channel")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            msg = "must not be blank"
            raise ValueError(msg)
        return value

    @field_validator("baseline_versions")
    @classmethod
    def _require_baselines(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            msg = "a scenario needs at least one baseline version"
            raise ValueError(msg)
        return value


class WorkerAssignment(TempoBaseModel):
    """Scenarios handed to one worker for the lifetime of a run."""

    worker_id: str
    scenario_ids: list[str] = Field(default_factory=list)
