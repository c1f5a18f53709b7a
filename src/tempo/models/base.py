# Copyright (c) Syntropy Systems
"""Shared Pydantic model helpers for tempo."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict


class TempoBaseModel(BaseModel):
    """Base model with shared config for tempo schemas."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
    )


class FrozenModel(BaseModel):
    """Base model for values that must not change once created."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )
