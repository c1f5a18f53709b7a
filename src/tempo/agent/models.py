# Copyright (c) Syntropy Systems
"""Pydantic models for the tempo agent API."""
from __future__ import annotations

from pydantic import BaseModel, Field

from tempo.models.scenario import Scenario

# Error codes carried by ErrorResponse.code
BASELINE_UNAVAILABLE = "baseline_unavailable"
EXECUTION_FAILED = "execution_failed"
EXECUTION_TIMEOUT = "execution_timeout"
RUNNER_BUSY = "runner_busy"


class ExecutionRequest(BaseModel):
    """Request to execute one scenario against one version."""

    scenario: Scenario = Field(..., description="Scenario to execute")
    version: str = Field(..., description="Version label, or 'current' for the build under test")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    worker_id: str | None = None
    busy: bool = False


class ErrorResponse(BaseModel):
    """Error response."""

    detail: str
    code: str | None = None
    artifact_paths: list[str] = Field(default_factory=list)
