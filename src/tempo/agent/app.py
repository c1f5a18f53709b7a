# Copyright (c) Syntropy Systems
"""FastAPI application for the tempo agent."""
from __future__ import annotations

import logging
import socket
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import tempo
from tempo.agent.models import (
    BASELINE_UNAVAILABLE,
    EXECUTION_FAILED,
    EXECUTION_TIMEOUT,
    RUNNER_BUSY,
    ErrorResponse,
    ExecutionRequest,
    HealthResponse,
)
from tempo.errors import (
    BaselineUnavailable,
    ExecutionTimeout,
    RunnerBusy,
    ScenarioExecutionFailure,
)
from tempo.models.results import RunResult
from tempo.runner import ScenarioRunner

if TYPE_CHECKING:
    from pathlib import Path

    from tempo.config import TempoSettings

logger = logging.getLogger(__name__)


def _runner(request: Request) -> ScenarioRunner:
    return request.app.state.runner


def _error(
    status_code: int, code: str, error: Exception, artifact_paths: list[str] | None = None
) -> JSONResponse:
    body = ErrorResponse(detail=str(error), code=code, artifact_paths=artifact_paths or [])
    return JSONResponse(status_code=status_code, content=body.model_dump())


def create_app(
    settings: TempoSettings,
    runs_dir: Path,
    runner: ScenarioRunner | None = None,
    worker_id: str | None = None,
) -> FastAPI:
    """
    Create the agent application.

    Args:
        settings: Settings the agent's runner executes with
        runs_dir: Directory for per-execution output on this machine
        runner: Runner to use instead of building one from settings
        worker_id: Identifier reported in results (defaults to the hostname)

    Returns:
        Configured FastAPI application
    """
    if runner is None:
        runner = ScenarioRunner(
            settings,
            runs_dir,
            worker_id=worker_id or f"agent-{socket.gethostname()}",
        )

    app = FastAPI(
        title="tempo agent",
        description="Executes performance scenarios for a distributed coordinator",
        version=tempo.__version__,
    )
    app.state.runner = runner

    @app.get("/health", response_model=HealthResponse)
    def health(request: Request) -> HealthResponse:
        """Health check endpoint."""
        current = _runner(request)
        return HealthResponse(status="healthy", worker_id=current.worker_id, busy=current.busy)

    @app.post(
        "/api/v1/executions",
        response_model=RunResult,
        responses={
            404: {"model": ErrorResponse},
            409: {"model": ErrorResponse},
            500: {"model": ErrorResponse},
            504: {"model": ErrorResponse},
        },
    )
    def execute(body: ExecutionRequest, request: Request) -> RunResult | JSONResponse:
        """Execute one scenario against one version and return its result.

        Blocks until the execution finishes. The agent runs one execution at
        a time; concurrent requests are rejected. Failures carry an error
        code so clients can tell them apart from request validation errors.
        """
        try:
            return _runner(request).run(body.scenario, body.version)
        except RunnerBusy as e:
            return _error(409, RUNNER_BUSY, e)
        except BaselineUnavailable as e:
            return _error(404, BASELINE_UNAVAILABLE, e)
        except ScenarioExecutionFailure as e:
            logger.warning("%s", e)
            return _error(500, EXECUTION_FAILED, e)
        except ExecutionTimeout as e:
            logger.warning("%s", e)
            return _error(504, EXECUTION_TIMEOUT, e, e.artifact_paths)

    return app
