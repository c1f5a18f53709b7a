# Copyright (c) Syntropy Systems
"""HTTP client for coordinators to drive remote tempo agents."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar, cast

import httpx
from pydantic import BaseModel, ValidationError
from typing_extensions import Self

from tempo.agent.models import (
    BASELINE_UNAVAILABLE,
    EXECUTION_FAILED,
    EXECUTION_TIMEOUT,
    ErrorResponse,
    HealthResponse,
)
from tempo.errors import (
    BaselineUnavailable,
    ExecutionTimeout,
    RunnerFailure,
    ScenarioExecutionFailure,
)
from tempo.models.results import RunResult

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType

    from tempo.models.scenario import Scenario

logger = logging.getLogger(__name__)

ResponseModel = TypeVar("ResponseModel", bound=BaseModel)


class AgentClientError(Exception):
    """Error from tempo agent communication."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        detail: str | None = None,
        code: str | None = None,
        artifact_paths: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail
        self.code = code
        self.artifact_paths = artifact_paths or []


class AgentClient:
    """HTTP client for one tempo agent."""

    base_url: str
    timeout: float
    _client: httpx.Client

    def __init__(
        self,
        base_url: str,
        timeout: float = 3600.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Base URL of the agent (e.g., "http://perf-agent-1:8090")
            timeout: Request timeout in seconds; an execution request blocks
                for the whole execution
            http_client: Preconfigured httpx client (used by tests)

        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> Self:
        """Enter the client context and return self."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit the client context and close the HTTP client."""
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        response_model: type[ResponseModel],
        json: Mapping[str, object] | None = None,
    ) -> ResponseModel:
        """Make an HTTP request to the agent."""
        url = f"{self.base_url}{path}"
        try:
            response = self._client.request(method=method, url=url, json=json)
            _ = response.raise_for_status()
            return response_model.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            # Try to get error detail from response
            try:
                error = ErrorResponse.model_validate(e.response.json())
                detail, code, artifact_paths = error.detail, error.code, error.artifact_paths
            except (ValidationError, ValueError):
                detail, code, artifact_paths = str(e), None, []
            msg = f"Agent error: {detail}"
            raise AgentClientError(
                msg,
                status_code=e.response.status_code,
                detail=detail,
                code=code,
                artifact_paths=artifact_paths,
            ) from e
        except httpx.RequestError as e:
            msg = f"Connection error: {e}"
            raise AgentClientError(msg) from e
        except ValidationError as e:
            msg = f"Unexpected response from agent: {e}"
            raise AgentClientError(msg) from e

    def health(self) -> HealthResponse:
        """Check that the agent is up."""
        return self._request("GET", "/health", HealthResponse)

    def execute(self, scenario: Scenario, version: str) -> RunResult:
        """Execute one scenario against one version on the agent.

        Args:
            scenario: Scenario to execute
            version: Version label

        Returns:
            The agent's result

        """
        payload = {
            "scenario": cast("dict[str, object]", scenario.model_dump(mode="json")),
            "version": version,
        }
        return self._request("POST", "/api/v1/executions", RunResult, json=payload)


class RemoteWorker:
    """Worker delegating every execution to a remote agent."""

    def __init__(self, worker_id: str, client: AgentClient) -> None:
        self.worker_id = worker_id
        self.client = client

    def execute(self, scenario: Scenario, version: str) -> RunResult:
        """Run one scenario against one version on the agent.

        Only errors the agent tags with a known code map onto execution
        errors; anything else, including a rejected request, is a
        RunnerFailure.

        Raises:
            ExecutionTimeout: The agent reported a timeout
            BaselineUnavailable: The agent cannot install the version
            ScenarioExecutionFailure: The agent could not launch the scenario
            RunnerFailure: The agent is unreachable or misbehaving

        """
        try:
            result = self.client.execute(scenario, version)
        except AgentClientError as e:
            if e.code == EXECUTION_TIMEOUT:
                raise ExecutionTimeout(
                    scenario.id, version, self.client.timeout, e.artifact_paths
                ) from e
            if e.code == BASELINE_UNAVAILABLE:
                raise BaselineUnavailable(version, e.detail) from e
            if e.code == EXECUTION_FAILED:
                raise ScenarioExecutionFailure(
                    scenario.id, version, reason=f"failed on agent: {e.detail}"
                ) from e
            msg = f"Agent {self.client.base_url} failed: {e}"
            raise RunnerFailure(msg) from e
        return result.model_copy(update={"worker_id": self.worker_id})
