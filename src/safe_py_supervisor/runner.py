"""One-shot helper that runs a single snippet in a fresh supervisor."""

from __future__ import annotations

from typing import Any

from .errors import ErrorKind
from .execution.types import ExecutionFailure, ExecutionResult
from .policy import SupervisorConfig
from .supervisor import Supervisor


def _resolve_config(config: SupervisorConfig | None, config_file: str | None) -> SupervisorConfig:
    """Resolve the effective configuration for a run.

    Example:
        ```python
        config = _resolve_config(None, "/tmp/supervisor.toml")
        ```
    """
    if config is not None and config_file is not None:
        raise ValueError("Provide either 'config' or 'config_file', not both")
    if config_file is not None:
        return SupervisorConfig.from_file(config_file)
    if config is None:
        return SupervisorConfig()
    return config


async def run_code(
    code: str,
    params: dict[str, Any] | None = None,
    config: SupervisorConfig | None = None,
    config_file: str | None = None,
    python_executable: str | None = None,
) -> ExecutionResult:
    """Run one snippet in a fresh supervised worker and return its result.

    Example:
        ```python
        from safe_py_supervisor import run_code
        result = await run_code("sum(values)", {"values": [1, 2, 3]})
        result.result_json  # "6"
        ```
    """
    resolved = _resolve_config(config, config_file)
    outcomes: list[ExecutionResult] = []
    async with Supervisor(
        outcomes.append,
        outcomes.append,
        resolved,
        python_executable=python_executable,
    ) as supervisor:
        await supervisor.execute(code, params)

    if not outcomes:
        return ExecutionFailure(ErrorKind.WORKER_DEAD, "Worker finished without a result")
    return outcomes[0]
