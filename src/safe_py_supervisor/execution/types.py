"""Request and result types exchanged between the supervisor and its callers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from ..errors import ErrorKind


class WorkerState(str, Enum):
    """Lifecycle of the worker owned by a supervisor.

    Example:
        ```python
        state = WorkerState.ALIVE
        ```
    """

    UNINITIALIZED = "uninitialized"
    ALIVE = "alive"
    EXECUTING = "executing"
    TERMINATED = "terminated"


@dataclass(slots=True)
class ExecutionRequest:
    """One request sent to the worker.

    Example:
        ```python
        req = ExecutionRequest(id=1, code="x + 1", params={"x": 2})
        ```
    """

    id: int
    code: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        """Return the wire form of the request.

        Example:
            ```python
            message = ExecutionRequest(id=1, code="1").to_message()
            ```
        """
        return {"id": self.id, "code": self.code, "params": self.params}


@dataclass(slots=True)
class ExecutionSuccess:
    """Serialized result plus the captured output of one request.

    Example:
        ```python
        out = ExecutionSuccess(result_json='{"a":1}', logs=["hi"])
        ```
    """

    result_json: str
    logs: list[str] = field(default_factory=list)
    dropped_logs: int = 0

    @property
    def ok(self) -> bool:
        """Always True for a success.

        Example:
            ```python
            ExecutionSuccess("null").ok  # True
            ```
        """
        return True


@dataclass(slots=True)
class ExecutionFailure:
    """Structured failure delivered to the failure callback.

    Example:
        ```python
        out = ExecutionFailure(error=ErrorKind.EXECUTION_TIMEOUT, message="Timed out after 100 ms")
        ```
    """

    error: ErrorKind
    message: str
    logs: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Always False for a failure.

        Example:
            ```python
            ExecutionFailure(ErrorKind.WORKER_DEAD, "dead").ok  # False
            ```
        """
        return False

    def __str__(self) -> str:
        """Render `Kind: message`.

        Example:
            ```python
            str(ExecutionFailure(ErrorKind.WORKER_DEAD, "Worker is terminated"))
            ```
        """
        return f"{self.error.value}: {self.message}"


ExecutionResult = Union[ExecutionSuccess, ExecutionFailure]
