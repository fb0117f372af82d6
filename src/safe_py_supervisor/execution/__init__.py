"""Components that run inside the worker, plus the channel that talks to it."""

from .context import ExecutionContext
from .transport import WorkerProcess
from .types import ExecutionFailure, ExecutionRequest, ExecutionResult, ExecutionSuccess, WorkerState

__all__ = [
    "ExecutionContext",
    "ExecutionFailure",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionSuccess",
    "WorkerProcess",
    "WorkerState",
]
