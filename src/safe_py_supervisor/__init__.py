"""Run untrusted Python snippets in a supervised, capability-restricted worker."""

from .errors import (
    CapabilityViolation,
    ConfigError,
    ErrorKind,
    FetchError,
    ResourceLimitExceeded,
    ResultTooLarge,
    SandboxError,
    SerializationError,
)
from .execution.types import ExecutionFailure, ExecutionResult, ExecutionSuccess, WorkerState
from .log import configure_logging
from .policy import SupervisorConfig
from .runner import run_code
from .supervisor import Supervisor

__all__ = [
    "CapabilityViolation",
    "ConfigError",
    "ErrorKind",
    "ExecutionFailure",
    "ExecutionResult",
    "ExecutionSuccess",
    "FetchError",
    "ResourceLimitExceeded",
    "ResultTooLarge",
    "SandboxError",
    "SerializationError",
    "Supervisor",
    "SupervisorConfig",
    "WorkerState",
    "configure_logging",
    "run_code",
]
