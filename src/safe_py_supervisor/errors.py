"""Error kinds reported to callers and the exceptions that carry them."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Failure kinds reported to the host failure callback.

    Example:
        ```python
        kind = ErrorKind("ExecutionTimeout")
        ```
    """

    CAPABILITY_VIOLATION = "CapabilityViolation"
    RESOURCE_LIMIT_EXCEEDED = "ResourceLimitExceeded"
    RESULT_TOO_LARGE = "ResultTooLarge"
    SERIALIZATION_ERROR = "SerializationError"
    EXECUTION_TIMEOUT = "ExecutionTimeout"
    ALREADY_EXECUTING = "AlreadyExecuting"
    WORKER_DEAD = "WorkerDead"
    WORKER_CRASHED = "WorkerCrashed"
    TRANSPORT_ERROR = "TransportError"
    NETWORK_ERROR = "NetworkError"
    SCRIPT_ERROR = "ScriptError"


class SandboxError(Exception):
    """Base class for every failure the sandbox reports.

    Example:
        ```python
        raise SandboxError("worker failed")
        ```
    """

    kind: ErrorKind = ErrorKind.SCRIPT_ERROR


class CapabilityViolation(SandboxError):
    """Raised when caller code reaches for a name outside the capability table.

    Example:
        ```python
        raise CapabilityViolation("open")
        ```
    """

    kind = ErrorKind.CAPABILITY_VIOLATION

    def __init__(self, name: str) -> None:
        """Remember the blocked name and build the message.

        Example:
            ```python
            exc = CapabilityViolation("eval")
            ```
        """
        self.name = name
        super().__init__(f"Security exception - cannot access: {name}")


class ResourceLimitExceeded(SandboxError):
    """Raised when a collection operation exceeds the item ceiling.

    Example:
        ```python
        raise ResourceLimitExceeded("too many items")
        ```
    """

    kind = ErrorKind.RESOURCE_LIMIT_EXCEEDED


class ResultTooLarge(SandboxError):
    """Raised when the serialized result exceeds `max_result_bytes`.

    Example:
        ```python
        raise ResultTooLarge("Result was too long: 30000 > 20000 bytes")
        ```
    """

    kind = ErrorKind.RESULT_TOO_LARGE


class SerializationError(SandboxError):
    """Raised when a value cannot be encoded as JSON.

    Example:
        ```python
        raise SerializationError("Circular reference detected")
        ```
    """

    kind = ErrorKind.SERIALIZATION_ERROR


class FetchError(SandboxError):
    """Raised by the proxy shim when the proxy cannot be reached.

    Example:
        ```python
        raise FetchError("proxy unreachable")
        ```
    """

    kind = ErrorKind.NETWORK_ERROR


class TransportError(SandboxError):
    """Raised when a worker message cannot be decoded.

    Example:
        ```python
        raise TransportError("Worker sent invalid JSON")
        ```
    """

    kind = ErrorKind.TRANSPORT_ERROR


class WorkerExited(SandboxError):
    """Raised when the worker process closes its stream unexpectedly.

    Example:
        ```python
        raise WorkerExited("worker exited with code -9")
        ```
    """

    kind = ErrorKind.WORKER_CRASHED


class ConfigError(ValueError):
    """Raised for invalid supervisor configuration.

    Example:
        ```python
        raise ConfigError("'max_result_bytes' must be positive")
        ```
    """
