"""Per-worker execution context: compiles, runs and serializes caller code."""

from __future__ import annotations

import json
from typing import Any, Mapping

import structlog

from ..errors import (
    ErrorKind,
    ResultTooLarge,
    SandboxError,
    SerializationError,
)
from .capabilities import build_builtins, guarded_join
from .console import ConsoleChannel, ScriptConsole
from .fetch import ProxyFetch
from .guard import JOIN_HELPER, SNIPPET_FILENAME, SNIPPET_FUNCTION, compile_snippet
from .transport import STREAM_LIMIT, encode_message

_logger = structlog.get_logger(__name__)
# Largest encoded response; keeps every line well under the reader limit.
MAX_RESPONSE_BYTES = STREAM_LIMIT // 2


def _describe(exc: BaseException) -> str:
    """Render an exception as `TypeName: message`.

    Example:
        ```python
        _describe(ValueError("bad"))  # "ValueError: bad"
        ```
    """
    name = type(exc).__name__
    try:
        text = str(exc)
    except Exception:  # caller-defined __str__ may raise
        return name
    return f"{name}: {text}" if text else name


def serialize_result(value: Any, max_result_bytes: int) -> str:
    """Encode a result as compact JSON and enforce the byte ceiling.

    Example:
        ```python
        serialize_result({"a": 1}, 20000)  # '{"a":1}'
        ```
    """
    try:
        encoded = json.dumps(value, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError, RecursionError) as exc:
        raise SerializationError(f"Result is not JSON serializable: {_describe(exc)}") from None
    size = len(encoded.encode("utf-8"))
    if size > max_result_bytes:
        raise ResultTooLarge(f"Result was too long: {size} > {max_result_bytes} bytes")
    return encoded


class ExecutionContext:
    """Everything one worker needs to run caller code.

    The builtins table, output channel and fetch shim are built once from the
    handshake and reused for every request.

    Example:
        ```python
        context = ExecutionContext(SupervisorConfig().handshake())
        ```
    """

    def __init__(self, handshake: Mapping[str, Any]) -> None:
        """Build the capability table from the handshake settings.

        Example:
            ```python
            context = ExecutionContext({"max_result_bytes": 100, "max_log_entries": 5})
            ```
        """
        self.max_result_bytes = int(handshake.get("max_result_bytes", 20000))
        self.channel = ConsoleChannel(
            max_entries=int(handshake.get("max_log_entries", 200)),
            min_interval_ms=int(handshake.get("log_min_interval_ms", 0)),
        )
        proxy_url = handshake.get("fetch_proxy_url")
        self.fetch = (
            ProxyFetch(str(proxy_url), float(handshake.get("fetch_timeout_seconds", 10.0)))
            if proxy_url
            else None
        )
        self.builtins = build_builtins(
            handshake.get("extra_whitelist") or [],
            write=self.channel.print,
            console=ScriptConsole(self.channel),
            fetch=self.fetch,
        )

    def _globals(self) -> dict[str, Any]:
        """Return a fresh globals dict sharing the prebuilt builtins.

        Example:
            ```python
            namespace = context._globals()
            ```
        """
        return {
            "__builtins__": self.builtins,
            "__name__": SNIPPET_FILENAME,
            JOIN_HELPER: guarded_join,
        }

    async def evaluate(self, code: str, params: Mapping[str, Any] | None = None) -> Any:
        """Compile and await caller code, returning its raw value.

        Example:
            ```python
            value = await context.evaluate("x * 2", {"x": 21})
            ```
        """
        params = dict(params or {})
        code_obj = compile_snippet(code, params)
        namespace = self._globals()
        exec(code_obj, namespace)
        snippet = namespace[SNIPPET_FUNCTION]
        return await snippet(**params)

    async def run(self, code: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Run one request and return the response message (without its id).

        Example:
            ```python
            message = await context.run("console.log('hi')\\n42")
            # {"type": "result", "result": "42", "logs": ["hi"], "dropped_logs": 0}
            ```
        """
        self.channel.reset()
        try:
            if params is not None and not isinstance(params, Mapping):
                raise TypeError("params must be a JSON object")
            value = await self.evaluate(code, params)
            result = serialize_result(value, self.max_result_bytes)
        except SandboxError as exc:
            return self._failure(exc.kind, str(exc))
        except MemoryError:
            return self._failure(ErrorKind.RESOURCE_LIMIT_EXCEEDED, "Memory limit exceeded")
        except Exception as exc:
            return self._failure(ErrorKind.SCRIPT_ERROR, _describe(exc))
        return self._bounded({
            "type": "result",
            "result": result,
            "logs": self.channel.entries(),
            "dropped_logs": self.channel.dropped,
        })

    def _failure(self, kind: ErrorKind, message: str) -> dict[str, Any]:
        """Build an error message carrying the logs captured so far.

        Example:
            ```python
            context._failure(ErrorKind.SCRIPT_ERROR, "ValueError: bad")
            ```
        """
        _logger.debug("snippet.failed", kind=kind.value, message=message)
        return self._bounded({
            "type": "error",
            "error": {"kind": kind.value, "message": message},
            "logs": self.channel.entries(),
            "dropped_logs": self.channel.dropped,
        })

    def _bounded(self, message: dict[str, Any]) -> dict[str, Any]:
        """Replace a response whose encoding exceeds `MAX_RESPONSE_BYTES`.

        The replacement carries no logs, so it always fits.

        Example:
            ```python
            context._bounded({"type": "result", "result": "1", "logs": [], "dropped_logs": 0})
            ```
        """
        size = len(encode_message(message))
        if size <= MAX_RESPONSE_BYTES:
            return message
        _logger.debug("snippet.response_too_large", size=size)
        return {
            "type": "error",
            "error": {
                "kind": ErrorKind.RESOURCE_LIMIT_EXCEEDED.value,
                "message": f"Response was too long: {size} > {MAX_RESPONSE_BYTES} bytes",
            },
            "logs": [],
            "dropped_logs": self.channel.dropped + len(message.get("logs", [])),
        }


__all__ = ["ExecutionContext", "serialize_result"]
